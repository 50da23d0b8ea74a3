"""Runtime dependency container.

Built once per CLI invocation from the loaded settings; owns every
long-lived object (store, ACME adapter, manager, notifier, Traefik
client, scheduler) so commands never reach for globals.

Usage::

    from certpilot.context import Container

    container = Container(get_config().settings)
    container.manager.load_existing()
    ...
    container.close()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from certpilot.acme.registry import load_acme_adapter
from certpilot.notifications.renderer import TemplateRenderer
from certpilot.services.manager import CertificateManager
from certpilot.services.notification import NotificationService
from certpilot.services.scheduler import RenewalScheduler
from certpilot.storage.store import CertificateStore
from certpilot.traefik.client import TraefikClient

if TYPE_CHECKING:
    from certpilot.acme.base import AcmeAdapter
    from certpilot.config.settings import CertPilotSettings
    from certpilot.services.scheduler import RunResult

log = logging.getLogger(__name__)


class Container:
    """Application-wide dependency container.

    Parameters
    ----------
    settings:
        Validated settings tree.
    adapter:
        ACME adapter to use instead of the configured one (tests and
        embedding).

    """

    def __init__(
        self,
        settings: CertPilotSettings,
        *,
        adapter: AcmeAdapter | None = None,
    ) -> None:
        self.settings = settings
        self.store = CertificateStore(settings.certificates.storage_path)
        self.adapter = adapter if adapter is not None else load_acme_adapter(settings.acme, self.store)
        self.manager = CertificateManager(
            self.adapter,
            self.store,
            renewal_days=settings.certificates.renewal_days,
            domains=settings.all_domains(),
            cleanup_delete_files=settings.certificates.cleanup_delete_files,
        )
        self.notifier = NotificationService(
            settings.notification,
            TemplateRenderer(settings.notification.templates_path),
            current_certificate=lambda domain: self.manager.list_certificates().get(domain),
        )
        if self.notifier.enabled:
            self.manager.add_listener(self.notifier.on_certificate_event)
        self.traefik = TraefikClient(settings.traefik_api, timeout=settings.app.timeout)
        self._scheduler: RenewalScheduler | None = None

    @property
    def scheduler(self) -> RenewalScheduler:
        """The renewal scheduler, created on first access (not started)."""
        if self._scheduler is None:
            app = self.settings.app
            self._scheduler = RenewalScheduler(
                self.manager,
                check_interval=app.check_interval,
                run_timeout=app.run_timeout,
                initial_delay=app.initial_delay,
                on_run_complete=self._after_run,
            )
        return self._scheduler

    def load_existing(self) -> int:
        count = self.manager.load_existing()
        log.debug("Registry holds %d certificate(s) after startup load", count)
        return count

    def close(self) -> None:
        if self._scheduler is not None and self._scheduler.is_running:
            self._scheduler.stop()
        self.adapter.close()

    def _after_run(self, result: RunResult) -> None:
        if self.notifier.enabled:
            self.notifier.send_expiration_warnings(self.manager.check_certificate_health())
        if result.errors:
            log.warning("Renewal check finished with failures for: %s", ", ".join(e.domain or "?" for e in result.errors))
