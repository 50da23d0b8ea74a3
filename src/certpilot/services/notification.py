"""Operator e-mail notifications.

Graceful degradation:
- ``notification.enabled=False`` -> complete no-op
- no recipients -> no-op, logged at debug level
- broken template -> logged, nothing sent
- SMTP failure -> logged, never raised to the caller

Expiration warnings are deduplicated per process: each
(domain, expiry, threshold) triple is mailed at most once, so a new
certificate (new expiry) re-arms the warnings.
"""

from __future__ import annotations

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateError

from certpilot.core.types import CertificateEvent, NotificationType

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from certpilot.config.settings import NotificationSettings
    from certpilot.models.certificate import Certificate, CertificateHealth
    from certpilot.notifications.renderer import TemplateRenderer

log = logging.getLogger(__name__)


class NotificationService:
    """Sends notification e-mails to the configured operators.

    Parameters
    ----------
    settings:
        Notification section of the configuration.
    renderer:
        Builds subject and body for each notification type.
    current_certificate:
        Returns the certificate currently serving a domain, or None.
        Failure mails use it to say how long the old certificate lasts.

    """

    def __init__(
        self,
        settings: NotificationSettings,
        renderer: TemplateRenderer,
        current_certificate: Callable[[str], Certificate | None] | None = None,
    ) -> None:
        self._settings = settings
        self._renderer = renderer
        self._current_certificate = current_certificate or (lambda _domain: None)
        self._sent_warnings: set[tuple[str, datetime, int]] = set()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled and bool(self._settings.recipients)

    def _dispatch(
        self,
        notification_type: NotificationType,
        render: Callable[[], tuple[str, str]],
    ) -> int:
        """Render once and send to every recipient.

        Returns the number of recipients the message was delivered to.
        """
        if not self._settings.enabled:
            return 0
        recipients = list(self._settings.recipients)
        if not recipients:
            log.debug("No recipients for %s notification", notification_type.value)
            return 0

        try:
            subject, body = render()
        except TemplateError:
            log.exception("Failed to render %s notification", notification_type.value)
            return 0
        return sum(1 for recipient in recipients if self._send_email(recipient, subject, body))

    # -- certificate events --------------------------------------------------

    def on_certificate_event(self, event: CertificateEvent, domain: str, payload: Any) -> None:  # noqa: ANN401
        """Manager listener: mail failures, and successes when configured."""
        if event == CertificateEvent.FAILED:
            current = self._current_certificate(domain)
            self._dispatch(
                NotificationType.RENEWAL_FAILED,
                lambda: self._renderer.renewal_failed(domain, payload, current),
            )
        elif self._settings.notify_on_success:
            self._dispatch(
                NotificationType.RENEWAL_SUCCEEDED,
                lambda: self._renderer.renewal_succeeded(payload),
            )

    # -- expiration warnings -------------------------------------------------

    def send_expiration_warnings(self, health: Mapping[str, CertificateHealth]) -> int:
        """Warn about certificates inside a warning threshold.

        Returns the number of warnings sent.
        """
        if not self.enabled or not self._settings.expiration_warning_days:
            return 0

        sent = 0
        for domain in sorted(health):
            status = health[domain]
            threshold = self._crossed_threshold(status.days_until_expiry)
            if threshold is None:
                continue
            key = (domain, status.expires_at, threshold)
            with self._lock:
                if key in self._sent_warnings:
                    continue
                self._sent_warnings.add(key)

            delivered = self._dispatch(
                NotificationType.EXPIRATION_WARNING,
                lambda: self._renderer.expiration_warning(status, threshold),
            )
            if delivered:
                sent += 1
                log.info("Sent expiration warning for %s (%d-day threshold)", domain, threshold)
            else:
                with self._lock:
                    self._sent_warnings.discard(key)
        return sent

    def _crossed_threshold(self, days_left: int) -> int | None:
        """Smallest configured threshold at or above *days_left*."""
        crossed = [t for t in self._settings.expiration_warning_days if days_left <= t]
        return min(crossed) if crossed else None

    # -- SMTP ----------------------------------------------------------------

    def _send_email(self, recipient: str, subject: str, body: str) -> bool:
        """Send a single e-mail.  Never raises."""
        try:
            msg = MIMEMultipart("alternative")
            msg["From"] = self._settings.from_address
            msg["To"] = recipient
            msg["Subject"] = subject
            msg.attach(MIMEText(body, "html", "utf-8"))

            with smtplib.SMTP(
                self._settings.smtp_host,
                self._settings.smtp_port,
                timeout=self._settings.timeout_seconds,
            ) as server:
                server.ehlo()
                if self._settings.use_tls:
                    server.starttls()
                    server.ehlo()
                if self._settings.username:
                    server.login(self._settings.username, self._settings.password)
                server.sendmail(self._settings.from_address, [recipient], msg.as_string())
        except Exception:
            log.exception("Failed to send email to %s", recipient)
            return False
        return True
