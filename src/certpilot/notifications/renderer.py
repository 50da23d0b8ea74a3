"""Notification e-mail rendering.

Turns certificate lifecycle data (health snapshots, issued
certificates, renewal errors) into ``(subject, html_body)`` pairs.

Templates are looked up under the operator's ``templates_path`` first,
then among the ones shipped in ``certpilot/notifications/templates``.
Every notification type needs ``<type>_subject.txt`` and
``<type>_body.html``.  Only the HTML bodies are autoescaped.

Template variables per type::

    expiration_warning  domain, status, expires_at, days_until_expiry, threshold
    renewal_failed      domain, error, retryable, expires_at (None if unknown)
    renewal_succeeded   domain, issued_at, expires_at

``sent_at`` is available everywhere.  Datetimes are passed as objects;
print them with the ``utc`` filter.  Undefined variables raise, so a
typo in a custom template fails loudly instead of mailing blanks.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from jinja2 import (
    BaseLoader,
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    select_autoescape,
)

from certpilot.core.errors import AcmeError, CertPilotError
from certpilot.core.types import NotificationType

if TYPE_CHECKING:
    from collections.abc import Callable

    from certpilot.models.certificate import Certificate, CertificateHealth


def format_utc(value: datetime | None) -> str:
    """``2026-04-15 12:00 UTC``; empty for None."""
    if value is None:
        return ""
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M UTC")


class TemplateRenderer:
    """Render notification e-mails from certificate data.

    Parameters
    ----------
    templates_path:
        Directory whose templates override the packaged ones.
    clock:
        Returns the current aware UTC time for ``sent_at``.

    """

    def __init__(
        self,
        templates_path: str | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        search: list[BaseLoader] = []
        if templates_path:
            search.append(FileSystemLoader(templates_path))
        search.append(PackageLoader("certpilot.notifications", "templates"))

        self._env = Environment(
            loader=ChoiceLoader(search),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["utc"] = format_utc
        self._clock = clock or (lambda: datetime.now(UTC))

    def expiration_warning(self, health: CertificateHealth, threshold: int) -> tuple[str, str]:
        return self._render(
            NotificationType.EXPIRATION_WARNING,
            domain=health.domain,
            status=health.status.value,
            expires_at=health.expires_at,
            days_until_expiry=health.days_until_expiry,
            threshold=threshold,
        )

    def renewal_failed(
        self,
        domain: str,
        error: BaseException,
        current: Certificate | None = None,
    ) -> tuple[str, str]:
        """Failure mail; *current* is the certificate still in service, if any."""
        return self._render(
            NotificationType.RENEWAL_FAILED,
            domain=domain,
            error=error.detail if isinstance(error, CertPilotError) else str(error),
            retryable=isinstance(error, AcmeError) and error.retryable,
            expires_at=current.expires_at if current is not None else None,
        )

    def renewal_succeeded(self, cert: Certificate) -> tuple[str, str]:
        return self._render(
            NotificationType.RENEWAL_SUCCEEDED,
            domain=cert.domain,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
        )

    def _render(self, notification_type: NotificationType, **context: Any) -> tuple[str, str]:
        context["sent_at"] = self._clock()
        name = notification_type.value
        subject = self._env.get_template(f"{name}_subject.txt").render(context)
        body = self._env.get_template(f"{name}_body.html").render(context)
        # Mail headers are single-line.
        return " ".join(subject.split()), body
