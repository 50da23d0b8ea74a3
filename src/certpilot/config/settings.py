"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
The loader validates the raw mapping first; the builders below then
assume well-formed input and fill in defaults.

Access pattern::

    from certpilot.config import get_config

    certs = get_config().settings.certificates
    print(certs.renewal_days, certs.storage_path)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

DEFAULT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"

# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|us|µs|ns|h|m|s)")
_UNIT_SECONDS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(value: str | float) -> float:
    """Parse ``"1h30m"``, ``"45s"``, ``"500ms"`` or plain seconds.

    Returns the duration in seconds.

    Raises
    ------
    ValueError
        If *value* is not a non-negative duration.

    """
    if isinstance(value, bool):
        msg = f"invalid duration: {value!r}"
        raise ValueError(msg)
    if isinstance(value, (int, float)):
        if value < 0:
            msg = f"duration must not be negative: {value!r}"
            raise ValueError(msg)
        return float(value)

    text = str(value).strip()
    if not text:
        msg = "empty duration"
        raise ValueError(msg)
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return float(text)

    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        msg = f"invalid duration: {value!r}"
        raise ValueError(msg)
    return total


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CircuitBreakerSettings:
    """Fail-fast protection around the ACME adapter."""

    enabled: bool
    failure_threshold: int
    recovery_timeout_seconds: float


@dataclass(frozen=True)
class AcmeSettings:
    """ACME certificate authority and account configuration."""

    directory_url: str
    email: str
    key_type: str
    adapter: str
    challenge_type: str
    challenge_handler: str
    challenge_handler_config: dict[str, Any]
    eab_kid: str | None
    eab_hmac_key: str | None
    proxy_url: str | None
    verify_ssl: bool
    timeout_seconds: int
    account_path: str
    circuit_breaker: CircuitBreakerSettings


def _build_circuit_breaker(data: dict | None) -> CircuitBreakerSettings:
    d = data or {}
    return CircuitBreakerSettings(
        enabled=d.get("enabled", True),
        failure_threshold=d.get("failure_threshold", 5),
        recovery_timeout_seconds=parse_duration(d.get("recovery_timeout_seconds", 300)),
    )


def _build_acme(data: dict | None, fallback_email: str) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d.get("directory_url") or d.get("ca_dir_url") or DEFAULT_DIRECTORY_URL,
        email=d.get("email") or fallback_email,
        key_type=str(d.get("key_type") or "RSA2048").upper(),
        adapter=d.get("adapter", "acmeow"),
        challenge_type=d.get("challenge_type", "http-01"),
        challenge_handler=d.get("challenge_handler", "file_http"),
        challenge_handler_config=dict(d.get("challenge_handler_config") or {}),
        eab_kid=d.get("eab_kid"),
        eab_hmac_key=d.get("eab_hmac_key"),
        proxy_url=d.get("proxy_url"),
        verify_ssl=d.get("verify_ssl", True),
        timeout_seconds=d.get("timeout_seconds", 30),
        account_path=d.get("account_path", "./acme_data"),
        circuit_breaker=_build_circuit_breaker(d.get("circuit_breaker")),
    )


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSettings:
    """Renewal threshold and on-disk storage."""

    renewal_days: int
    storage_path: str
    cleanup_delete_files: bool


def _build_certificates(data: dict | None) -> CertificateSettings:
    d = data or {}
    return CertificateSettings(
        renewal_days=d.get("renewal_days") or 30,
        storage_path=d.get("storage_path") or "./certs",
        cleanup_delete_files=d.get("cleanup_delete_files", False),
    )


# ---------------------------------------------------------------------------
# App (scheduling)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppSettings:
    """Scheduling intervals, all in seconds."""

    check_interval: float
    timeout: float
    run_timeout: float
    initial_delay: float


def _build_app(data: dict | None) -> AppSettings:
    d = data or {}
    return AppSettings(
        check_interval=parse_duration(d.get("check_interval") or "24h"),
        timeout=parse_duration(d.get("timeout") or "30s"),
        run_timeout=parse_duration(d.get("run_timeout") or "10m"),
        initial_delay=parse_duration(d.get("initial_delay", "30s")),
    )


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainSettings:
    """One Traefik service and the hostnames it serves."""

    service: str
    domain: str
    aliases: tuple[str, ...] = ()

    @property
    def names(self) -> tuple[str, ...]:
        return (self.domain, *self.aliases)


def _build_domains(data: list | None) -> tuple[DomainSettings, ...]:
    return tuple(
        DomainSettings(
            service=entry["service"],
            domain=entry["domain"],
            aliases=tuple(entry.get("aliases") or ()),
        )
        for entry in data or ()
    )


# ---------------------------------------------------------------------------
# Notification (SMTP)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationSettings:
    """Operator e-mail notifications over SMTP."""

    enabled: bool
    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_address: str
    use_tls: bool
    timeout_seconds: int
    recipients: tuple[str, ...]
    expiration_warning_days: tuple[int, ...]
    notify_on_success: bool
    templates_path: str | None


def _build_notification(data: dict | None, fallback_recipient: str) -> NotificationSettings:
    d = data or {}
    recipients = tuple(d.get("recipients") or ((fallback_recipient,) if fallback_recipient else ()))
    return NotificationSettings(
        enabled=d.get("enabled", bool(d.get("smtp_host"))),
        smtp_host=d.get("smtp_host", ""),
        smtp_port=d.get("smtp_port", 587),
        username=d.get("username", ""),
        password=d.get("password", ""),
        from_address=d.get("from") or "noreply@example.com",
        use_tls=d.get("use_tls", True),
        timeout_seconds=d.get("timeout_seconds", 30),
        recipients=recipients,
        expiration_warning_days=tuple(
            sorted(d.get("expiration_warning_days", [30, 14, 7, 1]), reverse=True),
        ),
        notify_on_success=d.get("notify_on_success", False),
        templates_path=d.get("templates_path"),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Log level and output format (``text`` or ``json``)."""

    level: str
    format: str


def _build_logging(data: dict | None, legacy_level: str | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=str(d.get("level") or legacy_level or "INFO").upper(),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Status API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiSettings:
    """Read-only JSON status API."""

    enabled: bool
    bind: str
    port: int


def _build_api(data: dict | None) -> ApiSettings:
    d = data or {}
    return ApiSettings(
        enabled=d.get("enabled", False),
        bind=d.get("bind", "127.0.0.1"),
        port=d.get("port", 8089),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertPilotSettings:
    """Root settings tree."""

    traefik_api: str
    email: str
    acme: AcmeSettings
    certificates: CertificateSettings
    app: AppSettings
    domains: tuple[DomainSettings, ...]
    notification: NotificationSettings
    logging: LoggingSettings
    api: ApiSettings
    source: str | None = field(default=None, compare=False)

    def all_domains(self) -> list[str]:
        """Every configured hostname, aliases included, without duplicates."""
        seen: dict[str, None] = {}
        for entry in self.domains:
            for name in entry.names:
                seen.setdefault(name, None)
        return list(seen)

    def domain_for_service(self, service: str) -> str | None:
        for entry in self.domains:
            if entry.service == service:
                return entry.domain
        return None


def build_settings(data: dict, source: str | None = None) -> CertPilotSettings:
    """Materialise the frozen settings tree from a validated mapping."""
    email = data.get("email", "")
    app = data.get("app") or {}
    return CertPilotSettings(
        traefik_api=str(data.get("traefik_api", "")).rstrip("/"),
        email=email,
        acme=_build_acme(data.get("acme"), email),
        certificates=_build_certificates(data.get("certificates")),
        app=_build_app(app),
        domains=_build_domains(data.get("domains")),
        notification=_build_notification(data.get("notification"), email),
        logging=_build_logging(data.get("logging"), app.get("log_level")),
        api=_build_api(data.get("api")),
        source=source,
    )
