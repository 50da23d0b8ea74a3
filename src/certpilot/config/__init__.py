"""Configuration subsystem for certpilot.

Public API::

    from certpilot.config import get_config, CertPilotConfig

    # At startup (CLI only):
    CertPilotConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    days = cfg.settings.certificates.renewal_days
"""

from certpilot.config.loader import (
    CertPilotConfig,
    ConfigValidationError,
    get_config,
)
from certpilot.config.settings import (
    AcmeSettings,
    ApiSettings,
    AppSettings,
    CertificateSettings,
    CertPilotSettings,
    CircuitBreakerSettings,
    DomainSettings,
    LoggingSettings,
    NotificationSettings,
    parse_duration,
)

__all__ = [
    "AcmeSettings",
    "ApiSettings",
    "AppSettings",
    "CertPilotConfig",
    "CertPilotSettings",
    "CertificateSettings",
    "CircuitBreakerSettings",
    "ConfigValidationError",
    "DomainSettings",
    "LoggingSettings",
    "NotificationSettings",
    "get_config",
    "parse_duration",
]
