"""Logging subsystem for certpilot.

Public API::

    from certpilot.logging import configure_logging

    configure_logging(settings.logging)
"""

from certpilot.logging.setup import configure_logging, redact_pem

__all__ = ["configure_logging", "redact_pem"]
