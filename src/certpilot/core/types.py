"""Enumerated types shared across certpilot.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that JSON and YAML round-trip naturally.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificate health
# ---------------------------------------------------------------------------


class CertificateStatus(StrEnum):
    VALID = "valid"
    NEEDS_RENEWAL = "needs_renewal"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


class KeyType(StrEnum):
    RSA2048 = "RSA2048"
    RSA3072 = "RSA3072"
    RSA4096 = "RSA4096"
    EC256 = "EC256"
    EC384 = "EC384"


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


# ---------------------------------------------------------------------------
# Lifecycle events
# ---------------------------------------------------------------------------


class CertificateEvent(StrEnum):
    ISSUED = "issued"
    RENEWED = "renewed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class NotificationType(StrEnum):
    EXPIRATION_WARNING = "expiration_warning"
    RENEWAL_FAILED = "renewal_failed"
    RENEWAL_SUCCEEDED = "renewal_succeeded"
