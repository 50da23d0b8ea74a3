"""Certificate health evaluation.

Pure functions over a :class:`Certificate` and a renewal threshold in
days.  ``now`` is always passed in so one snapshot is evaluated
against a single instant and tests can pin the clock.

Rules::

    is_expired     = now > expires_at
    needs_renewal  = now > expires_at - renewal_days
    status         = expired | needs_renewal | valid   (in that priority)

Both comparisons are strict: a certificate exactly at its renewal
threshold still reports ``valid``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from certpilot.core.types import CertificateStatus
from certpilot.models.certificate import CertificateHealth

if TYPE_CHECKING:
    from certpilot.models.certificate import Certificate

_DAY = timedelta(days=1)


def is_expired(cert: Certificate, now: datetime) -> bool:
    return now > cert.expires_at


def renewal_threshold(cert: Certificate, renewal_days: int) -> datetime:
    """Instant after which *cert* is due for renewal."""
    return cert.expires_at - timedelta(days=renewal_days)


def needs_renewal(cert: Certificate, renewal_days: int, now: datetime) -> bool:
    return now > renewal_threshold(cert, renewal_days)


def days_until_expiry(cert: Certificate, now: datetime) -> int:
    """Whole days left before expiry, truncated toward zero.

    Negative once the certificate has expired (``-1`` only after a
    full day past expiry).
    """
    remaining = cert.expires_at - now
    days = abs(remaining) // _DAY
    return days if remaining >= timedelta(0) else -days


def status_of(cert: Certificate, renewal_days: int, now: datetime) -> CertificateStatus:
    if is_expired(cert, now):
        return CertificateStatus.EXPIRED
    if needs_renewal(cert, renewal_days, now):
        return CertificateStatus.NEEDS_RENEWAL
    return CertificateStatus.VALID


def evaluate(cert: Certificate, renewal_days: int, now: datetime) -> CertificateHealth:
    """Compute the full :class:`CertificateHealth` snapshot for *cert*."""
    return CertificateHealth(
        domain=cert.domain,
        status=status_of(cert, renewal_days, now),
        issued_at=cert.issued_at,
        expires_at=cert.expires_at,
        is_expired=is_expired(cert, now),
        needs_renewal=needs_renewal(cert, renewal_days, now),
        days_until_expiry=days_until_expiry(cert, now),
    )
