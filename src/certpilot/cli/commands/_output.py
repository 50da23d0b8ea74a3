"""Shared console output helpers for subcommands."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from certpilot.core.types import CertificateStatus

if TYPE_CHECKING:
    from collections.abc import Mapping

    from certpilot.models.certificate import CertificateHealth


def print_error(message: str) -> None:
    print(f"certpilot: error: {message}", file=sys.stderr)


def print_health_report(health: Mapping[str, CertificateHealth]) -> int:
    """Print a per-domain report and summary.

    Returns 1 if any certificate needs renewal or is expired, else 0.
    """
    if not health:
        print("No certificates found")
        return 0

    counts = dict.fromkeys(CertificateStatus, 0)
    print("Certificate Health Report:")
    print("==========================")
    for domain in sorted(health):
        status = health[domain]
        counts[status.status] += 1
        print(f"Domain: {domain}")
        print(f"  Status: {status.status.value}")
        print(f"  Issued: {status.issued_at.isoformat()}")
        print(f"  Expires: {status.expires_at.isoformat()}")
        print(f"  Days until expiry: {status.days_until_expiry}")
        print(f"  Needs renewal: {str(status.needs_renewal).lower()}")
        print(f"  Is expired: {str(status.is_expired).lower()}")
        print()

    print("Summary:")
    print(f"  Total certificates: {len(health)}")
    print(f"  Valid: {counts[CertificateStatus.VALID]}")
    print(f"  Need renewal: {counts[CertificateStatus.NEEDS_RENEWAL]}")
    print(f"  Expired: {counts[CertificateStatus.EXPIRED]}")
    return health_exit_code(health)


def health_exit_code(health: Mapping[str, CertificateHealth]) -> int:
    return 1 if any(h.status != CertificateStatus.VALID for h in health.values()) else 0
