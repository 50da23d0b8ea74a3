"""Certificate entity and derived health snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from certpilot.certs.pem import parse_not_after

if TYPE_CHECKING:
    from certpilot.core.types import CertificateStatus


@dataclass(frozen=True)
class Certificate:
    """One domain's current credential.

    Values are immutable: a renewal produces a new instance that
    replaces the old one in the registry.  Build new instances with
    :meth:`from_pem` so ``expires_at`` always comes from the
    certificate bytes.
    """

    domain: str
    certificate_pem: bytes
    private_key_pem: bytes
    issued_at: datetime
    expires_at: datetime
    issuer_certificate_pem: bytes | None = None

    @classmethod
    def from_pem(
        cls,
        domain: str,
        certificate_pem: bytes | str,
        private_key_pem: bytes | str,
        *,
        issuer_certificate_pem: bytes | str | None = None,
        issued_at: datetime | None = None,
    ) -> Certificate:
        """Build a certificate, deriving ``expires_at`` from the PEM.

        Raises
        ------
        ParseError
            If *certificate_pem* holds no valid certificate.

        """
        cert_bytes = _to_bytes(certificate_pem)
        issuer = _to_bytes(issuer_certificate_pem) if issuer_certificate_pem else None
        return cls(
            domain=domain,
            certificate_pem=cert_bytes,
            private_key_pem=_to_bytes(private_key_pem),
            issued_at=issued_at or datetime.now(UTC),
            expires_at=parse_not_after(cert_bytes, domain=domain),
            issuer_certificate_pem=issuer,
        )

    def __repr__(self) -> str:
        return (
            f"Certificate(domain={self.domain!r}, "
            f"issued_at={self.issued_at.isoformat()}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


@dataclass(frozen=True)
class CertificateHealth:
    """Read-only health snapshot of one certificate.  Never persisted."""

    domain: str
    status: CertificateStatus
    issued_at: datetime
    expires_at: datetime
    is_expired: bool
    needs_renewal: bool
    days_until_expiry: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "status": self.status.value,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "is_expired": self.is_expired,
            "needs_renewal": self.needs_renewal,
            "days_until_expiry": self.days_until_expiry,
        }


def _to_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)
