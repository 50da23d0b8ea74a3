"""Abstract base class for ACME adapters.

The certificate manager consumes an ACME certificate authority purely
as a capability: issue a certificate for a domain, renew an existing
one, and load one that already exists.  All protocol mechanics
(account registration, challenges, CA communication) live behind this
interface.

Every implementation must raise :class:`~certpilot.core.errors.AcmeError`
for any failure so the manager can attach the domain and move on.
Adapters never write to the certificate store; persisting the result
is the manager's job.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from certpilot.models.certificate import Certificate


class AcmeAdapter(abc.ABC):
    """Base class for all ACME adapter implementations."""

    @abc.abstractmethod
    def request_certificate(self, domain: str) -> Certificate:
        """Obtain a brand new certificate for *domain*."""

    @abc.abstractmethod
    def renew_certificate(self, existing: Certificate) -> Certificate:
        """Obtain a replacement for *existing*.

        The returned certificate is a new value; *existing* is left
        untouched and stays usable if renewal fails.
        """

    @abc.abstractmethod
    def load_certificate(self, domain: str) -> Certificate:
        """Return an already issued certificate for *domain*."""

    def startup_check(self) -> None:  # noqa: B027
        """Validate configuration and connectivity at startup.

        Called once before the first issuance.  The default
        implementation is a no-op.
        """

    def close(self) -> None:  # noqa: B027
        """Release any resources held by the adapter."""
