"""Error taxonomy for certificate lifecycle operations.

Every error raised by the manager, the store, the ACME adapters and
the scheduler derives from :class:`CertPilotError`.  Errors that
concern a single domain carry it on ``.domain`` so batch callers can
report partial failures precisely.
"""

from __future__ import annotations


class CertPilotError(Exception):
    """Base class for all certpilot errors.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    domain:
        Domain the failure relates to, when there is one.

    """

    def __init__(self, detail: str, *, domain: str | None = None) -> None:
        self.detail = detail
        self.domain = domain
        super().__init__(detail)

    def __str__(self) -> str:
        if self.domain and self.domain not in self.detail:
            return f"{self.domain}: {self.detail}"
        return self.detail


class NotFoundError(CertPilotError):
    """No certificate exists for a domain in the registry or the store."""

    def __init__(self, domain: str, detail: str | None = None) -> None:
        super().__init__(
            detail or f"no certificate found for domain {domain}",
            domain=domain,
        )


class ParseError(CertPilotError):
    """Certificate bytes are not a well-formed PEM X.509 certificate."""


class AcmeError(CertPilotError):
    """Failure reported by the ACME adapter.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    domain:
        Domain the order was for.
    retryable:
        Whether the failure is transient (network, rate limit) and the
        next scheduled run may succeed.

    """

    def __init__(
        self,
        detail: str,
        *,
        domain: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(detail, domain=domain)
        self.retryable = retryable


class StoreError(CertPilotError):
    """Disk read or write failure in the certificate store."""


class CancellationError(CertPilotError):
    """A batch operation observed cancellation or its deadline."""

    def __init__(self, detail: str = "operation cancelled", *, timed_out: bool = False) -> None:
        super().__init__(detail)
        self.timed_out = timed_out


class SchedulerStateError(CertPilotError):
    """Scheduler operation invoked in the wrong state."""


class AggregateError(CertPilotError):
    """Collection of per-domain failures from one batch operation."""

    def __init__(self, errors: list[CertPilotError]) -> None:
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} domain(s) failed:\n{lines}")

    @property
    def domains(self) -> list[str]:
        """Domains that failed, in the order they were processed."""
        return [e.domain for e in self.errors if e.domain]
