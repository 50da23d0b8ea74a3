"""Certificate manager: owner of the in-memory certificate registry.

The registry maps domain -> :class:`Certificate` and is the single
source of truth for the CLI, the status API and the renewal
scheduler.  Two locks guard it:

- a :class:`ReadWriteLock` around the mapping itself, held only for
  lookups and for the final commit of a new certificate;
- a per-domain mutex around the whole check, issue, persist and
  commit sequence, so two renewals of the same domain never race.

ACME calls and disk writes run without the registry lock, so health
queries are never blocked by a slow CA.

Usage::

    manager = CertificateManager(adapter, store, renewal_days=30, domains=["example.com"])
    manager.load_existing()
    manager.process_all_domains()
    for domain, health in manager.check_certificate_health().items():
        print(domain, health.status)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from certpilot.certs import health as health_rules
from certpilot.core.errors import (
    AcmeError,
    AggregateError,
    CertPilotError,
    NotFoundError,
    StoreError,
)
from certpilot.core.locks import KeyedLocks, ReadWriteLock
from certpilot.core.types import CertificateEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from certpilot.acme.base import AcmeAdapter
    from certpilot.core.cancel import CancelToken
    from certpilot.models.certificate import Certificate, CertificateHealth
    from certpilot.storage.store import CertificateStore

    Listener = Callable[[CertificateEvent, str, Any], None]

log = logging.getLogger(__name__)

CLEANUP_GRACE = timedelta(days=30)


def utcnow() -> datetime:
    return datetime.now(UTC)


class CertificateManager:
    """Request, renew and track certificates for a set of domains.

    Parameters
    ----------
    adapter:
        ACME capability used to obtain certificates.
    store:
        Durable backing for the registry.
    renewal_days:
        Days before expiry at which a certificate becomes due.
    domains:
        Configured domains processed by :meth:`process_all_domains`.
    clock:
        Returns the current aware UTC time; injectable for tests.
    cleanup_delete_files:
        When true, :meth:`cleanup` also removes the files of purged
        certificates.  By default files stay on disk.

    """

    def __init__(
        self,
        adapter: AcmeAdapter,
        store: CertificateStore,
        *,
        renewal_days: int = 30,
        domains: Iterable[str] = (),
        clock: Callable[[], datetime] = utcnow,
        cleanup_delete_files: bool = False,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._renewal_days = renewal_days
        self._domains = sorted(set(domains))
        self._clock = clock
        self._cleanup_delete_files = cleanup_delete_files

        self._certs: dict[str, Certificate] = {}
        self._lock = ReadWriteLock()
        self._domain_locks = KeyedLocks()
        self._listeners: list[Listener] = []

    @property
    def renewal_days(self) -> int:
        return self._renewal_days

    @property
    def domains(self) -> list[str]:
        """Configured domains in processing (lexicographic) order."""
        return list(self._domains)

    def now(self) -> datetime:
        return self._clock()

    def add_listener(self, listener: Listener) -> None:
        """Register ``listener(event, domain, certificate_or_error)``.

        Listeners run after the registry has been updated (or left
        unchanged, for failures).  Exceptions they raise are logged and
        never reach the caller.
        """
        self._listeners.append(listener)

    # -- startup -------------------------------------------------------------

    def load_existing(self) -> int:
        """Populate the registry from the store; return how many loaded."""
        loaded = self._store.load_all()
        with self._lock.write():
            self._certs.update(loaded)
        return len(loaded)

    # -- single domain -------------------------------------------------------

    def request_certificate(self, domain: str) -> Certificate:
        """Ensure *domain* has a certificate that is neither expired nor due.

        A healthy existing certificate is returned as is, without
        contacting the CA.

        Raises
        ------
        AcmeError
            If the CA request fails.  The registry is unchanged.
        StoreError
            If the new certificate cannot be persisted.  The registry
            is unchanged.

        """
        with self._domain_locks.hold(domain):
            existing = self._lookup(domain)
            if existing is not None and self._is_healthy(existing):
                log.debug("Certificate for %s is still valid, skipping request", domain)
                return existing

            log.info("Requesting certificate for %s", domain)
            new = self._call_adapter(domain, lambda: self._adapter.request_certificate(domain))
            self._commit(domain, new)

        log.info("Issued certificate for %s, expires %s", domain, new.expires_at.isoformat())
        self._emit(CertificateEvent.ISSUED, domain, new)
        return new

    def renew_certificate(self, domain: str, *, only_if_due: bool = False) -> Certificate | None:
        """Replace the certificate for *domain* with a freshly issued one.

        When the registry has no entry, the certificate is first loaded
        from the store, then through the adapter.  With *only_if_due*
        the renewal is skipped if, once the domain lock is held, the
        current certificate no longer needs renewal (a concurrent
        renewal already replaced it) and None is returned.

        Raises
        ------
        NotFoundError
            If no existing certificate can be found anywhere.
        AcmeError
            If the renewal fails.  The previous certificate stays in
            the registry.
        StoreError
            If the renewed certificate cannot be persisted.

        """
        with self._domain_locks.hold(domain):
            existing = self._lookup(domain) or self._recover(domain)
            if only_if_due and self._is_healthy(existing):
                log.debug("Certificate for %s was renewed concurrently, skipping", domain)
                return None

            log.info(
                "Renewing certificate for %s (%d day(s) left)",
                domain,
                health_rules.days_until_expiry(existing, self._clock()),
            )
            new = self._call_adapter(domain, lambda: self._adapter.renew_certificate(existing))
            self._commit(domain, new)

        log.info("Renewed certificate for %s, expires %s", domain, new.expires_at.isoformat())
        self._emit(CertificateEvent.RENEWED, domain, new)
        return new

    def get_certificate(self, domain: str) -> Certificate:
        cert = self._lookup(domain)
        if cert is None:
            raise NotFoundError(domain)
        return cert

    def list_certificates(self) -> dict[str, Certificate]:
        """Return a new mapping; changing it never touches the registry."""
        with self._lock.read():
            return dict(self._certs)

    def get_certificate_paths(self, domain: str) -> tuple[Path, Path]:
        return self._store.cert_path(domain), self._store.key_path(domain)

    # -- health --------------------------------------------------------------

    def check_certificate_health(self) -> dict[str, CertificateHealth]:
        """Health of every registered certificate, evaluated at one instant."""
        now = self._clock()
        with self._lock.read():
            return {
                domain: health_rules.evaluate(cert, self._renewal_days, now)
                for domain, cert in self._certs.items()
            }

    # -- batches -------------------------------------------------------------

    def process_all_domains(self, cancel: CancelToken | None = None) -> None:
        """Request certificates for every configured domain.

        Raises
        ------
        CancellationError
            If *cancel* fires between two domains.
        AggregateError
            After all domains were attempted, if any of them failed.

        """
        self._run_batch("process", self._domains, self.request_certificate, cancel)

    def renew_expired_certificates(self, cancel: CancelToken | None = None) -> None:
        """Renew every registered certificate flagged as due.

        Same cancellation and aggregation rules as
        :meth:`process_all_domains`.
        """
        due = sorted(d for d, h in self.check_certificate_health().items() if h.needs_renewal)
        if not due:
            log.debug("No certificates due for renewal")
            return
        self._run_batch(
            "renew",
            due,
            lambda domain: self.renew_certificate(domain, only_if_due=True),
            cancel,
        )

    def cleanup(self) -> list[str]:
        """Drop certificates expired for longer than the grace window.

        Returns the removed domains.  Each candidate is re-checked under
        its domain lock, so a certificate issued concurrently is never
        dropped.  Files are removed from the store only when
        ``cleanup_delete_files`` is enabled, under the same lock.
        """
        with self._lock.read():
            candidates = sorted(d for d, c in self._certs.items() if self._past_grace(c))

        removed: list[str] = []
        for domain in candidates:
            with self._domain_locks.hold(domain):
                current = self._lookup(domain)
                if current is None or not self._past_grace(current):
                    continue
                with self._lock.write():
                    del self._certs[domain]
                removed.append(domain)
                log.info("Removed long-expired certificate for %s from registry", domain)
                if self._cleanup_delete_files:
                    try:
                        self._store.delete(domain)
                    except StoreError:
                        log.exception("Failed to delete files for %s", domain)
        return removed

    # -- internals -----------------------------------------------------------

    def _lookup(self, domain: str) -> Certificate | None:
        with self._lock.read():
            return self._certs.get(domain)

    def _past_grace(self, cert: Certificate) -> bool:
        return cert.expires_at < self._clock() - CLEANUP_GRACE

    def _is_healthy(self, cert: Certificate) -> bool:
        now = self._clock()
        return not (
            health_rules.is_expired(cert, now)
            or health_rules.needs_renewal(cert, self._renewal_days, now)
        )

    def _recover(self, domain: str) -> Certificate:
        """Load a certificate that predates this process."""
        try:
            return self._store.load(domain)
        except NotFoundError:
            log.debug("No stored certificate for %s, asking the ACME adapter", domain)
        except CertPilotError as exc:
            log.warning("Stored certificate for %s is unusable: %s", domain, exc)

        try:
            return self._adapter.load_certificate(domain)
        except CertPilotError as exc:
            raise NotFoundError(domain, f"no certificate to renew for {domain}: {exc.detail}") from exc

    def _call_adapter(self, domain: str, func: Callable[[], Certificate]) -> Certificate:
        try:
            cert = func()
        except AcmeError as exc:
            error = exc if exc.domain else AcmeError(exc.detail, domain=domain, retryable=exc.retryable)
            self._emit(CertificateEvent.FAILED, domain, error)
            if error is exc:
                raise
            raise error from exc
        except Exception as exc:
            error = AcmeError(f"{type(exc).__name__}: {exc}", domain=domain)
            self._emit(CertificateEvent.FAILED, domain, error)
            raise error from exc

        if cert.domain != domain:
            msg = f"adapter returned a certificate for {cert.domain}"
            raise AcmeError(msg, domain=domain)
        return cert

    def _commit(self, domain: str, cert: Certificate) -> None:
        """Persist *cert* then publish it in the registry."""
        try:
            self._store.save(cert)
        except StoreError as exc:
            self._emit(CertificateEvent.FAILED, domain, exc)
            raise

        with self._lock.write():
            self._certs[domain] = cert

    def _run_batch(
        self,
        label: str,
        domains: Iterable[str],
        func: Callable[[str], Any],
        cancel: CancelToken | None,
    ) -> None:
        errors: list[CertPilotError] = []
        for domain in domains:
            if cancel is not None:
                try:
                    cancel.check()
                except CertPilotError:
                    log.warning("Batch %s cancelled before %s (%d failure(s) so far)", label, domain, len(errors))
                    raise
            try:
                func(domain)
            except CertPilotError as exc:
                log.error("Failed to %s certificate for %s: %s", label, domain, exc)  # noqa: TRY400
                errors.append(exc)

        if errors:
            raise AggregateError(errors)

    def _emit(self, event: CertificateEvent, domain: str, payload: Any) -> None:  # noqa: ANN401
        for listener in list(self._listeners):
            try:
                listener(event, domain, payload)
            except Exception:
                log.exception("Certificate listener failed for %s event on %s", event.value, domain)
