"""Circuit breaker for ACME adapter calls.

Wraps an :class:`AcmeAdapter` so that a CA which keeps failing (down,
rate limiting, unreachable) is not hammered by every domain of every
scheduled run.

States:
    **closed** -- calls pass through.  Retryable failures are counted.
    **open** -- calls fail immediately with a retryable ``AcmeError``.
    **half-open** -- one probe is let through; success closes the
    circuit, failure reopens it.

Only issuance calls are guarded; :meth:`load_certificate` is a local
read and always passes through.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from certpilot.acme.base import AcmeAdapter
from certpilot.core.errors import AcmeError

if TYPE_CHECKING:
    from collections.abc import Callable

    from certpilot.models.certificate import Certificate

log = logging.getLogger(__name__)

T = TypeVar("T")


class _State(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerAdapter(AcmeAdapter):
    """Transparent circuit breaker around a real adapter.

    Parameters
    ----------
    adapter:
        The adapter to protect.
    failure_threshold:
        Consecutive retryable failures before the circuit opens.
    recovery_timeout:
        Seconds to stay open before allowing a probe.
    clock:
        Monotonic time source, injectable for tests.

    """

    def __init__(
        self,
        adapter: AcmeAdapter,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._adapter = adapter
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._state = _State.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        """Current circuit state as a string."""
        with self._lock:
            return self._state.value

    @property
    def wrapped(self) -> AcmeAdapter:
        return self._adapter

    def request_certificate(self, domain: str) -> Certificate:
        return self._call(domain, lambda: self._adapter.request_certificate(domain))

    def renew_certificate(self, existing: Certificate) -> Certificate:
        return self._call(existing.domain, lambda: self._adapter.renew_certificate(existing))

    def load_certificate(self, domain: str) -> Certificate:
        return self._adapter.load_certificate(domain)

    def startup_check(self) -> None:
        self._adapter.startup_check()

    def close(self) -> None:
        self._adapter.close()

    def _call(self, domain: str, func: Callable[[], T]) -> T:
        self._before_call(domain)
        try:
            result = func()
        except AcmeError as exc:
            self._on_failure(exc)
            raise
        except Exception as exc:
            self._on_failure(exc)
            raise AcmeError(str(exc), domain=domain, retryable=True) from exc
        self._on_success()
        return result

    def _before_call(self, domain: str) -> None:
        """Raise immediately while the circuit is open."""
        with self._lock:
            if self._state == _State.CLOSED:
                return

            if self._state == _State.OPEN:
                elapsed = self._clock() - self._opened_at
                if elapsed < self._recovery_timeout:
                    msg = (
                        "ACME circuit breaker is open, failing fast "
                        f"(retry in {self._recovery_timeout - elapsed:.0f}s)"
                    )
                    raise AcmeError(msg, domain=domain, retryable=True)
                self._state = _State.HALF_OPEN
                self._probe_in_flight = False
                log.info("ACME circuit breaker: open -> half_open after %.1fs", elapsed)

            if self._probe_in_flight:
                msg = "ACME circuit breaker is half-open and a probe is in progress"
                raise AcmeError(msg, domain=domain, retryable=True)
            self._probe_in_flight = True

    def _on_success(self) -> None:
        with self._lock:
            if self._state == _State.HALF_OPEN:
                log.info("ACME circuit breaker: half_open -> closed (probe succeeded)")
            self._state = _State.CLOSED
            self._failure_count = 0
            self._probe_in_flight = False

    def _on_failure(self, exc: Exception) -> None:
        with self._lock:
            if self._state == _State.HALF_OPEN:
                self._state = _State.OPEN
                self._opened_at = self._clock()
                self._probe_in_flight = False
                log.warning("ACME circuit breaker: half_open -> open (probe failed: %s)", exc)
                return

            # Validation and configuration errors say nothing about CA health
            if isinstance(exc, AcmeError) and not exc.retryable:
                return

            self._failure_count += 1
            if self._failure_count >= self._failure_threshold:
                self._state = _State.OPEN
                self._opened_at = self._clock()
                log.warning(
                    "ACME circuit breaker: closed -> open (threshold %d reached: %s)",
                    self._failure_threshold,
                    exc,
                )
