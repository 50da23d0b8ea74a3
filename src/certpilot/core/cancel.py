"""Cancellation tokens for batch operations.

A :class:`CancelToken` combines an explicit cancel signal with an
optional deadline.  Batch loops call :meth:`CancelToken.check` between
domains; an in-flight ACME call is never interrupted, but no new one
starts once the token has fired.
"""

from __future__ import annotations

import threading
import time

from certpilot.core.errors import CancellationError


class CancelToken:
    """Cancellation signal with an optional monotonic deadline.

    Parameters
    ----------
    timeout:
        Seconds from construction until the token expires on its own.
        ``None`` means no deadline.
    parent:
        Token whose cancellation also cancels this one (used for a
        per-run timeout nested inside the scheduler's stop signal).

    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        parent: CancelToken | None = None,
    ) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent

    def cancel(self) -> None:
        """Fire the token.  Idempotent."""
        self._event.set()

    @property
    def timed_out(self) -> bool:
        """True once the deadline (own or inherited) has passed."""
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return self._parent is not None and self._parent.timed_out

    @property
    def cancelled(self) -> bool:
        """True if cancelled explicitly, by a parent, or by the deadline."""
        if self._event.is_set() or self.timed_out:
            return True
        return self._parent is not None and self._parent.cancelled

    def check(self) -> None:
        """Raise :class:`CancellationError` if the token has fired."""
        if not self.cancelled:
            return
        if self.timed_out:
            raise CancellationError("operation timed out", timed_out=True)
        raise CancellationError("operation cancelled")
