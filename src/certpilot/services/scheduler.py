"""Renewal scheduler.

Background thread that periodically asks the certificate manager for
a health snapshot and renews every certificate that is due.

States: **stopped** and **running**.  :meth:`RenewalScheduler.start`
waits ``initial_delay`` seconds, runs one check, then one check per
``check_interval``.  :meth:`RenewalScheduler.stop` interrupts the wait,
cancels the in-flight run between two domains and joins the thread.

Each run is bounded by ``run_timeout``.  When the deadline passes the
remaining domains are abandoned (an ACME call already in progress is
allowed to finish) and the run counts as failed.  A run cancelled by
``stop()`` is neither a success nor a failure.

Usage::

    scheduler = RenewalScheduler(manager, check_interval=86400)
    scheduler.start()
    ...
    scheduler.stop()
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from certpilot.core.cancel import CancelToken
from certpilot.core.errors import CancellationError, CertPilotError, SchedulerStateError
from certpilot.services.renewal_queue import RenewalQueue, priority_for

if TYPE_CHECKING:
    from collections.abc import Callable

    from certpilot.services.manager import CertificateManager

log = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class SchedulerStats:
    """Cumulative counters.  Snapshots only; never mutated in place."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    certificates_renewed: int = 0
    last_run_time: datetime | None = None
    last_run_duration: float = 0.0
    start_time: datetime | None = None
    next_run_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "certificates_renewed": self.certificates_renewed,
            "last_run_time": _iso(self.last_run_time),
            "last_run_duration": self.last_run_duration,
            "start_time": _iso(self.start_time),
            "next_run_time": _iso(self.next_run_time),
        }


@dataclass(frozen=True)
class SchedulerStatus:
    is_running: bool
    uptime: float
    next_run_time: datetime | None
    last_run_time: datetime | None
    check_interval: float
    stats: SchedulerStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "uptime": self.uptime,
            "next_run_time": _iso(self.next_run_time),
            "last_run_time": _iso(self.last_run_time),
            "check_interval": self.check_interval,
            "stats": self.stats.to_dict(),
        }


@dataclass(frozen=True)
class RunResult:
    """Outcome of one renewal check."""

    started_at: datetime
    duration: float
    renewed: tuple[str, ...] = ()
    errors: tuple[CertPilotError, ...] = ()
    cleaned_up: tuple[str, ...] = ()
    cancelled: bool = False
    timed_out: bool = False
    skipped: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors and not self.timed_out and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration": self.duration,
            "renewed": list(self.renewed),
            "skipped": list(self.skipped),
            "errors": [{"domain": e.domain, "error": e.detail} for e in self.errors],
            "cleaned_up": list(self.cleaned_up),
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "ok": self.ok,
        }


class RenewalScheduler:
    """Timer-driven renewal of due certificates.

    Parameters
    ----------
    manager:
        The certificate manager whose registry is checked.
    check_interval:
        Seconds between two scheduled checks.
    run_timeout:
        Upper bound in seconds for a single check.
    initial_delay:
        Seconds to wait after :meth:`start` before the first check.
    on_run_complete:
        Optional callback invoked with every :class:`RunResult`.
        Exceptions it raises are logged.

    """

    def __init__(
        self,
        manager: CertificateManager,
        *,
        check_interval: float,
        run_timeout: float = 600.0,
        initial_delay: float = 30.0,
        on_run_complete: Callable[[RunResult], None] | None = None,
    ) -> None:
        if check_interval <= 0:
            msg = f"check_interval must be positive (got {check_interval})"
            raise ValueError(msg)
        self._manager = manager
        self._interval = float(check_interval)
        self._run_timeout = run_timeout
        self._initial_delay = initial_delay
        self._on_run_complete = on_run_complete

        # _lock guards stats and timing; _state_lock serialises start/stop
        self._lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._wake = threading.Event()
        self._stop_token: CancelToken | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self._stats = SchedulerStats()
        self._next_run_mono = 0.0

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> None:
        """Stopped -> running.

        Raises
        ------
        SchedulerStateError
            If the scheduler is already running.

        """
        with self._state_lock:
            with self._lock:
                if self._running:
                    msg = "scheduler is already running"
                    raise SchedulerStateError(msg)
                now = self._manager.now()
                self._running = True
                self._stop_token = CancelToken()
                self._wake.clear()
                self._next_run_mono = time.monotonic() + self._initial_delay
                self._stats = replace(
                    self._stats,
                    start_time=now,
                    next_run_time=now + timedelta(seconds=self._initial_delay),
                )
            self._thread = threading.Thread(
                target=self._loop,
                args=(self._stop_token,),
                name="renewal-scheduler",
                daemon=True,
            )
            self._thread.start()
        log.info(
            "Renewal scheduler started (interval=%.0fs, initial delay=%.0fs, run timeout=%.0fs)",
            self._interval,
            self._initial_delay,
            self._run_timeout,
        )

    def stop(self) -> None:
        """Running -> stopped.  Blocks until the loop thread has exited.

        Raises
        ------
        SchedulerStateError
            If the scheduler is not running.

        """
        with self._state_lock:
            with self._lock:
                if not self._running:
                    msg = "scheduler is not running"
                    raise SchedulerStateError(msg)
                token = self._stop_token
            log.info("Stopping renewal scheduler")
            if token is not None:
                token.cancel()
            self._wake.set()
            if self._thread is not None:
                self._thread.join()
                self._thread = None
            with self._lock:
                self._running = False
                self._stop_token = None
                self._stats = replace(self._stats, next_run_time=None)
        log.info("Renewal scheduler stopped")

    def reschedule(self, interval: float) -> None:
        """Change the check interval; the next run is *interval* from now.

        A run already in progress is not interrupted.

        Raises
        ------
        SchedulerStateError
            If the scheduler is not running.
        ValueError
            If *interval* is not positive.

        """
        if interval <= 0:
            msg = f"interval must be positive (got {interval})"
            raise ValueError(msg)
        with self._lock:
            if not self._running:
                msg = "scheduler is not running"
                raise SchedulerStateError(msg)
            old = self._interval
            self._interval = float(interval)
            self._next_run_mono = time.monotonic() + self._interval
            self._stats = replace(
                self._stats,
                next_run_time=self._manager.now() + timedelta(seconds=self._interval),
            )
        self._wake.set()
        log.info("Rescheduled renewal checks from %.0fs to %.0fs", old, interval)

    # -- manual trigger ------------------------------------------------------

    def run_once(self) -> RunResult:
        """Run one renewal check now, independent of the timer."""
        log.info("Performing manual certificate renewal check")
        return self._perform_check(parent=None)

    # -- introspection -------------------------------------------------------

    def get_stats(self) -> SchedulerStats:
        with self._lock:
            if self._running:
                return self._stats
            return replace(self._stats, next_run_time=None)

    def get_next_run_time(self) -> datetime | None:
        with self._lock:
            return self._stats.next_run_time if self._running else None

    def get_uptime(self) -> float:
        """Seconds since :meth:`start`, or 0 when stopped."""
        with self._lock:
            return self._uptime_locked()

    def _uptime_locked(self) -> float:
        if not self._running or self._stats.start_time is None:
            return 0.0
        return max(0.0, (self._manager.now() - self._stats.start_time).total_seconds())

    def get_status(self) -> SchedulerStatus:
        with self._lock:
            return SchedulerStatus(
                is_running=self._running,
                uptime=self._uptime_locked(),
                next_run_time=self._stats.next_run_time if self._running else None,
                last_run_time=self._stats.last_run_time,
                check_interval=self._interval,
                stats=self._stats,
            )

    def reset_stats(self) -> None:
        """Zero every counter, keeping the start and next run times."""
        with self._lock:
            self._stats = SchedulerStats(
                start_time=self._stats.start_time,
                next_run_time=self._stats.next_run_time,
            )
        log.info("Scheduler statistics reset")

    # -- loop ----------------------------------------------------------------

    def _loop(self, stop_token: CancelToken) -> None:
        log.debug("Scheduler loop started")
        while not stop_token.cancelled:
            if not self._wait_until_due(stop_token):
                break
            with self._lock:
                self._next_run_mono = time.monotonic() + self._interval
                self._stats = replace(
                    self._stats,
                    next_run_time=self._manager.now() + timedelta(seconds=self._interval),
                )
            try:
                self._perform_check(parent=stop_token)
            except Exception:
                # A broken run must not kill the timer thread.
                log.exception("Unexpected error in scheduled renewal check")
        log.debug("Scheduler loop stopped")

    def _wait_until_due(self, stop_token: CancelToken) -> bool:
        """Sleep until the next run is due.  False if stopped meanwhile."""
        while True:
            if stop_token.cancelled:
                return False
            with self._lock:
                remaining = self._next_run_mono - time.monotonic()
            if remaining <= 0:
                return True
            self._wake.wait(remaining)
            self._wake.clear()

    def _perform_check(self, parent: CancelToken | None) -> RunResult:
        started_at = self._manager.now()
        t0 = time.monotonic()
        token = CancelToken(self._run_timeout, parent=parent)

        with self._lock:
            self._stats = replace(
                self._stats,
                total_runs=self._stats.total_runs + 1,
                last_run_time=started_at,
            )
            run_number = self._stats.total_runs
        log.info("Starting certificate renewal check (run #%d)", run_number)

        renewed: list[str] = []
        skipped: list[str] = []
        errors: list[CertPilotError] = []
        cancelled = timed_out = False

        try:
            token.check()
            queue = self._build_queue()
            log.debug("%d certificate(s) queued for renewal", len(queue))
            now = self._manager.now()
            while (task := queue.pop_ready(now)) is not None:
                token.check()
                try:
                    result = self._manager.renew_certificate(task.domain, only_if_due=True)
                except CertPilotError as exc:
                    log.error("Failed to renew certificate for %s: %s", task.domain, exc)  # noqa: TRY400
                    errors.append(exc)
                    continue
                (renewed if result is not None else skipped).append(task.domain)
        except CancellationError as exc:
            timed_out = exc.timed_out
            cancelled = not timed_out
            log.warning("Renewal check %s: %s", "timed out" if timed_out else "cancelled", exc)

        cleaned = tuple(self._manager.cleanup()) if not (cancelled or timed_out) else ()
        duration = time.monotonic() - t0
        result = RunResult(
            started_at=started_at,
            duration=duration,
            renewed=tuple(renewed),
            errors=tuple(errors),
            cleaned_up=cleaned,
            cancelled=cancelled,
            timed_out=timed_out,
            skipped=tuple(skipped),
        )
        self._record(result)

        if self._on_run_complete is not None:
            try:
                self._on_run_complete(result)
            except Exception:
                log.exception("Run completion callback failed")
        return result

    def _build_queue(self) -> RenewalQueue:
        queue = RenewalQueue()
        now = self._manager.now()
        health = self._manager.check_certificate_health()
        for domain in sorted(health):
            status = health[domain]
            if not status.needs_renewal:
                continue
            log.info("Certificate for %s needs renewal (%d day(s) left)", domain, status.days_until_expiry)
            cert_path, key_path = self._manager.get_certificate_paths(domain)
            queue.push(
                domain,
                cert_path,
                key_path,
                priority=priority_for(status),
                scheduled_at=now,
            )
        return queue

    def _record(self, result: RunResult) -> None:
        with self._lock:
            stats = replace(
                self._stats,
                certificates_renewed=self._stats.certificates_renewed + len(result.renewed),
                last_run_duration=result.duration,
            )
            if result.ok:
                stats = replace(stats, successful_runs=stats.successful_runs + 1)
            elif not result.cancelled:
                stats = replace(stats, failed_runs=stats.failed_runs + 1)
            self._stats = stats

        if result.cancelled:
            log.info("Renewal check cancelled after %.1fs", result.duration)
        elif result.ok:
            if result.renewed:
                log.info("Renewal check completed in %.1fs, renewed %d certificate(s)", result.duration, len(result.renewed))
            else:
                log.info("Renewal check completed in %.1fs, no certificates needed renewal", result.duration)
        else:
            log.warning(
                "Renewal check failed after %.1fs (%d error(s)%s)",
                result.duration,
                len(result.errors),
                ", timed out" if result.timed_out else "",
            )
