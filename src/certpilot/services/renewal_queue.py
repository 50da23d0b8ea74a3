"""Priority queue of pending renewals.

Only tasks whose ``scheduled_at`` has passed are eligible.  Among
eligible tasks the highest ``priority`` wins; equal priorities come
out in insertion order (FIFO).
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from certpilot.core.types import CertificateStatus

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from certpilot.models.certificate import CertificateHealth

# Expired certificates always outrank ones merely due for renewal.
_EXPIRED_BOOST = 1_000_000


@dataclass(frozen=True)
class RenewalTask:
    domain: str
    cert_path: Path
    key_path: Path
    priority: int
    scheduled_at: datetime
    seq: int = field(default=0, compare=False)


def priority_for(health: CertificateHealth) -> int:
    """Higher for more urgent certificates: expired first, then fewest days left."""
    priority = -health.days_until_expiry
    if health.status == CertificateStatus.EXPIRED:
        priority += _EXPIRED_BOOST
    return priority


class RenewalQueue:
    """Thread-safe queue of :class:`RenewalTask`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: list[RenewalTask] = []
        self._seq = itertools.count()

    def push(
        self,
        domain: str,
        cert_path: Path,
        key_path: Path,
        *,
        priority: int,
        scheduled_at: datetime,
    ) -> RenewalTask:
        with self._lock:
            task = RenewalTask(
                domain=domain,
                cert_path=cert_path,
                key_path=key_path,
                priority=priority,
                scheduled_at=scheduled_at,
                seq=next(self._seq),
            )
            self._tasks.append(task)
            return task

    def pop_ready(self, now: datetime) -> RenewalTask | None:
        """Remove and return the best eligible task, or None."""
        with self._lock:
            best = -1
            for idx, task in enumerate(self._tasks):
                if task.scheduled_at > now:
                    continue
                if best < 0 or task.priority > self._tasks[best].priority:
                    best = idx
            if best < 0:
                return None
            return self._tasks.pop(best)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
