"""Process-wide sweep progress record: one writer, many readers."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from deal_sentinel.core.models import RunId, RunState


class ProgressTracker:
    """Holds the single RunState of this process.

    The BatchRunner is the only writer. Pollers call :meth:`snapshot` and
    get a frozen copy; every read and write goes through one lock so a
    reader never sees a half-updated record.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._clock = clock
        self._now = now
        self._lock = threading.Lock()
        self._state = RunState()
        self._started_mono: float | None = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.is_running

    def snapshot(self) -> RunState:
        with self._lock:
            return self._state

    def try_begin(self, run_id: RunId, total: int) -> bool:
        """Reset the record for a new sweep. False if one is already running."""
        with self._lock:
            if self._state.is_running:
                return False
            self._started_mono = self._clock()
            self._state = RunState(
                is_running=True,
                run_id=run_id,
                total_count=total,
                started_at=self._now(),
                last_run_at=self._state.last_run_at,
            )
            return True

    def set_current(self, label: str) -> None:
        with self._lock:
            self._state = self._state.model_copy(update={"current_item_label": label})

    def advance(self, failed: bool = False) -> None:
        """Count one finished item and refresh the remaining-time estimate."""
        with self._lock:
            completed = self._state.completed_count + 1
            failed_count = self._state.failed_count + (1 if failed else 0)
            remaining = max(self._state.total_count - completed, 0)
            elapsed = self._clock() - (self._started_mono or self._clock())
            eta = round((elapsed / completed) * remaining)
            self._state = self._state.model_copy(
                update={
                    "completed_count": completed,
                    "failed_count": failed_count,
                    "estimated_seconds_remaining": eta,
                }
            )

    def finish(self, cancelled: bool = False) -> RunState:
        """Return to idle, keeping the counters of the run that just ended."""
        with self._lock:
            self._state = self._state.model_copy(
                update={
                    "is_running": False,
                    "current_item_label": None,
                    "estimated_seconds_remaining": None,
                    "last_run_at": self._now(),
                    "cancelled": cancelled,
                }
            )
            self._started_mono = None
            return self._state
