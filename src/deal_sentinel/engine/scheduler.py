"""Scheduled sweeps over every enabled item."""

from __future__ import annotations

import logging

from deal_sentinel.core.tasks import PeriodicTask
from deal_sentinel.engine.runner import BatchRunner
from deal_sentinel.storage import SweepStore

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Starts a full sweep every ``interval_hours``.

    An interval of 0 disables scheduling. A tick that finds a sweep already
    running (manual or scheduled) does nothing.
    """

    def __init__(
        self,
        runner: BatchRunner,
        store: SweepStore,
        interval_hours: float,
    ) -> None:
        self._runner = runner
        self._store = store
        self._interval_hours = interval_hours
        self._task: PeriodicTask | None = None

    @property
    def enabled(self) -> bool:
        return self._interval_hours > 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and self._task.is_running

    def start(self) -> None:
        if not self.enabled:
            logger.info("Scheduled sweeps disabled (interval_hours=0)")
            return
        if self._task is None:
            self._task = PeriodicTask(
                self.tick,
                self._interval_hours * 3600,
                name="sweep-scheduler",
            )
        self._task.start()
        logger.info("Scheduled sweeps every %.1f hours", self._interval_hours)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.stop()
            await self._task.join()

    async def tick(self) -> None:
        """Run one scheduled sweep, unless one is already in progress."""
        if self._runner.is_running:
            logger.info("Scheduled sweep skipped: a sweep is already running")
            return
        items = await self._store.list_enabled_items()
        if not items:
            logger.debug("Scheduled sweep skipped: no enabled items")
            return
        result = self._runner.start_sweep(items)
        if not result.success:
            logger.info("Scheduled sweep skipped: %s", result.error)
            return
        await self._runner.wait()
