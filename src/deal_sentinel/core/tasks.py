"""Cancellable fixed-rate background task for asyncio."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

TickFunc = Callable[[], Awaitable[None] | None]


class PeriodicTask:
    """Run `func` every `interval` seconds until stopped.

    Ticks fire at a fixed rate. A tick that comes due while the previous
    call is still in flight is skipped, so a slow callback never stacks up
    overlapping calls. Exceptions raised by `func` are logged and the timer
    keeps running.

    Must be started from inside a running event loop.
    """

    def __init__(
        self,
        func: TickFunc,
        interval: float,
        *,
        name: str = "periodic",
        run_immediately: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._func = func
        self._interval = interval
        self._name = name
        self._run_immediately = run_immediately
        self._loop_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self.skipped_ticks = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the timer. Calling start() on a running timer is a no-op."""
        if self.is_running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(), name=f"{self._name}-timer"
        )

    def stop(self) -> None:
        """Cancel the timer and any in-flight call other than the caller's."""
        if self._loop_task is not None:
            self._loop_task.cancel()
        current = asyncio.current_task()
        if self._inflight is not None and self._inflight is not current:
            self._inflight.cancel()

    async def join(self) -> None:
        """Wait until the timer task has finished after stop()."""
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None]
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self) -> None:
        if self._run_immediately:
            self._fire()
        while True:
            await asyncio.sleep(self._interval)
            self._fire()

    def _fire(self) -> None:
        if self.in_flight:
            self.skipped_ticks += 1
            logger.debug("%s: previous tick still running, skipping", self._name)
            return
        self._inflight = asyncio.get_running_loop().create_task(
            self._call(), name=f"{self._name}-tick"
        )

    async def _call(self) -> None:
        try:
            result = self._func()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: tick failed", self._name)
