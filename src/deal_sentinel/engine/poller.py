"""Client-side progress polling loop.

A poller reads RunState at a fixed interval, hands every reading to
``on_update`` and stops on the first reading with ``is_running=False``,
firing ``on_finished`` exactly once. It never writes.

The source is anything that returns a RunState, sync or async: the local
``ProgressTracker.snapshot`` for the CLI, or :func:`http_progress_source`
against a running server.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

import httpx

from deal_sentinel.core.models import RunState
from deal_sentinel.core.tasks import PeriodicTask

logger = logging.getLogger(__name__)

ProgressSource = Callable[[], RunState | Awaitable[RunState]]
ProgressCallback = Callable[[RunState], None]

DEFAULT_POLL_INTERVAL = 1.0


class ProgressPoller:
    """Polls a progress source until the run is no longer active."""

    def __init__(
        self,
        source: ProgressSource,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: ProgressCallback | None = None,
        on_finished: ProgressCallback | None = None,
    ) -> None:
        self._source = source
        self._on_update = on_update
        self._on_finished = on_finished
        self._task = PeriodicTask(
            self._poll, interval, name="progress-poller", run_immediately=True
        )
        self._done = asyncio.Event()
        self.last_state: RunState | None = None

    @property
    def finished(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        self._task.start()

    def stop(self) -> None:
        """Stop polling without firing the completion callback."""
        self._task.stop()
        self._done.set()

    async def wait(self) -> RunState | None:
        """Block until polling has stopped; return the last reading."""
        await self._done.wait()
        await self._task.join()
        return self.last_state

    async def _poll(self) -> None:
        if self._done.is_set():
            return
        state = self._source()
        if inspect.isawaitable(state):
            state = await state
        self.last_state = state
        if self._on_update is not None:
            self._on_update(state)
        if state.is_running:
            return

        self._task.stop()
        self._done.set()
        if self._on_finished is not None:
            self._on_finished(state)


def http_progress_source(
    client: httpx.AsyncClient,
    path: str = "/api/monitoring/progress",
) -> Callable[[], Awaitable[RunState]]:
    """Progress source reading a server's progress endpoint."""

    async def read() -> RunState:
        response = await client.get(path)
        response.raise_for_status()
        return RunState.model_validate(response.json())

    return read
