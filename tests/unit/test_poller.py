"""Tests for ProgressPoller and the HTTP progress source."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from deal_sentinel.core.models import RunState
from deal_sentinel.engine.poller import ProgressPoller, http_progress_source

RUNNING = RunState(is_running=True, run_id="sweep-abc", total_count=2, completed_count=1)
DONE = RunState(is_running=False, run_id="sweep-abc", total_count=2, completed_count=2)


class ScriptedSource:
    def __init__(self, *states):
        self.states = list(states)
        self.reads = 0

    def __call__(self):
        self.reads += 1
        return self.states.pop(0) if len(self.states) > 1 else self.states[0]


@pytest.mark.unit
class TestProgressPoller:
    async def test_stops_on_first_idle_reading(self):
        source = ScriptedSource(RUNNING, RUNNING, DONE)
        updates, finished = [], []
        poller = ProgressPoller(
            source, interval=0.01, on_update=updates.append, on_finished=finished.append
        )
        poller.start()
        last = await asyncio.wait_for(poller.wait(), timeout=2)

        assert last == DONE
        assert updates == [RUNNING, RUNNING, DONE]
        assert finished == [DONE]
        assert poller.finished

        await asyncio.sleep(0.05)
        assert source.reads == 3
        assert finished == [DONE]

    async def test_async_source(self):
        async def source():
            return DONE

        poller = ProgressPoller(source, interval=0.01)
        poller.start()
        assert await asyncio.wait_for(poller.wait(), timeout=2) == DONE

    async def test_stop_skips_completion_callback(self):
        finished = []
        poller = ProgressPoller(
            ScriptedSource(RUNNING), interval=0.01, on_finished=finished.append
        )
        poller.start()
        await asyncio.sleep(0.03)
        poller.stop()
        last = await asyncio.wait_for(poller.wait(), timeout=2)
        assert last == RUNNING
        assert finished == []


@pytest.mark.unit
class TestHttpProgressSource:
    @respx.mock
    async def test_reads_progress_endpoint(self):
        payload = DONE.model_dump(mode="json") | {"percent_complete": 100.0}
        respx.get("http://sentinel.test/api/monitoring/progress").mock(
            return_value=httpx.Response(200, json=payload)
        )
        async with httpx.AsyncClient(base_url="http://sentinel.test") as client:
            state = await http_progress_source(client)()
        assert state == DONE

    @respx.mock
    async def test_polls_server_until_done(self):
        route = respx.get("http://sentinel.test/api/monitoring/progress")
        route.side_effect = [
            httpx.Response(200, json=RUNNING.model_dump(mode="json")),
            httpx.Response(200, json=DONE.model_dump(mode="json")),
        ]
        finished = []
        async with httpx.AsyncClient(base_url="http://sentinel.test") as client:
            poller = ProgressPoller(
                http_progress_source(client), interval=0.01, on_finished=finished.append
            )
            poller.start()
            await asyncio.wait_for(poller.wait(), timeout=2)
        assert route.call_count == 2
        assert [s.is_running for s in finished] == [False]

    @respx.mock
    async def test_http_error_raises(self):
        respx.get("http://sentinel.test/api/monitoring/progress").mock(
            return_value=httpx.Response(503)
        )
        async with httpx.AsyncClient(base_url="http://sentinel.test") as client:
            with pytest.raises(httpx.HTTPStatusError):
                await http_progress_source(client)()
