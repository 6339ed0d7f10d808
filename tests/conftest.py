"""Shared pytest fixtures for deal-sentinel."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import pytest

from deal_sentinel.cache import CacheStore
from deal_sentinel.core.config import StorageConfig
from deal_sentinel.core.models import (
    FetchError,
    FetchFailureReason,
    PriceSnapshot,
    PriceSource,
    RawObservation,
    TrackedItem,
)
from deal_sentinel.storage import SqliteStore


T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _isolate_root_logging():
    """Restore root logger handlers/level so CLI logging setup doesn't leak between tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class FakeFetcher:
    """Scriptable PriceFetcher.

    ``script`` maps external_id to a result, an exception instance (raised),
    or a list of those consumed one per call (the last one repeats).
    """

    def __init__(self, script=None, delay: float = 0.0, gate: asyncio.Event | None = None):
        self.script = dict(script or {})
        self.delay = delay
        self.gate = gate
        self.calls: list[str] = []

    async def fetch(self, external_id):
        self.calls.append(external_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        entry = self.script.get(external_id, RawObservation(current_price=1000, original_price=1000))
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, event, item):
        if self.fail:
            raise RuntimeError("webhook down")
        self.sent.append((event, item))
        return True

    async def close(self):
        return None


def observe(current=1000.0, original=None, **flags) -> RawObservation:
    return RawObservation(
        current_price=current,
        original_price=current if original is None else original,
        **flags,
    )


def fetch_error(external_id="100", reason=FetchFailureReason.HTTP_ERROR) -> FetchError:
    return FetchError(external_id=external_id, reason=reason, message="boom")


@pytest.fixture
def make_item():
    """Factory for TrackedItem with overridable defaults."""

    def _make(**overrides) -> TrackedItem:
        defaults = dict(id=1, external_id="100", display_name="Test Game")
        defaults.update(overrides)
        return TrackedItem(**defaults)

    return _make


@pytest.fixture
def make_snapshot():
    """Factory for PriceSnapshot with overridable defaults."""

    def _make(**overrides) -> PriceSnapshot:
        defaults = dict(
            item_id=1,
            current_price=1000.0,
            original_price=1000.0,
            discount_percent=0,
            is_on_sale=False,
            historical_low=1000.0,
            source=PriceSource.NORMAL,
            recorded_at=T0,
        )
        defaults.update(overrides)
        return PriceSnapshot(**defaults)

    return _make


@pytest.fixture
async def store():
    """An in-memory SqliteStore."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def cache():
    c = CacheStore(default_ttl=300)
    yield c
    await c.close()


@pytest.fixture
def make_fetcher():
    """Factory for FakeFetcher."""
    return FakeFetcher


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def obs():
    """Shorthand builder for RawObservation."""
    return observe


@pytest.fixture
def failure():
    """Shorthand builder for FetchError."""
    return fetch_error
