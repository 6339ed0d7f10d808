"""Integration test fixtures: real I/O but no network."""

from __future__ import annotations

from pathlib import Path

import pytest

from deal_sentinel.cache import CacheStore
from deal_sentinel.core.config import MonitoringConfig, StorageConfig, StoreAPIConfig
from deal_sentinel.notify import DiscordNotifier
from deal_sentinel.pricing import SteamStorePriceFetcher
from deal_sentinel.storage import SqliteStore

WEBHOOK = "https://discord.com/api/webhooks/42/integration"


@pytest.fixture
def storage_config(tmp_path: Path) -> StorageConfig:
    return StorageConfig(sqlite_path=str(tmp_path / "integration.db"))


@pytest.fixture
async def integration_store(storage_config: StorageConfig) -> SqliteStore:
    """An initialized file-backed SqliteStore."""
    store = SqliteStore(storage_config)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def steam_fetcher() -> SteamStorePriceFetcher:
    """The real Steam client, throttled down to test speed."""
    async with SteamStorePriceFetcher(
        StoreAPIConfig(request_interval_seconds=0.01, request_timeout=5)
    ) as fetcher:
        yield fetcher


@pytest.fixture
async def discord() -> DiscordNotifier:
    notifier = DiscordNotifier(WEBHOOK)
    yield notifier
    await notifier.close()


@pytest.fixture
async def integration_cache() -> CacheStore:
    cache = CacheStore(default_ttl=300)
    yield cache
    await cache.close()


@pytest.fixture
def monitoring() -> MonitoringConfig:
    return MonitoringConfig(fetch_cache_ttl=0, fetch_timeout_seconds=5)


def price_body(app_id: str, name: str, final: int, initial: int) -> dict:
    """Mock ``appdetails`` body with prices in minor units."""
    return {
        app_id: {
            "success": True,
            "data": {
                "name": name,
                "price_overview": {
                    "initial": initial,
                    "final": final,
                    "discount_percent": round(100 * (initial - final) / initial),
                },
            },
        }
    }


@pytest.fixture
def appdetails_body():
    return price_body
