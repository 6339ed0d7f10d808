"""End-to-end sweeps: Steam client → evaluation → SQLite → Discord webhook.

Only the network is mocked (respx). Storage, cache, runner, fetcher and
notifier are the production classes.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx

from deal_sentinel.core.models import (
    AlertKind,
    FetchFailureReason,
    PriceBelow,
    PriceSnapshot,
    PriceSource,
)
from deal_sentinel.engine import BatchRunner
from deal_sentinel.storage import SqliteStore

pytestmark = pytest.mark.integration

APPDETAILS = "https://store.steampowered.com/api/appdetails"
WEBHOOK = "https://discord.com/api/webhooks/42/integration"

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)
T1 = datetime(2024, 6, 2, 12, 0, 0, tzinfo=UTC)


def _by_app(bodies: dict[str, httpx.Response]):
    def handler(request: httpx.Request) -> httpx.Response:
        return bodies[request.url.params["appids"]]

    return handler


class TestSaleDetection:
    @respx.mock
    async def test_price_drop_raises_all_alerts_and_notifies(
        self,
        integration_store,
        integration_cache,
        steam_fetcher,
        discord,
        monitoring,
        appdetails_body,
    ):
        item = await integration_store.add_item(
            "413150", "app 413150", policy=PriceBelow(amount=2000)
        )
        await integration_store.append_snapshot(
            PriceSnapshot(
                item_id=item.id,
                current_price=2499,
                original_price=2499,
                discount_percent=0,
                is_on_sale=False,
                historical_low=2499,
                source=PriceSource.NORMAL,
                recorded_at=T0,
            )
        )
        respx.get(APPDETAILS).mock(
            return_value=httpx.Response(
                200, json=appdetails_body("413150", "Stardew Valley", 199900, 249900)
            )
        )
        webhook = respx.post(WEBHOOK).mock(return_value=httpx.Response(204))

        runner = BatchRunner(
            integration_store,
            steam_fetcher,
            integration_cache,
            notifier=discord,
            config=monitoring,
            now=lambda: T1,
        )
        summary = await runner.run_sweep([item])

        assert summary.completed == 1
        assert summary.failed == 0
        assert summary.alerts == 3

        snap = await integration_store.latest_snapshot(item.id)
        assert snap.current_price == 1999
        assert snap.original_price == 2499
        assert snap.discount_percent == 20
        assert snap.historical_low == 1999
        assert snap.recorded_at == T1

        alerts = await integration_store.list_alerts(item_id=item.id)
        assert {a.kind for a in alerts} == {
            AlertKind.NEW_LOW,
            AlertKind.THRESHOLD_MET,
            AlertKind.SALE_START,
        }
        assert all(a.previous_low == 2499 for a in alerts)

        assert webhook.call_count == 3
        titles = [
            json.loads(call.request.content)["embeds"][0]["title"]
            for call in webhook.calls
        ]
        assert titles[0] == "New historical low: Stardew Valley"

        renamed = await integration_store.get_item(item.id)
        assert renamed.display_name == "Stardew Valley"

    @respx.mock
    async def test_webhook_outage_keeps_alerts(
        self,
        integration_store,
        integration_cache,
        steam_fetcher,
        discord,
        monitoring,
        appdetails_body,
    ):
        item = await integration_store.add_item("730", "CS2", policy=PriceBelow(amount=5000))
        respx.get(APPDETAILS).mock(
            return_value=httpx.Response(200, json=appdetails_body("730", "CS2", 150000, 300000))
        )
        respx.post(WEBHOOK).mock(return_value=httpx.Response(500))

        runner = BatchRunner(
            integration_store, steam_fetcher, integration_cache,
            notifier=discord, config=monitoring,
        )
        summary = await runner.run_sweep([item])

        assert summary.failed == 0
        assert len(await integration_store.list_alerts(item_id=item.id)) == summary.alerts > 0


class TestPartialFailure:
    @respx.mock
    async def test_not_found_item_recorded_and_sweep_continues(
        self,
        integration_store,
        integration_cache,
        steam_fetcher,
        monitoring,
        appdetails_body,
        storage_config,
    ):
        items = [
            await integration_store.add_item(app_id, f"app {app_id}")
            for app_id in ("10", "20", "30")
        ]
        respx.get(APPDETAILS).mock(
            side_effect=_by_app(
                {
                    "10": httpx.Response(200, json=appdetails_body("10", "Ten", 1000, 1000)),
                    "20": httpx.Response(404),
                    "30": httpx.Response(200, json={"30": {"success": False}}),
                }
            )
        )

        runner = BatchRunner(integration_store, steam_fetcher, integration_cache, config=monitoring)
        summary = await runner.run_sweep(items)

        assert summary.completed == 3
        assert summary.failed == 1
        await integration_store.close()

        reopened = SqliteStore(storage_config)
        await reopened.initialize()
        try:
            sources = [
                (await reopened.latest_snapshot(i.id, include_failed=True)).source
                for i in items
            ]
            assert sources == [
                PriceSource.NORMAL,
                PriceSource.FETCH_FAILED,
                PriceSource.REMOVED,
            ]
            assert await reopened.latest_snapshot(items[1].id) is None
        finally:
            await reopened.close()

    @respx.mock
    async def test_fetch_error_reason_is_typed(self, steam_fetcher):
        respx.get(APPDETAILS).mock(return_value=httpx.Response(404))
        result = await steam_fetcher.fetch("20")
        assert result.reason == FetchFailureReason.NOT_FOUND
