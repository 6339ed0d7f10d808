"""Tests for deal_sentinel.pricing.steam (SteamStorePriceFetcher)."""

from __future__ import annotations

import httpx
import pytest
import respx

from deal_sentinel.core.config import StoreAPIConfig
from deal_sentinel.core.models import FetchError, FetchFailureReason, RawObservation
from deal_sentinel.pricing import PriceFetcher
from deal_sentinel.pricing.steam import (
    SteamAppDetailsAdapter,
    SteamStorePriceFetcher,
    _retry_after_seconds,
)

APPDETAILS = "https://store.steampowered.com/api/appdetails"


# --- Fixtures ---


@pytest.fixture
def store_config() -> StoreAPIConfig:
    return StoreAPIConfig(request_interval_seconds=0.01, request_timeout=5)


@pytest.fixture
async def fetcher(store_config: StoreAPIConfig) -> SteamStorePriceFetcher:
    async with SteamStorePriceFetcher(store_config) as f:
        yield f


def appdetails(app_id: str, **data) -> dict:
    """Mock ``appdetails`` body for one app."""
    return {app_id: {"success": True, "data": {"name": "Stardew Valley", **data}}}


# --- Adapter ---


@pytest.mark.unit
class TestSteamAppDetailsAdapter:
    adapter = SteamAppDetailsAdapter()

    def test_discounted_price(self):
        body = appdetails(
            "413150",
            price_overview={"initial": 149800, "final": 104800, "discount_percent": 30},
        )
        result = self.adapter.adapt(body, "413150")
        assert result == RawObservation(
            current_price=1048,
            original_price=1498,
            is_on_sale=True,
            display_name="Stardew Valley",
        )

    def test_full_price(self):
        body = appdetails(
            "413150",
            price_overview={"initial": 149800, "final": 149800, "discount_percent": 0},
        )
        result = self.adapter.adapt(body, "413150")
        assert result.current_price == 1498
        assert result.is_on_sale is False

    def test_free(self):
        result = self.adapter.adapt(appdetails("570", is_free=True), "570")
        assert result.is_free is True

    def test_coming_soon(self):
        body = appdetails("999", release_date={"coming_soon": True, "date": "2025年春"})
        result = self.adapter.adapt(body, "999")
        assert result.is_unreleased is True
        assert result.release_date == "2025年春"

    def test_unsuccessful_is_removed(self):
        result = self.adapter.adapt({"123": {"success": False}}, "123")
        assert result == RawObservation(is_removed=True)

    def test_no_price_overview_is_removed(self):
        result = self.adapter.adapt(appdetails("123"), "123")
        assert result.is_removed is True
        assert result.display_name == "Stardew Valley"

    @pytest.mark.parametrize(
        "body",
        [
            [],
            {"other": {"success": True}},
            {"123": {"success": True, "data": {"price_overview": {"final": "x"}}}},
        ],
    )
    def test_malformed(self, body):
        result = self.adapter.adapt(body, "123")
        assert isinstance(result, FetchError)
        assert result.reason == FetchFailureReason.MALFORMED


# --- Fetcher ---


@pytest.mark.unit
class TestSteamStorePriceFetcher:
    def test_satisfies_protocol(self, store_config):
        assert isinstance(SteamStorePriceFetcher(store_config), PriceFetcher)

    @respx.mock
    async def test_fetch_sends_region_params(self, fetcher):
        route = respx.get(APPDETAILS).mock(
            return_value=httpx.Response(
                200,
                json=appdetails(
                    "413150",
                    price_overview={"initial": 149800, "final": 149800},
                ),
            )
        )
        result = await fetcher.fetch("413150")
        assert isinstance(result, RawObservation)
        params = route.calls.last.request.url.params
        assert params["appids"] == "413150"
        assert params["cc"] == "JP"
        assert params["l"] == "japanese"

    @respx.mock
    async def test_404_is_not_found(self, fetcher):
        respx.get(APPDETAILS).mock(return_value=httpx.Response(404))
        result = await fetcher.fetch("1")
        assert result.reason == FetchFailureReason.NOT_FOUND

    @respx.mock
    async def test_403_is_http_error(self, fetcher):
        respx.get(APPDETAILS).mock(return_value=httpx.Response(403))
        result = await fetcher.fetch("1")
        assert result.reason == FetchFailureReason.HTTP_ERROR

    @respx.mock
    async def test_invalid_json_is_malformed(self, fetcher):
        respx.get(APPDETAILS).mock(return_value=httpx.Response(200, text="<html>"))
        result = await fetcher.fetch("1")
        assert result.reason == FetchFailureReason.MALFORMED

    @respx.mock
    async def test_timeout(self, fetcher):
        respx.get(APPDETAILS).mock(side_effect=httpx.ReadTimeout("slow"))
        result = await fetcher.fetch("1")
        assert result.reason == FetchFailureReason.TIMEOUT

    @respx.mock
    async def test_retries_on_429(self, fetcher):
        route = respx.get(APPDETAILS)
        route.side_effect = [
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json=appdetails("570", is_free=True)),
        ]
        result = await fetcher.fetch("570")
        assert result.is_free is True
        assert route.call_count == 2

    @respx.mock
    async def test_rate_limit_exhausted(self, fetcher):
        route = respx.get(APPDETAILS).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "0"})
        )
        result = await fetcher.fetch("570")
        assert result.reason == FetchFailureReason.HTTP_ERROR
        assert route.call_count == 3

    @respx.mock
    async def test_retry_after_http_date_uses_default_wait(self, fetcher, monkeypatch):
        monkeypatch.setattr("deal_sentinel.pricing.steam._DEFAULT_RETRY_AFTER", 0)
        route = respx.get(APPDETAILS)
        route.side_effect = [
            httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            httpx.Response(200, json=appdetails("570", is_free=True)),
        ]
        result = await fetcher.fetch("570")
        assert isinstance(result, RawObservation)
        assert result.is_free is True
        assert route.call_count == 2

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            (None, 10),
            ("3", 3),
            (" 7 ", 7),
            ("-5", 0),
            ("Wed, 21 Oct 2015 07:28:00 GMT", 10),
            ("soon", 10),
        ],
    )
    def test_retry_after_seconds(self, header, expected):
        assert _retry_after_seconds(header) == expected

    @respx.mock
    async def test_retries_on_server_error(self, fetcher):
        route = respx.get(APPDETAILS)
        route.side_effect = [
            httpx.Response(503),
            httpx.Response(200, json=appdetails("570", is_free=True)),
        ]
        result = await fetcher.fetch("570")
        assert isinstance(result, RawObservation)
        assert route.call_count == 2

    @respx.mock
    async def test_health_check(self, fetcher):
        respx.get(APPDETAILS).mock(
            return_value=httpx.Response(200, json=appdetails("730", is_free=True))
        )
        assert await fetcher.health_check() is True

    async def test_async_context_manager(self, store_config):
        async with SteamStorePriceFetcher(store_config) as f:
            assert f is not None
        assert f._client.is_closed
