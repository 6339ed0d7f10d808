"""Steam storefront price fetcher: rate-limited httpx client.

Uses the unauthenticated ``/api/appdetails`` endpoint. The storefront
throttles aggressively, so requests go through a token bucket that allows
one call per ``request_interval_seconds`` (3 s by default).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from deal_sentinel.core.config import StoreAPIConfig
from deal_sentinel.core.exceptions import FetchFailedError, RateLimitError
from deal_sentinel.core.models import (
    ExternalId,
    FetchError,
    FetchFailureReason,
    FetchResult,
    RawObservation,
)

logger = logging.getLogger(__name__)

_APPDETAILS_PATH = "/api/appdetails"
_USER_AGENT = "Mozilla/5.0 (compatible; deal-sentinel/0.1)"

# Retry configuration
_MAX_RETRIES_429 = 2
_DEFAULT_RETRY_AFTER = 10
_MAX_RETRIES_SERVER = 2
_MAX_RETRIES_CONNECTION = 1
_CONNECTION_RETRY_DELAY = 2.0

# Storefront prices are reported in minor units
_MINOR_UNITS = 100


class SteamAppDetailsAdapter:
    """Transforms a raw ``appdetails`` response into a fetch result."""

    def adapt(self, raw_data: Any, external_id: ExternalId) -> FetchResult:
        """Classify the app's storefront state.

        Parameters
        ----------
        raw_data : dict
            Full JSON body, keyed by app id.
        external_id : str
            The app id that was requested.

        Returns
        -------
        RawObservation | FetchError
            ``success: false`` and apps without a purchasable price are
            reported as removed; a body without the requested app is a
            malformed-response failure.
        """
        if not isinstance(raw_data, dict):
            return _malformed(external_id, "response is not a JSON object")
        entry = raw_data.get(str(external_id))
        if not isinstance(entry, dict):
            return _malformed(external_id, "app id missing from response")

        if not entry.get("success"):
            return RawObservation(is_removed=True)

        data = entry.get("data") or {}
        name = data.get("name")

        if data.get("is_free"):
            return RawObservation(is_free=True, display_name=name)

        release = data.get("release_date") or {}
        if release.get("coming_soon"):
            return RawObservation(
                is_unreleased=True,
                display_name=name,
                release_date=release.get("date") or None,
            )

        overview = data.get("price_overview")
        if not overview:
            return RawObservation(is_removed=True, display_name=name)

        try:
            final = float(overview["final"]) / _MINOR_UNITS
            initial = float(overview["initial"]) / _MINOR_UNITS
            cut = int(overview.get("discount_percent", 0))
        except (KeyError, TypeError, ValueError) as e:
            return _malformed(external_id, f"bad price_overview: {e}")

        return RawObservation(
            current_price=final,
            original_price=initial if initial > 0 else final,
            is_on_sale=cut > 0,
            display_name=name,
        )


class SteamStorePriceFetcher:
    """Rate-limited async PriceFetcher for the Steam storefront.

    Use via ``async with SteamStorePriceFetcher(config) as fetcher:``.
    """

    def __init__(
        self,
        config: StoreAPIConfig,
        adapter: SteamAppDetailsAdapter | None = None,
    ) -> None:
        self._config = config
        self._adapter = adapter or SteamAppDetailsAdapter()
        self._limiter = AsyncLimiter(
            max_rate=1, time_period=config.request_interval_seconds
        )
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"User-Agent": _USER_AGENT},
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> SteamStorePriceFetcher:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def fetch(self, external_id: ExternalId) -> FetchResult:
        """Fetch and classify one app. Never raises for HTTP-level failures."""
        params = {
            "appids": str(external_id),
            "cc": self._config.country_code,
            "l": self._config.language,
        }
        try:
            response = await self._rate_limited_request(
                "GET", _APPDETAILS_PATH, params=params
            )
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Timed out fetching app %s: %s", external_id, e)
            return FetchError(
                external_id=external_id,
                reason=FetchFailureReason.TIMEOUT,
                message=str(e),
            )
        except FetchFailedError as e:
            logger.warning("Failed to fetch app %s: %s", external_id, e)
            status = e.context.get("status_code")
            return FetchError(
                external_id=external_id,
                reason=(
                    FetchFailureReason.NOT_FOUND
                    if status == 404
                    else FetchFailureReason.HTTP_ERROR
                ),
                message=str(e),
            )
        except ValueError as e:
            return _malformed(external_id, f"invalid JSON: {e}")

        result = self._adapter.adapt(body, external_id)
        logger.debug("Fetched app %s: %s", external_id, result)
        return result

    async def health_check(self, sample_id: ExternalId = "730") -> bool:
        """True when the storefront answers for a well-known app."""
        result = await self.fetch(sample_id)
        return isinstance(result, RawObservation)

    # --- Rate Limiting & Retry ---

    async def _rate_limited_request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Execute an HTTP request with rate limiting and retry logic.

        Retry policy:
            - HTTP 429: wait for Retry-After (or 10s), retry up to 2 times.
            - HTTP 500/502/503: exponential backoff, retry up to 2 times.
            - Other HTTP errors: raise immediately.
            - Connection errors: retry once after 2s.

        Raises:
            RateLimitError: If retries exhausted on 429 responses.
            FetchFailedError: Any other non-200 outcome.
        """
        for attempt in range(_MAX_RETRIES_429 + 1):
            try:
                await self._limiter.acquire()
                response = await self._client.request(method, url, **kwargs)

                if response.status_code == 200:
                    return response

                if response.status_code == 429:
                    retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
                    if attempt < _MAX_RETRIES_429:
                        logger.warning(
                            "Rate limited (429) on %s, waiting %ds (attempt %d/%d)",
                            url, retry_after, attempt + 1, _MAX_RETRIES_429,
                        )
                        await asyncio.sleep(retry_after)
                        continue
                    raise RateLimitError(
                        f"Rate limit exceeded after {_MAX_RETRIES_429} retries: {url}",
                        context={"url": url, "retry_after": retry_after, "status_code": 429},
                    )

                if response.status_code in (500, 502, 503):
                    if attempt < _MAX_RETRIES_SERVER:
                        delay = 2**attempt
                        logger.warning(
                            "Server error %d on %s, retrying in %ds (attempt %d/%d)",
                            response.status_code, url, delay,
                            attempt + 1, _MAX_RETRIES_SERVER,
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise FetchFailedError(
                        f"Server error {response.status_code} after retries: {url}",
                        context={"url": url, "status_code": response.status_code},
                    )

                raise FetchFailedError(
                    f"HTTP {response.status_code} from {url}",
                    context={"url": url, "status_code": response.status_code},
                )

            except httpx.ConnectError as e:
                if attempt < _MAX_RETRIES_CONNECTION:
                    logger.warning(
                        "Connection error on %s, retrying in %ds",
                        url, _CONNECTION_RETRY_DELAY,
                    )
                    await asyncio.sleep(_CONNECTION_RETRY_DELAY)
                    continue
                raise FetchFailedError(
                    f"Connection failed after retries: {url}",
                    context={"url": url, "error": str(e)},
                ) from e

        raise FetchFailedError(
            f"Request failed after all retries: {url}",
            context={"url": url},
        )


def _retry_after_seconds(value: str | None) -> int:
    """Delay in whole seconds from a Retry-After header.

    Only the delta-seconds form is honoured. HTTP-dates and junk fall back
    to the default wait.
    """
    if value is None:
        return _DEFAULT_RETRY_AFTER
    try:
        seconds = int(value.strip())
    except ValueError:
        logger.debug("Unparseable Retry-After %r, using %ds", value, _DEFAULT_RETRY_AFTER)
        return _DEFAULT_RETRY_AFTER
    return max(seconds, 0)


def _malformed(external_id: ExternalId, message: str) -> FetchError:
    return FetchError(
        external_id=external_id,
        reason=FetchFailureReason.MALFORMED,
        message=message,
    )
