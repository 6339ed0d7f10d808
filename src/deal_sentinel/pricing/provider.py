"""Price fetcher protocol: the engine's only view of the price source.

Architecture
------------
    Storefront API → PriceFetcher.fetch() → RawObservation | FetchError → BatchRunner

A fetcher never raises for an expected failure (delisted item, HTTP
error, timeout); it returns a typed :class:`FetchError` instead. The
runner still guards against fetchers that do raise and records those
items as failed.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from deal_sentinel.core.models import ExternalId, FetchResult


@runtime_checkable
class PriceFetcher(Protocol):
    """Consumer-facing interface for reading one item's current price."""

    async def fetch(self, external_id: ExternalId) -> FetchResult:
        """Return the item's current observation or a typed failure."""
        ...
