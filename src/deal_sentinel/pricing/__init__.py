"""Price sources for the monitoring engine.

- ``PriceFetcher``: protocol the engine depends on.
- ``SteamStorePriceFetcher``: rate-limited Steam storefront implementation.
- ``SteamAppDetailsAdapter``: classifies raw ``appdetails`` JSON.

Adding a new price source means writing one class with an async
``fetch(external_id)`` method; the engine needs no changes.
"""

from deal_sentinel.pricing.provider import PriceFetcher
from deal_sentinel.pricing.steam import SteamAppDetailsAdapter, SteamStorePriceFetcher

__all__ = [
    "PriceFetcher",
    "SteamAppDetailsAdapter",
    "SteamStorePriceFetcher",
]
