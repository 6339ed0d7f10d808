"""Cache key naming scheme.

Every cached view lives under a family prefix so a whole family can be
invalidated with one ``delete_by_pattern`` call:

    item:{id}                   single tracked item
    items:list:{params}         item list views
    price:latest:{id}           latest snapshot for an item
    price:history:{id}:{limit}  snapshot history for an item
    alerts:list:{params}        alert list views
    stats:summary               dashboard statistics
    fetch:{external_id}         raw storefront observation (short TTL)
"""

from __future__ import annotations

import re

from deal_sentinel.core.models import ExternalId, ItemId


class CacheKeys:
    """Key builders and invalidation patterns."""

    @staticmethod
    def item(item_id: ItemId) -> str:
        return f"item:{item_id}"

    @staticmethod
    def item_list(params: str = "all") -> str:
        return f"items:list:{params}"

    @staticmethod
    def latest_price(item_id: ItemId) -> str:
        return f"price:latest:{item_id}"

    @staticmethod
    def price_history(item_id: ItemId, limit: int) -> str:
        return f"price:history:{item_id}:{limit}"

    @staticmethod
    def alert_list(params: str = "all") -> str:
        return f"alerts:list:{params}"

    @staticmethod
    def stats_summary() -> str:
        return "stats:summary"

    @staticmethod
    def fetch(external_id: ExternalId) -> str:
        return f"fetch:{external_id}"

    # --- Invalidation patterns ---

    # List and summary views that change whenever any item is swept
    AGGREGATES = re.compile(r"^(items:list:|alerts:list:|stats:)")

    @staticmethod
    def for_item(item_id: ItemId) -> re.Pattern:
        """Every cached view of a single item (not its raw fetch)."""
        return re.compile(
            rf"^(item:{item_id}$|price:latest:{item_id}$|price:history:{item_id}:)"
        )
