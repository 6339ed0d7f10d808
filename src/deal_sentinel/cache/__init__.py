"""In-process TTL cache and the key naming scheme."""

from deal_sentinel.cache.keys import CacheKeys
from deal_sentinel.cache.store import CacheEntry, CacheStats, CacheStore, cached_lookup

__all__ = [
    "CacheEntry",
    "CacheKeys",
    "CacheStats",
    "CacheStore",
    "cached_lookup",
]
