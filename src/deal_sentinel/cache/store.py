"""In-process TTL cache with pattern invalidation and periodic eviction."""

from __future__ import annotations

import copy
import json
import logging
import re
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from deal_sentinel.core.tasks import PeriodicTask

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300
DEFAULT_EVICTION_INTERVAL = 300.0

KeyPattern = Callable[[str], bool] | re.Pattern | str


@dataclass
class CacheEntry(Generic[T]):
    """A stored value plus the time it was written and its lifetime."""

    value: T
    stored_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        # ttl <= 0 is already expired at write time
        return now >= self.stored_at + self.ttl_seconds


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""

    size: int
    keys: list[str] = field(default_factory=list)
    approx_byte_size: int = 0
    hits: int = 0
    misses: int = 0


class CacheStore:
    """Best-effort key/value cache with per-entry TTL.

    Values are deep-copied on the way in and on the way out, so callers can
    never mutate cached state in place. Missing or expired keys read as
    ``None``; no operation raises for an unknown key.

    One instance is created per process by the composition root. Call
    :meth:`start` from inside the event loop to launch the eviction timer
    and :meth:`close` on shutdown to cancel it.

    Parameters
    ----------
    default_ttl : float
        TTL in seconds used when ``set`` is called without one.
    eviction_interval : float
        Seconds between background sweeps of expired entries.
    clock : Callable[[], float]
        Monotonic time source. Injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        eviction_interval: float = DEFAULT_EVICTION_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._eviction_interval = eviction_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._lock = threading.RLock()
        self._evictor: PeriodicTask | None = None
        self._hits = 0
        self._misses = 0

    # --- Lifecycle ---

    def start(self) -> None:
        """Launch the periodic eviction task on the running event loop."""
        if self._evictor is None:
            self._evictor = PeriodicTask(
                self.evict_expired,
                self._eviction_interval,
                name="cache-eviction",
            )
        self._evictor.start()

    async def close(self) -> None:
        """Cancel the eviction task and drop every entry."""
        if self._evictor is not None:
            self._evictor.stop()
            await self._evictor.join()
            self._evictor = None
        self.clear()

    @property
    def evicting(self) -> bool:
        return self._evictor is not None and self._evictor.is_running

    # --- Core Operations ---

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key``. ``ttl_seconds <= 0`` expires at once."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        entry = CacheEntry(
            value=copy.deepcopy(value),
            stored_at=self._clock(),
            ttl_seconds=ttl,
        )
        with self._lock:
            self._entries[key] = entry

    def get(self, key: str) -> Any | None:
        """Return a copy of the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            value = entry.value
        return copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_by_pattern(self, pattern: KeyPattern) -> int:
        """Delete every key matching ``pattern`` and return how many went.

        ``pattern`` may be a predicate, a compiled regex (matched with
        ``search``), or a plain string treated as a key prefix.
        """
        matches = _as_predicate(pattern)
        with self._lock:
            doomed = [k for k in self._entries if matches(k)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache keys", len(doomed))
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def evict_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Cache cleanup: removed %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> CacheStats:
        """Return size, live keys, and a rough serialized size estimate."""
        with self._lock:
            keys = list(self._entries.keys())
            snapshot = {k: e.value for k, e in self._entries.items()}
            hits, misses = self._hits, self._misses
        try:
            approx = len(json.dumps(snapshot, default=_json_default))
        except (TypeError, ValueError):
            approx = 0
        return CacheStats(
            size=len(keys),
            keys=keys,
            approx_byte_size=approx,
            hits=hits,
            misses=misses,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


async def cached_lookup(
    cache: CacheStore,
    key: str,
    ttl_seconds: float,
    fn: Callable[[], Awaitable[T | None]],
    *,
    cache_if: Callable[[T], bool] | None = None,
) -> T | None:
    """Memoize an async lookup in ``cache`` under a caller-derived ``key``.

    A cached value is returned without calling ``fn``. Otherwise ``fn`` is
    awaited and its result cached for ``ttl_seconds``, but only when it is
    not None and passes ``cache_if``. Anything else is returned uncached so
    the next call retries the lookup.
    """
    hit = cache.get(key)
    if hit is not None:
        logger.debug("Cache hit for key: %s", key)
        return hit

    logger.debug("Cache miss for key: %s", key)
    result = await fn()
    if result is not None and (cache_if is None or cache_if(result)):
        cache.set(key, result, ttl_seconds)
    return result


def _as_predicate(pattern: KeyPattern) -> Callable[[str], bool]:
    if isinstance(pattern, str):
        prefix = pattern
        return lambda key: key.startswith(prefix)
    if isinstance(pattern, re.Pattern):
        compiled = pattern
        return lambda key: compiled.search(key) is not None
    return pattern


def _json_default(obj: Any) -> Any:
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    return str(obj)
