"""FastAPI route definitions for the deal-sentinel API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response

import deal_sentinel
from deal_sentinel.api.deps import (
    AppState,
    get_app_state,
    get_cache,
    get_config,
    get_runner,
    get_store,
)
from deal_sentinel.api.schemas import (
    AlertListResponse,
    AlertResponse,
    CacheStatsResponse,
    CancelResponse,
    EnabledUpdateRequest,
    HealthResponse,
    ItemCreateRequest,
    ItemListResponse,
    ItemResponse,
    PolicyUpdateRequest,
    PriceHistoryResponse,
    ProgressResponse,
    SnapshotResponse,
    StatsResponse,
    SweepStartResponse,
)
from deal_sentinel.cache import CacheKeys, CacheStore, cached_lookup
from deal_sentinel.core.config import SentinelConfig
from deal_sentinel.core.models import AlertKind, TrackedItem
from deal_sentinel.engine import BatchRunner
from deal_sentinel.storage import SqliteStore

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(state: AppState = Depends(get_app_state)):
    """System health and basic statistics."""
    db_ok = await state.store.health_check()
    stats = await state.store.get_statistics() if db_ok else {}
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=deal_sentinel.__version__,
        database_ok=db_ok,
        total_items=stats.get("total_items", 0),
        enabled_items=stats.get("enabled_items", 0),
        sweep_running=state.runner.is_running,
        scheduler_enabled=state.scheduler.enabled,
    )


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(cache: CacheStore = Depends(get_cache)):
    """Size and key listing of the in-process cache."""
    stats = cache.stats()
    return CacheStatsResponse(
        size=stats.size,
        keys=stats.keys,
        approx_byte_size=stats.approx_byte_size,
        hits=stats.hits,
        misses=stats.misses,
    )


# -- Items --


@router.get("/items", response_model=ItemListResponse)
async def list_items(
    enabled_only: bool = Query(False),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
    config: SentinelConfig = Depends(get_config),
):
    """List tracked items with pagination."""

    async def load() -> ItemListResponse:
        items = await store.list_items(enabled_only=enabled_only)
        page = items[offset : offset + limit]
        return ItemListResponse(
            total=len(items),
            offset=offset,
            limit=limit,
            items=[ItemResponse.from_item(i) for i in page],
        )

    key = CacheKeys.item_list(f"enabled={enabled_only}:offset={offset}:limit={limit}")
    return await cached_lookup(cache, key, config.cache.default_ttl_seconds, load)


@router.post("/items", response_model=ItemResponse, status_code=201)
async def add_item(
    request: ItemCreateRequest,
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
):
    """Register a storefront item for monitoring."""
    if await store.get_item_by_external_id(request.external_id) is not None:
        raise HTTPException(
            status_code=409,
            detail=f"Item '{request.external_id}' is already tracked",
        )
    item = await store.add_item(
        request.external_id,
        request.display_name or f"app {request.external_id}",
        enabled=request.enabled,
        alert_enabled=request.alert_enabled,
        policy=request.policy,
    )
    _invalidate_item(cache, item.id)
    return ItemResponse.from_item(item)


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: int,
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
    config: SentinelConfig = Depends(get_config),
):
    async def load() -> ItemResponse | None:
        item = await store.get_item(item_id)
        return ItemResponse.from_item(item) if item is not None else None

    result = await cached_lookup(
        cache, CacheKeys.item(item_id), config.cache.default_ttl_seconds, load
    )
    if result is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return result


@router.put("/items/{item_id}/policy", response_model=ItemResponse)
async def set_item_policy(
    item_id: int,
    request: PolicyUpdateRequest,
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
):
    """Replace (or clear) an item's alert policy."""
    await _require_item(store, item_id)
    item = await store.set_policy(item_id, request.policy, request.alert_enabled)
    _invalidate_item(cache, item_id)
    return ItemResponse.from_item(item)


@router.put("/items/{item_id}/enabled", response_model=ItemResponse)
async def set_item_enabled(
    item_id: int,
    request: EnabledUpdateRequest,
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
):
    await _require_item(store, item_id)
    item = await store.set_item_enabled(item_id, request.enabled)
    _invalidate_item(cache, item_id)
    return ItemResponse.from_item(item)


# -- Prices --


@router.get("/items/{item_id}/price", response_model=SnapshotResponse)
async def latest_price(
    item_id: int,
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
    config: SentinelConfig = Depends(get_config),
):
    """Latest recorded price for an item."""

    async def load() -> SnapshotResponse | None:
        snapshot = await store.latest_snapshot(item_id)
        return SnapshotResponse.from_snapshot(snapshot) if snapshot else None

    result = await cached_lookup(
        cache, CacheKeys.latest_price(item_id), config.cache.default_ttl_seconds, load
    )
    if result is None:
        raise HTTPException(status_code=404, detail=f"No price recorded for item {item_id}")
    return result


@router.get("/items/{item_id}/history", response_model=PriceHistoryResponse)
async def price_history(
    item_id: int,
    limit: int = Query(30, ge=1, le=1000),
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
    config: SentinelConfig = Depends(get_config),
):
    """Snapshot history for an item, newest first, failure markers included."""
    await _require_item(store, item_id)

    async def load() -> PriceHistoryResponse:
        snapshots = await store.list_snapshots(item_id, limit=limit)
        return PriceHistoryResponse(
            item_id=item_id,
            limit=limit,
            snapshots=[SnapshotResponse.from_snapshot(s) for s in snapshots],
        )

    return await cached_lookup(
        cache,
        CacheKeys.price_history(item_id, limit),
        config.cache.default_ttl_seconds,
        load,
    )


# -- Alerts --


@router.get("/alerts", response_model=AlertListResponse)
async def list_alerts(
    item_id: int | None = Query(None),
    kind: AlertKind | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    store: SqliteStore = Depends(get_store),
    cache: CacheStore = Depends(get_cache),
    config: SentinelConfig = Depends(get_config),
):
    """Alert history, newest first."""

    async def load() -> AlertListResponse:
        alerts = await store.list_alerts(item_id=item_id, kind=kind)
        page = alerts[offset : offset + limit]
        return AlertListResponse(
            total=len(alerts),
            offset=offset,
            limit=limit,
            items=[AlertResponse.from_event(a) for a in page],
        )

    key = CacheKeys.alert_list(
        f"item={item_id}:kind={kind}:offset={offset}:limit={limit}"
    )
    return await cached_lookup(cache, key, config.cache.default_ttl_seconds, load)


# -- Statistics --


@router.get("/stats", response_model=StatsResponse)
async def stats_summary(state: AppState = Depends(get_app_state)):
    async def load() -> StatsResponse:
        counts = await state.store.get_statistics()
        return StatsResponse(
            **counts, last_run_at=state.runner.get_progress().last_run_at
        )

    return await cached_lookup(
        state.cache,
        CacheKeys.stats_summary(),
        state.config.cache.default_ttl_seconds,
        load,
    )


# -- Monitoring --


@router.post("/monitoring/sweep", response_model=SweepStartResponse)
async def start_sweep(
    response: Response,
    store: SqliteStore = Depends(get_store),
    runner: BatchRunner = Depends(get_runner),
):
    """Start a sweep over every enabled item. Returns immediately."""
    items = await store.list_enabled_items()
    result = runner.start_sweep(items)
    if not result.success:
        response.status_code = 409
    return SweepStartResponse(**result.model_dump())


@router.post("/monitoring/items/{item_id}/refresh", response_model=SweepStartResponse)
async def refresh_item(
    item_id: int,
    response: Response,
    store: SqliteStore = Depends(get_store),
    runner: BatchRunner = Depends(get_runner),
):
    """Run a one-item sweep."""
    item = await _require_item(store, item_id)
    result = runner.start_sweep([item])
    if not result.success:
        response.status_code = 409
    return SweepStartResponse(**result.model_dump())


@router.get("/monitoring/progress", response_model=ProgressResponse)
async def sweep_progress(runner: BatchRunner = Depends(get_runner)):
    """Poll the current (or last) sweep's state."""
    return ProgressResponse.from_state(runner.get_progress())


@router.post("/monitoring/sweep/{run_id}/cancel", response_model=CancelResponse)
async def cancel_sweep(run_id: str, runner: BatchRunner = Depends(get_runner)):
    """Ask a running sweep to stop at the next item boundary."""
    if not runner.cancel(run_id):
        raise HTTPException(status_code=404, detail=f"No running sweep '{run_id}'")
    return CancelResponse(success=True, run_id=run_id)


# -- Helpers --


async def _require_item(store: SqliteStore, item_id: int) -> TrackedItem:
    item = await store.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return item


def _invalidate_item(cache: CacheStore, item_id: int) -> None:
    cache.delete_by_pattern(CacheKeys.for_item(item_id))
    cache.delete_by_pattern(CacheKeys.AGGREGATES)
