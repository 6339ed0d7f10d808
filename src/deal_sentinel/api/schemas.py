"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from deal_sentinel.core.models import (
    AlertEvent,
    AlertPolicy,
    PriceSnapshot,
    RunState,
    TrackedItem,
)


# -- Pagination --


class PaginatedResponse(BaseModel):
    """Wrapper for paginated list responses."""

    total: int
    offset: int
    limit: int


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    status: str
    version: str
    database_ok: bool
    total_items: int
    enabled_items: int
    sweep_running: bool
    scheduler_enabled: bool


class CacheStatsResponse(BaseModel):
    size: int
    keys: list[str]
    approx_byte_size: int
    hits: int
    misses: int


# -- Items --


class ItemCreateRequest(BaseModel):
    """Register a storefront item for monitoring."""

    external_id: str = Field(..., min_length=1, max_length=32)
    display_name: str | None = None
    enabled: bool = True
    alert_enabled: bool = True
    policy: AlertPolicy | None = None

    @field_validator("external_id")
    @classmethod
    def external_id_is_numeric(cls, v: str) -> str:
        v = v.strip()
        if not v.isdigit():
            raise ValueError("external_id must be a numeric storefront app id")
        return v


class PolicyUpdateRequest(BaseModel):
    policy: AlertPolicy | None = None
    alert_enabled: bool | None = None


class EnabledUpdateRequest(BaseModel):
    enabled: bool


class ItemResponse(BaseModel):
    """Tracked item in API response format."""

    id: int
    external_id: str
    display_name: str
    enabled: bool
    alert_enabled: bool
    policy: AlertPolicy | None = None
    was_unreleased: bool

    @classmethod
    def from_item(cls, item: TrackedItem) -> ItemResponse:
        return cls.model_validate(item.model_dump(mode="json"))


class ItemListResponse(PaginatedResponse):
    items: list[ItemResponse]


# -- Prices --


class SnapshotResponse(BaseModel):
    """One price snapshot in API response format."""

    item_id: int
    current_price: float
    original_price: float
    discount_percent: int
    is_on_sale: bool
    historical_low: float
    source: str
    recorded_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: PriceSnapshot) -> SnapshotResponse:
        data = snapshot.model_dump(mode="json")
        data["discount_percent"] = snapshot.effective_discount
        return cls.model_validate(data)


class PriceHistoryResponse(BaseModel):
    item_id: int
    limit: int
    snapshots: list[SnapshotResponse]


# -- Alerts --


class AlertResponse(BaseModel):
    item_id: int
    kind: str
    trigger_price: float
    previous_low: float | None = None
    discount_percent: int
    created_at: datetime

    @classmethod
    def from_event(cls, event: AlertEvent) -> AlertResponse:
        return cls.model_validate(event.model_dump(mode="json"))


class AlertListResponse(PaginatedResponse):
    items: list[AlertResponse]


# -- Statistics --


class StatsResponse(BaseModel):
    total_items: int
    enabled_items: int
    total_snapshots: int
    total_alerts: int
    last_run_at: datetime | None = None


# -- Monitoring --


class SweepStartResponse(BaseModel):
    """Outcome of a sweep or refresh request."""

    success: bool
    run_id: str | None = None
    error: str | None = None


class CancelResponse(BaseModel):
    success: bool
    run_id: str


class ProgressResponse(BaseModel):
    """Current (or last) sweep state for pollers."""

    is_running: bool
    run_id: str | None = None
    current_item_label: str | None = None
    completed_count: int
    total_count: int
    failed_count: int
    started_at: datetime | None = None
    estimated_seconds_remaining: int | None = None
    last_run_at: datetime | None = None
    cancelled: bool
    percent_complete: float

    @classmethod
    def from_state(cls, state: RunState) -> ProgressResponse:
        return cls(**state.model_dump(), percent_complete=state.percent_complete)
