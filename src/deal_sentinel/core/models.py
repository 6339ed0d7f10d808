"""Pydantic data models: the system's type contracts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

ItemId = int
ExternalId = str
RunId = str

# --- Enumerations ---


class PriceSource(StrEnum):
    """Classification of a price snapshot."""

    NORMAL = "normal"
    FREE = "free"
    UNRELEASED = "unreleased"
    REMOVED = "removed"
    FETCH_FAILED = "fetch_failed"


class AlertKind(StrEnum):
    """Alert event types, in evaluation priority order."""

    RELEASED = "released"
    FREE_GAME = "free_game"
    NEW_LOW = "new_low"
    THRESHOLD_MET = "threshold_met"
    SALE_START = "sale_start"


class FetchFailureReason(StrEnum):
    """Why a price lookup produced no observation."""

    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    EXCEPTION = "exception"


# --- Alert Policies ---


class PriceBelow(BaseModel):
    """Alert when the current price drops to or below `amount`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["price_below"] = "price_below"
    amount: float

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"amount must be > 0, got {v}")
        return v


class DiscountAtLeast(BaseModel):
    """Alert when the discount reaches `percent` or more."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["discount_at_least"] = "discount_at_least"
    percent: int

    @field_validator("percent")
    @classmethod
    def percent_in_range(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError(f"percent must be in [1, 100], got {v}")
        return v


class AnySaleStart(BaseModel):
    """Alert whenever a sale begins."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["any_sale_start"] = "any_sale_start"


AlertPolicy = Annotated[
    Union[PriceBelow, DiscountAtLeast, AnySaleStart],
    Field(discriminator="kind"),
]


# --- Tracked Items ---


class TrackedItem(BaseModel):
    """A storefront item on the watch list."""

    model_config = ConfigDict(frozen=True)

    id: ItemId
    external_id: ExternalId
    display_name: str
    enabled: bool = True
    alert_enabled: bool = True
    policy: AlertPolicy | None = None
    was_unreleased: bool = False

    @field_validator("external_id")
    @classmethod
    def external_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("external_id must not be blank")
        return v.strip()

    @property
    def label(self) -> str:
        """Human-readable label used in progress reporting."""
        return f"{self.display_name} ({self.external_id})"


# --- Price Observations ---


class RawObservation(BaseModel):
    """One successful read from the price source, before classification."""

    model_config = ConfigDict(frozen=True)

    current_price: float = 0.0
    original_price: float = 0.0
    is_on_sale: bool = False
    is_free: bool = False
    is_unreleased: bool = False
    is_removed: bool = False
    display_name: str | None = None
    release_date: str | None = None

    @field_validator("current_price", "original_price")
    @classmethod
    def price_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"price must be >= 0, got {v}")
        return v


class FetchError(BaseModel):
    """Typed failure returned by a PriceFetcher instead of an observation."""

    model_config = ConfigDict(frozen=True)

    external_id: ExternalId
    reason: FetchFailureReason
    message: str = ""


FetchResult = RawObservation | FetchError


class PriceSnapshot(BaseModel):
    """A classified, append-only price record for one item."""

    model_config = ConfigDict(frozen=True)

    item_id: ItemId
    current_price: float
    original_price: float
    discount_percent: int = 0
    is_on_sale: bool = False
    historical_low: float
    source: PriceSource
    recorded_at: datetime

    @field_validator("discount_percent")
    @classmethod
    def discount_in_range(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"discount_percent must be in [0, 100], got {v}")
        return v

    @model_validator(mode="after")
    def discount_only_for_normal(self) -> PriceSnapshot:
        if self.source != PriceSource.NORMAL and self.discount_percent != 0:
            raise ValueError(
                f"discount_percent must be 0 for source={self.source}, "
                f"got {self.discount_percent}"
            )
        return self

    @property
    def effective_discount(self) -> int:
        """Discount consumers may rely on: 0 unless the price is normal."""
        if self.source != PriceSource.NORMAL or self.original_price <= 0:
            return 0
        return self.discount_percent


class Evaluation(BaseModel):
    """Output of the price evaluator for one observation."""

    model_config = ConfigDict(frozen=True)

    snapshot: PriceSnapshot
    is_new_historical_low: bool = False
    is_release: bool = False


# --- Alerts ---


class AlertEvent(BaseModel):
    """An alert raised for one item during a sweep."""

    model_config = ConfigDict(frozen=True)

    item_id: ItemId
    kind: AlertKind
    trigger_price: float
    previous_low: float | None = None
    discount_percent: int = 0
    created_at: datetime


# --- Run State ---


class RunState(BaseModel):
    """Read-only copy of the current (or last) sweep's progress."""

    model_config = ConfigDict(frozen=True)

    is_running: bool = False
    run_id: RunId | None = None
    current_item_label: str | None = None
    completed_count: int = 0
    total_count: int = 0
    failed_count: int = 0
    started_at: datetime | None = None
    estimated_seconds_remaining: int | None = None
    last_run_at: datetime | None = None
    cancelled: bool = False

    @property
    def percent_complete(self) -> float:
        if self.total_count == 0:
            return 0.0
        return round(100.0 * self.completed_count / self.total_count, 1)


class StartResult(BaseModel):
    """Outcome of a sweep start request."""

    model_config = ConfigDict(frozen=True)

    success: bool
    run_id: RunId | None = None
    error: str | None = None


class SweepSummary(BaseModel):
    """Totals for a finished sweep."""

    model_config = ConfigDict(frozen=True)

    run_id: RunId
    total: int
    completed: int
    failed: int
    alerts: int
    cancelled: bool = False
    duration_seconds: float = 0.0
