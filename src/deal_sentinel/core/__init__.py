"""deal_sentinel.core: Foundation types, config, and exceptions."""

from deal_sentinel.core.config import (
    APIConfig,
    CacheConfig,
    MonitoringConfig,
    NotificationsConfig,
    SentinelConfig,
    StorageConfig,
    StoreAPIConfig,
    load_config,
)
from deal_sentinel.core.exceptions import (
    ConfigError,
    DealSentinelError,
    FetchFailedError,
    NotificationError,
    RateLimitError,
    StorageError,
    SweepError,
)
from deal_sentinel.core.models import (
    AlertEvent,
    AlertKind,
    AlertPolicy,
    AnySaleStart,
    DiscountAtLeast,
    Evaluation,
    ExternalId,
    FetchError,
    FetchFailureReason,
    FetchResult,
    ItemId,
    PriceBelow,
    PriceSnapshot,
    PriceSource,
    RawObservation,
    RunId,
    RunState,
    StartResult,
    SweepSummary,
    TrackedItem,
)

__all__ = [
    # Type aliases
    "ItemId",
    "ExternalId",
    "RunId",
    "FetchResult",
    "AlertPolicy",
    # Enums
    "PriceSource",
    "AlertKind",
    "FetchFailureReason",
    # Policies
    "PriceBelow",
    "DiscountAtLeast",
    "AnySaleStart",
    # Items and prices
    "TrackedItem",
    "RawObservation",
    "FetchError",
    "PriceSnapshot",
    "Evaluation",
    # Alerts and runs
    "AlertEvent",
    "RunState",
    "StartResult",
    "SweepSummary",
    # Config
    "SentinelConfig",
    "StorageConfig",
    "StoreAPIConfig",
    "MonitoringConfig",
    "CacheConfig",
    "NotificationsConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "DealSentinelError",
    "ConfigError",
    "FetchFailedError",
    "RateLimitError",
    "StorageError",
    "NotificationError",
    "SweepError",
]
