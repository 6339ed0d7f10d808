"""Price evaluation: classify a new observation against the previous snapshot."""

from __future__ import annotations

import math
from datetime import datetime

from deal_sentinel.core.models import (
    Evaluation,
    FetchError,
    FetchResult,
    ItemId,
    PriceSnapshot,
    PriceSource,
    RawObservation,
)


def discount_percent(current_price: float, original_price: float) -> int:
    """Whole-number markdown percentage, rounded half up.

    Returns 0 when there is no positive original price or no markdown.
    """
    if original_price <= 0:
        return 0
    raw = 100.0 * (1.0 - current_price / original_price)
    return max(0, min(100, math.floor(raw + 0.5)))


def evaluate_price(
    item_id: ItemId,
    previous: PriceSnapshot | None,
    observation: FetchResult,
    recorded_at: datetime,
) -> Evaluation:
    """Classify ``observation`` and compute the historical-low state.

    Pure: the same inputs always give the same Evaluation. ``recorded_at``
    is passed in rather than read from the clock for that reason.

    Rules, first match wins:
    1. fetch failure      -> fetch_failed, price 0, never a new low
    2. free to play       -> free
    3. not yet released   -> unreleased
    4. removed from sale  -> removed
    5. otherwise          -> normal, with sale and historical-low tracking
    """
    if isinstance(observation, FetchError):
        return Evaluation(
            snapshot=PriceSnapshot(
                item_id=item_id,
                current_price=0.0,
                original_price=0.0,
                historical_low=_carried_low(previous),
                source=PriceSource.FETCH_FAILED,
                recorded_at=recorded_at,
            )
        )

    special = _special_source(observation)
    if special is not None:
        return Evaluation(
            snapshot=PriceSnapshot(
                item_id=item_id,
                current_price=observation.current_price,
                original_price=observation.original_price,
                historical_low=_carried_low(previous),
                source=special,
                recorded_at=recorded_at,
            )
        )

    current = observation.current_price
    original = observation.original_price
    previous_normal = previous is not None and previous.source == PriceSource.NORMAL

    if previous_normal:
        historical_low = min(previous.historical_low, current)
        is_new_low = current < previous.historical_low
    else:
        historical_low = current
        is_new_low = False

    snapshot = PriceSnapshot(
        item_id=item_id,
        current_price=current,
        original_price=original,
        discount_percent=discount_percent(current, original),
        is_on_sale=current < original,
        historical_low=historical_low,
        source=PriceSource.NORMAL,
        recorded_at=recorded_at,
    )
    is_release = (
        previous is not None
        and previous.source == PriceSource.UNRELEASED
        and current > 0
    )
    return Evaluation(
        snapshot=snapshot,
        is_new_historical_low=is_new_low,
        is_release=is_release,
    )


def _special_source(observation: RawObservation) -> PriceSource | None:
    if observation.is_free:
        return PriceSource.FREE
    if observation.is_unreleased:
        return PriceSource.UNRELEASED
    if observation.is_removed:
        return PriceSource.REMOVED
    return None


def _carried_low(previous: PriceSnapshot | None) -> float:
    # Non-normal rows keep the last known normal low for display only;
    # the next normal evaluation ignores it and starts from its own price.
    return previous.historical_low if previous is not None else 0.0
