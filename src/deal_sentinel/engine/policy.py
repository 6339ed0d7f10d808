"""Alert policy evaluation: decide which alerts an evaluated price raises."""

from __future__ import annotations

import logging

from deal_sentinel.core.models import (
    AlertEvent,
    AlertKind,
    AnySaleStart,
    DiscountAtLeast,
    Evaluation,
    PriceBelow,
    PriceSnapshot,
    PriceSource,
)

logger = logging.getLogger(__name__)

_KNOWN_POLICIES = (PriceBelow, DiscountAtLeast, AnySaleStart)


def evaluate_alerts(
    policy: object | None,
    evaluation: Evaluation,
    previous: PriceSnapshot | None,
    *,
    was_unreleased: bool = False,
    alert_enabled: bool = True,
) -> list[AlertEvent]:
    """Return the alerts raised by ``evaluation``, in priority order.

    Order: released, free_game, new_low, threshold_met, sale_start. Several
    may fire together; each kind appears at most once. Transitional alerts
    (released, free_game, sale_start) are edge-triggered against
    ``previous`` and do not repeat while the state persists.

    ``released`` fires for any item that leaves the unreleased state, with
    or without a policy. Every other kind needs a recognized policy.
    ``alert_enabled=False`` yields no alerts. Never raises.
    """
    if not alert_enabled:
        return []
    try:
        fired: list[AlertKind] = []
        if _is_release(evaluation, previous, was_unreleased):
            fired.append(AlertKind.RELEASED)
        if isinstance(policy, _KNOWN_POLICIES):
            fired.extend(_policy_kinds(policy, evaluation, previous))
        return _to_events(fired, evaluation.snapshot, previous)
    except Exception:
        logger.exception(
            "Alert evaluation failed for item %s", evaluation.snapshot.item_id
        )
        return []


def _is_release(
    evaluation: Evaluation,
    previous: PriceSnapshot | None,
    was_unreleased: bool,
) -> bool:
    if evaluation.is_release:
        return True
    # the flag stands in for history lost or never recorded
    snap = evaluation.snapshot
    return (
        previous is None
        and was_unreleased
        and snap.source == PriceSource.NORMAL
        and snap.current_price > 0
    )


def _policy_kinds(
    policy: PriceBelow | DiscountAtLeast | AnySaleStart,
    evaluation: Evaluation,
    previous: PriceSnapshot | None,
) -> list[AlertKind]:
    snap = evaluation.snapshot
    is_normal = snap.source == PriceSource.NORMAL
    prev_source = previous.source if previous is not None else None
    fired: list[AlertKind] = []

    if snap.source == PriceSource.FREE and prev_source != PriceSource.FREE:
        fired.append(AlertKind.FREE_GAME)

    if is_normal and evaluation.is_new_historical_low:
        fired.append(AlertKind.NEW_LOW)

    if is_normal and _threshold_met(policy, snap):
        fired.append(AlertKind.THRESHOLD_MET)

    sale_began = previous is None or not previous.is_on_sale
    if is_normal and snap.is_on_sale and sale_began:
        fired.append(AlertKind.SALE_START)
    return fired


def _to_events(
    fired: list[AlertKind],
    snap: PriceSnapshot,
    previous: PriceSnapshot | None,
) -> list[AlertEvent]:
    prev_low = (
        previous.historical_low
        if previous is not None and previous.source == PriceSource.NORMAL
        else None
    )
    events: list[AlertEvent] = []
    seen: set[AlertKind] = set()
    for kind in fired:
        if kind in seen:
            continue
        seen.add(kind)
        events.append(
            AlertEvent(
                item_id=snap.item_id,
                kind=kind,
                trigger_price=snap.current_price,
                previous_low=prev_low,
                discount_percent=snap.effective_discount,
                created_at=snap.recorded_at,
            )
        )
    return events


def _threshold_met(
    policy: PriceBelow | DiscountAtLeast | AnySaleStart,
    snap: PriceSnapshot,
) -> bool:
    if isinstance(policy, PriceBelow):
        return snap.current_price <= policy.amount
    if isinstance(policy, DiscountAtLeast):
        return snap.effective_discount >= policy.percent
    return False
