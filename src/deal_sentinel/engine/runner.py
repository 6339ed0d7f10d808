"""Sweep orchestration: fetch, evaluate, alert, persist, one item at a time.

Architecture
------------
    start_sweep(items)
        └── per item, strictly sequential:
              cached_lookup(fetch:{external_id}) → PriceFetcher.fetch
              evaluate_price(previous, observation)
              evaluate_alerts(policy, evaluation)
              append_snapshot / append_alert → notify
              invalidate item:{id}, price:*:{id}
        └── finally: invalidate aggregate views, RunState → idle

The fetch is the only slow suspension point, so API handlers keep serving
progress reads between items. A failing item is counted and skipped; the
sweep itself never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from deal_sentinel.cache import CacheKeys, CacheStore, cached_lookup
from deal_sentinel.core.config import MonitoringConfig
from deal_sentinel.core.exceptions import SweepError
from deal_sentinel.core.models import (
    AlertEvent,
    AlertKind,
    FetchError,
    FetchFailureReason,
    FetchResult,
    ItemId,
    PriceSource,
    RawObservation,
    RunId,
    RunState,
    StartResult,
    SweepSummary,
    TrackedItem,
)
from deal_sentinel.engine.evaluator import evaluate_price
from deal_sentinel.engine.policy import evaluate_alerts
from deal_sentinel.engine.progress import ProgressTracker
from deal_sentinel.notify import Notifier, NullNotifier
from deal_sentinel.pricing import PriceFetcher
from deal_sentinel.storage import SweepStore

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "already running"


class BatchRunner:
    """Runs at most one sweep at a time over a list of tracked items."""

    def __init__(
        self,
        store: SweepStore,
        fetcher: PriceFetcher,
        cache: CacheStore,
        *,
        notifier: Notifier | None = None,
        tracker: ProgressTracker | None = None,
        config: MonitoringConfig | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._cache = cache
        self._notifier = notifier or NullNotifier()
        self._tracker = tracker or ProgressTracker()
        self._config = config or MonitoringConfig()
        self._now = now
        self._task: asyncio.Task[SweepSummary] | None = None
        self._cancel_requested = False
        self.last_summary: SweepSummary | None = None

    @property
    def tracker(self) -> ProgressTracker:
        return self._tracker

    @property
    def is_running(self) -> bool:
        return self._tracker.is_running

    def get_progress(self) -> RunState:
        """Frozen copy of the current (or last) run's state."""
        return self._tracker.snapshot()

    def start_sweep(
        self,
        items: Sequence[TrackedItem],
        fetcher: PriceFetcher | None = None,
    ) -> StartResult:
        """Start a sweep in the background and return immediately.

        A request while another sweep is active is rejected, not queued.
        Must be called from inside a running event loop.
        """
        run_id = f"sweep-{uuid4().hex[:8]}"
        if not self._tracker.try_begin(run_id, len(items)):
            logger.info("Sweep start rejected: a sweep is already running")
            return StartResult(success=False, error=ALREADY_RUNNING)

        self._cancel_requested = False
        self._task = asyncio.get_running_loop().create_task(
            self._execute(run_id, list(items), fetcher or self._fetcher),
            name=run_id,
        )
        return StartResult(success=True, run_id=run_id)

    async def run_sweep(
        self,
        items: Sequence[TrackedItem],
        fetcher: PriceFetcher | None = None,
    ) -> SweepSummary:
        """Start a sweep and wait for it to finish.

        Raises:
            SweepError: If another sweep is already running.
        """
        result = self.start_sweep(items, fetcher)
        if not result.success:
            raise SweepError(
                "Cannot start sweep: a sweep is already running",
                context={"run_id": self.get_progress().run_id},
            )
        return await self._task

    async def wait(self) -> SweepSummary | None:
        """Wait for the current sweep (if any) and return its summary."""
        if self._task is None:
            return self.last_summary
        return await self._task

    def cancel(self, run_id: RunId) -> bool:
        """Ask the running sweep to stop at the next item boundary."""
        state = self._tracker.snapshot()
        if not state.is_running or state.run_id != run_id:
            return False
        self._cancel_requested = True
        logger.info("Cancellation requested for sweep %s", run_id)
        return True

    # --- Sweep body ---

    async def _execute(
        self,
        run_id: RunId,
        items: list[TrackedItem],
        fetcher: PriceFetcher,
    ) -> SweepSummary:
        started = time.monotonic()
        seen: set[tuple[ItemId, AlertKind]] = set()
        alert_count = 0
        cancelled = False
        logger.info("Sweep %s started over %d items", run_id, len(items))

        try:
            for item in items:
                if self._cancel_requested:
                    cancelled = True
                    logger.info("Sweep %s cancelled", run_id)
                    break

                self._tracker.set_current(item.label)
                try:
                    failed, raised = await self._process_item(item, fetcher, seen)
                    alert_count += raised
                except Exception:
                    logger.exception("Sweep %s: processing failed for %s", run_id, item.label)
                    failed = True
                self._tracker.advance(failed=failed)
        finally:
            self._cache.delete_by_pattern(CacheKeys.AGGREGATES)
            state = self._tracker.finish(cancelled=cancelled)

        summary = SweepSummary(
            run_id=run_id,
            total=state.total_count,
            completed=state.completed_count,
            failed=state.failed_count,
            alerts=alert_count,
            cancelled=cancelled,
            duration_seconds=round(time.monotonic() - started, 3),
        )
        self.last_summary = summary
        logger.info(
            "Sweep %s finished: %d/%d items, %d failed, %d alerts",
            run_id, summary.completed, summary.total, summary.failed, summary.alerts,
        )
        return summary

    async def _process_item(
        self,
        item: TrackedItem,
        fetcher: PriceFetcher,
        seen: set[tuple[ItemId, AlertKind]],
    ) -> tuple[bool, int]:
        """Handle one item. Returns (failed, alerts raised)."""
        observation = await self._fetch(item, fetcher)
        recorded_at = self._now()

        previous = await self._store.latest_snapshot(item.id)
        evaluation = evaluate_price(item.id, previous, observation, recorded_at)
        events = evaluate_alerts(
            item.policy,
            evaluation,
            previous,
            was_unreleased=item.was_unreleased,
            alert_enabled=item.alert_enabled,
        )
        events = [e for e in events if (item.id, e.kind) not in seen]
        events = await self._outside_cooldown(events, recorded_at)

        await self._store.append_snapshot(evaluation.snapshot)
        for event in events:
            alert_id = await self._store.append_alert(event)
            seen.add((item.id, event.kind))
            logger.info("Alert %s for %s at %.0f", event.kind, item.label, event.trigger_price)
            if await self._notify(event, item):
                await self._store.mark_alert_notified(alert_id)

        await self._update_item_flags(item, observation, evaluation.snapshot.source)
        self._cache.delete_by_pattern(CacheKeys.for_item(item.id))

        failed = evaluation.snapshot.source == PriceSource.FETCH_FAILED
        return failed, len(events)

    async def _fetch(self, item: TrackedItem, fetcher: PriceFetcher) -> FetchResult:
        async def lookup() -> FetchResult:
            try:
                return await asyncio.wait_for(
                    fetcher.fetch(item.external_id),
                    timeout=self._config.fetch_timeout_seconds,
                )
            except TimeoutError:
                logger.warning("Fetch timed out for %s", item.label)
                return FetchError(
                    external_id=item.external_id,
                    reason=FetchFailureReason.TIMEOUT,
                    message=f"no response within {self._config.fetch_timeout_seconds}s",
                )
            except Exception as e:
                logger.warning("Fetcher raised for %s: %s", item.label, e)
                return FetchError(
                    external_id=item.external_id,
                    reason=FetchFailureReason.EXCEPTION,
                    message=str(e),
                )

        result = await cached_lookup(
            self._cache,
            CacheKeys.fetch(item.external_id),
            self._config.fetch_cache_ttl,
            lookup,
            cache_if=lambda r: isinstance(r, RawObservation),
        )
        if isinstance(result, FetchError):
            logger.warning(
                "Fetch failed for %s: %s %s", item.label, result.reason, result.message
            )
        return result

    async def _outside_cooldown(
        self, events: list[AlertEvent], now: datetime
    ) -> list[AlertEvent]:
        hours = self._config.notification_cooldown_hours
        if hours <= 0 or not events:
            return events
        cutoff = now - timedelta(hours=hours)
        kept: list[AlertEvent] = []
        for event in events:
            last = await self._store.last_alert_at(event.item_id, event.kind)
            if last is not None and last > cutoff:
                logger.debug(
                    "Suppressing %s for item %d: last raised at %s",
                    event.kind, event.item_id, last.isoformat(),
                )
                continue
            kept.append(event)
        return kept

    async def _notify(self, event: AlertEvent, item: TrackedItem) -> bool:
        try:
            return await self._notifier.notify(event, item)
        except Exception:
            logger.exception("Notifier failed for %s (%s)", item.label, event.kind)
            return False

    async def _update_item_flags(
        self,
        item: TrackedItem,
        observation: FetchResult,
        source: PriceSource,
    ) -> None:
        if source == PriceSource.UNRELEASED and not item.was_unreleased:
            await self._store.set_was_unreleased(item.id, True)
        elif source == PriceSource.NORMAL and item.was_unreleased:
            await self._store.set_was_unreleased(item.id, False)

        if isinstance(observation, RawObservation):
            name = (observation.display_name or "").strip()
            if name and name != item.display_name:
                logger.info("Renaming item %d: %r -> %r", item.id, item.display_name, name)
                await self._store.rename_item(item.id, name)
