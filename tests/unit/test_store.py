"""Tests for the SQLite storage backend."""

from datetime import UTC, datetime, timedelta

import pytest

from deal_sentinel.core.config import StorageConfig
from deal_sentinel.core.exceptions import StorageError
from deal_sentinel.core.models import (
    AlertEvent,
    AlertKind,
    DiscountAtLeast,
    PriceBelow,
    PriceSource,
)
from deal_sentinel.storage import SqliteStore, SweepStore, create_store

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.mark.unit
class TestLifecycle:
    async def test_create_store_initializes(self, tmp_path):
        s = await create_store(StorageConfig(sqlite_path=str(tmp_path / "sub" / "db.sqlite")))
        try:
            assert await s.health_check() is True
            assert (tmp_path / "sub" / "db.sqlite").exists()
        finally:
            await s.close()
        assert await s.health_check() is False

    async def test_migrations_are_idempotent(self, tmp_path):
        config = StorageConfig(sqlite_path=str(tmp_path / "db.sqlite"))
        first = await create_store(config)
        await first.add_item("730", "Counter-Strike 2")
        await first.close()
        second = await create_store(config)
        try:
            assert [i.external_id for i in await second.list_items()] == ["730"]
        finally:
            await second.close()

    def test_satisfies_sweep_protocol(self):
        assert isinstance(SqliteStore(StorageConfig(sqlite_path=":memory:")), SweepStore)


@pytest.mark.unit
class TestItems:
    async def test_add_and_get(self, store):
        item = await store.add_item("730", "CS2", policy=PriceBelow(amount=1500))
        assert item.id > 0
        got = await store.get_item(item.id)
        assert got == item
        assert got.policy == PriceBelow(amount=1500)
        assert got.enabled and got.alert_enabled and not got.was_unreleased

    async def test_duplicate_external_id_raises(self, store):
        await store.add_item("730", "CS2")
        with pytest.raises(StorageError) as exc_info:
            await store.add_item("730", "again")
        assert exc_info.value.context["table"] == "tracked_items"

    async def test_lookup_by_external_id(self, store):
        item = await store.add_item("413150", "Stardew Valley")
        assert (await store.get_item_by_external_id("413150")).id == item.id
        assert await store.get_item_by_external_id("1") is None

    async def test_enabled_items_in_insertion_order(self, store):
        a = await store.add_item("3", "C")
        b = await store.add_item("1", "A", enabled=False)
        c = await store.add_item("2", "B")
        assert [i.id for i in await store.list_enabled_items()] == [a.id, c.id]
        assert [i.id for i in await store.list_items()] == [a.id, b.id, c.id]

    async def test_updates(self, store):
        item = await store.add_item("730", "CS2")
        item = await store.set_policy(item.id, DiscountAtLeast(percent=50), alert_enabled=False)
        assert item.policy == DiscountAtLeast(percent=50)
        assert item.alert_enabled is False
        item = await store.set_policy(item.id, None)
        assert item.policy is None
        assert item.alert_enabled is False
        item = await store.set_item_enabled(item.id, False)
        assert item.enabled is False
        await store.set_was_unreleased(item.id, True)
        await store.rename_item(item.id, "Counter-Strike 2")
        item = await store.get_item(item.id)
        assert item.was_unreleased is True
        assert item.display_name == "Counter-Strike 2"

    async def test_missing_item(self, store):
        assert await store.get_item(999) is None


@pytest.mark.unit
class TestSnapshots:
    async def test_latest_skips_failed_by_default(self, store, make_snapshot):
        item = await store.add_item("730", "CS2")
        await store.append_snapshot(make_snapshot(item_id=item.id, current_price=900))
        failed = make_snapshot(
            item_id=item.id,
            current_price=0,
            original_price=0,
            source=PriceSource.FETCH_FAILED,
            recorded_at=T0 + timedelta(hours=1),
        )
        await store.append_snapshot(failed)
        assert (await store.latest_snapshot(item.id)).current_price == 900
        assert (await store.latest_snapshot(item.id, include_failed=True)) == failed

    async def test_history_newest_first(self, store, make_snapshot):
        item = await store.add_item("730", "CS2")
        for i, price in enumerate((1000, 900, 800)):
            await store.append_snapshot(
                make_snapshot(
                    item_id=item.id,
                    current_price=price,
                    recorded_at=T0 + timedelta(hours=i),
                )
            )
        history = await store.list_snapshots(item.id, limit=2)
        assert [s.current_price for s in history] == [800, 900]
        assert history[0].recorded_at == T0 + timedelta(hours=2)
        assert len(await store.list_snapshots(item.id)) == 3

    async def test_no_snapshot(self, store):
        assert await store.latest_snapshot(1) is None


@pytest.mark.unit
class TestAlerts:
    def _event(self, item_id, kind=AlertKind.NEW_LOW, at=T0):
        return AlertEvent(
            item_id=item_id,
            kind=kind,
            trigger_price=900,
            previous_low=1000,
            discount_percent=10,
            created_at=at,
        )

    async def test_append_and_list(self, store):
        item = await store.add_item("730", "CS2")
        await store.append_alert(self._event(item.id))
        await store.append_alert(
            self._event(item.id, AlertKind.SALE_START, T0 + timedelta(minutes=1))
        )
        alerts = await store.list_alerts()
        assert [a.kind for a in alerts] == [AlertKind.SALE_START, AlertKind.NEW_LOW]
        assert alerts[1] == self._event(item.id)
        only = await store.list_alerts(kind=AlertKind.NEW_LOW)
        assert len(only) == 1
        assert await store.list_alerts(item_id=999) == []
        assert len(await store.list_alerts(limit=1)) == 1

    async def test_last_alert_at(self, store):
        item = await store.add_item("730", "CS2")
        assert await store.last_alert_at(item.id, AlertKind.NEW_LOW) is None
        alert_id = await store.append_alert(self._event(item.id, at=T0))
        await store.append_alert(self._event(item.id, at=T0 + timedelta(hours=2)))
        await store.mark_alert_notified(alert_id)
        assert await store.last_alert_at(item.id, AlertKind.NEW_LOW) == T0 + timedelta(hours=2)
        assert await store.last_alert_at(item.id, AlertKind.SALE_START) is None

    async def test_statistics(self, store, make_snapshot):
        item = await store.add_item("730", "CS2")
        await store.add_item("570", "Dota 2", enabled=False)
        await store.append_snapshot(make_snapshot(item_id=item.id))
        await store.append_alert(self._event(item.id))
        assert await store.get_statistics() == {
            "total_items": 2,
            "enabled_items": 1,
            "total_snapshots": 1,
            "total_alerts": 1,
        }
