"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable

import aiosqlite
from pydantic import TypeAdapter

from deal_sentinel.core.config import StorageConfig
from deal_sentinel.core.exceptions import StorageError
from deal_sentinel.core.models import (
    AlertEvent,
    AlertKind,
    AlertPolicy,
    ItemId,
    PriceSnapshot,
    PriceSource,
    TrackedItem,
)

logger = logging.getLogger(__name__)

_policy_adapter: TypeAdapter = TypeAdapter(AlertPolicy)


@runtime_checkable
class SweepStore(Protocol):
    """The persistence operations a sweep depends on."""

    async def list_enabled_items(self) -> list[TrackedItem]: ...
    async def latest_snapshot(
        self, item_id: ItemId, include_failed: bool = False
    ) -> PriceSnapshot | None: ...
    async def append_snapshot(self, snapshot: PriceSnapshot) -> int: ...
    async def append_alert(self, event: AlertEvent) -> int: ...
    async def mark_alert_notified(self, alert_id: int) -> None: ...
    async def last_alert_at(
        self, item_id: ItemId, kind: AlertKind
    ) -> datetime | None: ...
    async def set_was_unreleased(self, item_id: ItemId, value: bool) -> None: ...
    async def rename_item(self, item_id: ItemId, display_name: str) -> None: ...


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. Snapshots and alerts are
    append-only; "latest" is always a query, never an updated row.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS tracked_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id TEXT NOT NULL UNIQUE,
                    display_name TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    alert_enabled INTEGER NOT NULL DEFAULT 1,
                    policy_json TEXT,
                    was_unreleased INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT DEFAULT (datetime('now')),
                    updated_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS price_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id INTEGER NOT NULL REFERENCES tracked_items(id),
                    current_price REAL NOT NULL,
                    original_price REAL NOT NULL,
                    discount_percent INTEGER NOT NULL DEFAULT 0,
                    is_on_sale INTEGER NOT NULL DEFAULT 0,
                    historical_low REAL NOT NULL,
                    source TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id INTEGER NOT NULL REFERENCES tracked_items(id),
                    kind TEXT NOT NULL,
                    trigger_price REAL NOT NULL,
                    previous_low REAL,
                    discount_percent INTEGER NOT NULL DEFAULT 0,
                    notified INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_items_enabled ON tracked_items(enabled)",
                "CREATE INDEX IF NOT EXISTS idx_snapshots_item ON price_snapshots(item_id, id)",
                "CREATE INDEX IF NOT EXISTS idx_alerts_item_kind ON alerts(item_id, kind)",
                "CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Tracked Item Operations ---

    async def add_item(
        self,
        external_id: str,
        display_name: str,
        *,
        enabled: bool = True,
        alert_enabled: bool = True,
        policy: AlertPolicy | None = None,
    ) -> TrackedItem:
        try:
            cursor = await self._db.execute(
                """INSERT INTO tracked_items
                   (external_id, display_name, enabled, alert_enabled, policy_json)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    external_id.strip(),
                    display_name,
                    int(enabled),
                    int(alert_enabled),
                    _dump_policy(policy),
                ),
            )
            await self._db.commit()
            item_id = cursor.lastrowid
        except Exception as e:
            raise StorageError(
                f"Failed to add item: {e}",
                context={
                    "operation": "insert",
                    "table": "tracked_items",
                    "external_id": external_id,
                },
            ) from e
        item = await self.get_item(item_id)
        if item is None:
            raise StorageError(
                "Inserted item could not be read back",
                context={"operation": "insert", "table": "tracked_items"},
            )
        return item

    async def get_item(self, item_id: ItemId) -> TrackedItem | None:
        return await self._fetch_item("SELECT * FROM tracked_items WHERE id = ?", item_id)

    async def get_item_by_external_id(self, external_id: str) -> TrackedItem | None:
        return await self._fetch_item(
            "SELECT * FROM tracked_items WHERE external_id = ?", external_id.strip()
        )

    async def list_items(self, enabled_only: bool = False) -> list[TrackedItem]:
        try:
            query = "SELECT * FROM tracked_items"
            if enabled_only:
                query += " WHERE enabled = 1"
            query += " ORDER BY id ASC"
            async with self._db.execute(query) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_item(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list items: {e}",
                context={"operation": "query", "table": "tracked_items"},
            ) from e

    async def list_enabled_items(self) -> list[TrackedItem]:
        """Enabled items in insertion order."""
        return await self.list_items(enabled_only=True)

    async def set_item_enabled(self, item_id: ItemId, enabled: bool) -> TrackedItem | None:
        await self._update_item(item_id, "enabled = ?", (int(enabled),))
        return await self.get_item(item_id)

    async def set_policy(
        self,
        item_id: ItemId,
        policy: AlertPolicy | None,
        alert_enabled: bool | None = None,
    ) -> TrackedItem | None:
        await self._update_item(item_id, "policy_json = ?", (_dump_policy(policy),))
        if alert_enabled is not None:
            await self._update_item(item_id, "alert_enabled = ?", (int(alert_enabled),))
        return await self.get_item(item_id)

    async def set_was_unreleased(self, item_id: ItemId, value: bool) -> None:
        await self._update_item(item_id, "was_unreleased = ?", (int(value),))

    async def rename_item(self, item_id: ItemId, display_name: str) -> None:
        await self._update_item(item_id, "display_name = ?", (display_name,))

    async def _update_item(self, item_id: ItemId, assignment: str, params: tuple) -> None:
        try:
            await self._db.execute(
                f"UPDATE tracked_items SET {assignment}, updated_at = datetime('now') "
                "WHERE id = ?",
                (*params, item_id),
            )
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to update item: {e}",
                context={"operation": "update", "table": "tracked_items", "item_id": item_id},
            ) from e

    async def _fetch_item(self, query: str, param: Any) -> TrackedItem | None:
        try:
            async with self._db.execute(query, (param,)) as cursor:
                row = await cursor.fetchone()
            return self._row_to_item(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get item: {e}",
                context={"operation": "query", "table": "tracked_items"},
            ) from e

    # --- Snapshot Operations ---

    async def append_snapshot(self, snapshot: PriceSnapshot) -> int:
        try:
            cursor = await self._db.execute(
                """INSERT INTO price_snapshots
                   (item_id, current_price, original_price, discount_percent,
                    is_on_sale, historical_low, source, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    snapshot.item_id,
                    snapshot.current_price,
                    snapshot.original_price,
                    snapshot.discount_percent,
                    int(snapshot.is_on_sale),
                    snapshot.historical_low,
                    str(snapshot.source),
                    snapshot.recorded_at.isoformat(),
                ),
            )
            await self._db.commit()
            return cursor.lastrowid
        except Exception as e:
            raise StorageError(
                f"Failed to save snapshot: {e}",
                context={
                    "operation": "insert",
                    "table": "price_snapshots",
                    "item_id": snapshot.item_id,
                },
            ) from e

    async def latest_snapshot(
        self, item_id: ItemId, include_failed: bool = False
    ) -> PriceSnapshot | None:
        """Most recently appended snapshot for an item.

        By default fetch_failed markers are skipped, so the result is the
        last real observation and can serve as an evaluation baseline.
        """
        try:
            query = "SELECT * FROM price_snapshots WHERE item_id = ?"
            params: list = [item_id]
            if not include_failed:
                query += " AND source != ?"
                params.append(str(PriceSource.FETCH_FAILED))
            query += " ORDER BY id DESC LIMIT 1"
            async with self._db.execute(query, params) as cursor:
                row = await cursor.fetchone()
            return self._row_to_snapshot(row) if row is not None else None
        except Exception as e:
            raise StorageError(
                f"Failed to get latest snapshot: {e}",
                context={"operation": "query", "table": "price_snapshots"},
            ) from e

    async def list_snapshots(
        self, item_id: ItemId, limit: int | None = None
    ) -> list[PriceSnapshot]:
        """Snapshot history for an item, newest first."""
        try:
            query = "SELECT * FROM price_snapshots WHERE item_id = ? ORDER BY id DESC"
            params: list = [item_id]
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_snapshot(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list snapshots: {e}",
                context={"operation": "query", "table": "price_snapshots"},
            ) from e

    # --- Alert Operations ---

    async def append_alert(self, event: AlertEvent) -> int:
        try:
            cursor = await self._db.execute(
                """INSERT INTO alerts
                   (item_id, kind, trigger_price, previous_low,
                    discount_percent, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    event.item_id,
                    str(event.kind),
                    event.trigger_price,
                    event.previous_low,
                    event.discount_percent,
                    event.created_at.isoformat(),
                ),
            )
            await self._db.commit()
            return cursor.lastrowid
        except Exception as e:
            raise StorageError(
                f"Failed to save alert: {e}",
                context={"operation": "insert", "table": "alerts", "item_id": event.item_id},
            ) from e

    async def mark_alert_notified(self, alert_id: int) -> None:
        try:
            await self._db.execute(
                "UPDATE alerts SET notified = 1 WHERE id = ?", (alert_id,)
            )
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to mark alert notified: {e}",
                context={"operation": "update", "table": "alerts"},
            ) from e

    async def last_alert_at(self, item_id: ItemId, kind: AlertKind) -> datetime | None:
        try:
            async with self._db.execute(
                """SELECT created_at FROM alerts
                   WHERE item_id = ? AND kind = ?
                   ORDER BY id DESC LIMIT 1""",
                (item_id, str(kind)),
            ) as cursor:
                row = await cursor.fetchone()
            return datetime.fromisoformat(row["created_at"]) if row else None
        except Exception as e:
            raise StorageError(
                f"Failed to query last alert: {e}",
                context={"operation": "query", "table": "alerts"},
            ) from e

    async def list_alerts(
        self,
        item_id: ItemId | None = None,
        kind: AlertKind | None = None,
        limit: int | None = None,
    ) -> list[AlertEvent]:
        """Alert history, newest first."""
        try:
            query = "SELECT * FROM alerts WHERE 1=1"
            params: list = []
            if item_id is not None:
                query += " AND item_id = ?"
                params.append(item_id)
            if kind is not None:
                query += " AND kind = ?"
                params.append(str(kind))
            query += " ORDER BY id DESC"
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_alert(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list alerts: {e}",
                context={"operation": "query", "table": "alerts"},
            ) from e

    # --- Statistics ---

    async def get_statistics(self) -> dict[str, int]:
        try:
            counts: dict[str, int] = {}
            for key, query in (
                ("total_items", "SELECT COUNT(*) FROM tracked_items"),
                ("enabled_items", "SELECT COUNT(*) FROM tracked_items WHERE enabled = 1"),
                ("total_snapshots", "SELECT COUNT(*) FROM price_snapshots"),
                ("total_alerts", "SELECT COUNT(*) FROM alerts"),
            ):
                async with self._db.execute(query) as cursor:
                    row = await cursor.fetchone()
                counts[key] = row[0]
            return counts
        except Exception as e:
            raise StorageError(
                f"Failed to gather statistics: {e}",
                context={"operation": "query", "table": "*"},
            ) from e

    # --- Row Mapping Helpers ---

    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> TrackedItem:
        policy_json = row["policy_json"]
        return TrackedItem(
            id=row["id"],
            external_id=row["external_id"],
            display_name=row["display_name"],
            enabled=bool(row["enabled"]),
            alert_enabled=bool(row["alert_enabled"]),
            policy=_policy_adapter.validate_json(policy_json) if policy_json else None,
            was_unreleased=bool(row["was_unreleased"]),
        )

    @staticmethod
    def _row_to_snapshot(row: aiosqlite.Row) -> PriceSnapshot:
        return PriceSnapshot(
            item_id=row["item_id"],
            current_price=row["current_price"],
            original_price=row["original_price"],
            discount_percent=row["discount_percent"],
            is_on_sale=bool(row["is_on_sale"]),
            historical_low=row["historical_low"],
            source=PriceSource(row["source"]),
            recorded_at=_parse_ts(row["recorded_at"]),
        )

    @staticmethod
    def _row_to_alert(row: aiosqlite.Row) -> AlertEvent:
        return AlertEvent(
            item_id=row["item_id"],
            kind=AlertKind(row["kind"]),
            trigger_price=row["trigger_price"],
            previous_low=row["previous_low"],
            discount_percent=row["discount_percent"],
            created_at=_parse_ts(row["created_at"]),
        )


def _dump_policy(policy: AlertPolicy | None) -> str | None:
    if policy is None:
        return None
    return _policy_adapter.dump_json(policy).decode()


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize the storage backend."""
    store = SqliteStore(config)
    await store.initialize()
    return store
