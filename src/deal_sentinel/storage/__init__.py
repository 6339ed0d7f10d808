"""Persistence for tracked items, price snapshots, and alerts."""

from deal_sentinel.storage.store import SqliteStore, SweepStore, create_store

__all__ = [
    "SqliteStore",
    "SweepStore",
    "create_store",
]
