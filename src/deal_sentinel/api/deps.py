"""Dependency injection for FastAPI routes."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from deal_sentinel.cache import CacheStore
from deal_sentinel.core.config import SentinelConfig
from deal_sentinel.engine import BatchRunner, SweepScheduler
from deal_sentinel.notify import Notifier
from deal_sentinel.pricing import PriceFetcher
from deal_sentinel.storage import SqliteStore


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: SentinelConfig
    store: SqliteStore
    cache: CacheStore
    fetcher: PriceFetcher
    notifier: Notifier
    runner: BatchRunner
    scheduler: SweepScheduler


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> SentinelConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_store(request: Request) -> SqliteStore:
    """Dependency: retrieve storage backend."""
    return request.app.state.app_state.store


def get_cache(request: Request) -> CacheStore:
    return request.app.state.app_state.cache


def get_runner(request: Request) -> BatchRunner:
    return request.app.state.app_state.runner
