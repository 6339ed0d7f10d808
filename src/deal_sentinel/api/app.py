"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deal_sentinel.api.deps import AppState
from deal_sentinel.api.routes import router
from deal_sentinel.cache import CacheStore
from deal_sentinel.core.config import SentinelConfig, load_config
from deal_sentinel.core.exceptions import (
    ConfigError,
    DealSentinelError,
    FetchFailedError,
    NotificationError,
    StorageError,
    SweepError,
)
from deal_sentinel.engine import BatchRunner, SweepScheduler
from deal_sentinel.notify import Notifier, create_notifier
from deal_sentinel.pricing import PriceFetcher, SteamStorePriceFetcher
from deal_sentinel.storage import create_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)

    cache = CacheStore(
        default_ttl=config.cache.default_ttl_seconds,
        eviction_interval=config.cache.eviction_interval_seconds,
    )
    cache.start()

    fetcher = app.state._pending_fetcher
    owns_fetcher = fetcher is None
    if fetcher is None:
        fetcher = SteamStorePriceFetcher(config.store_api)
    notifier = app.state._pending_notifier or create_notifier(config.notifications)

    runner = BatchRunner(
        store, fetcher, cache, notifier=notifier, config=config.monitoring
    )
    scheduler = SweepScheduler(runner, store, config.monitoring.interval_hours)
    scheduler.start()

    app.state.app_state = AppState(
        config=config,
        store=store,
        cache=cache,
        fetcher=fetcher,
        notifier=notifier,
        runner=runner,
        scheduler=scheduler,
    )

    yield

    await scheduler.stop()
    progress = runner.get_progress()
    if progress.is_running and progress.run_id is not None:
        logger.info("Shutting down: cancelling sweep %s", progress.run_id)
        runner.cancel(progress.run_id)
        await runner.wait()
    await cache.close()
    if owns_fetcher:
        await fetcher.close()
    await notifier.close()
    await store.close()


def create_app(
    config: SentinelConfig | None = None,
    fetcher: PriceFetcher | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``fetcher`` and ``notifier`` replace the Steam client and the
    configured notification channel; tests use them to run offline.
    """
    import deal_sentinel

    app = FastAPI(
        title="deal-sentinel API",
        description="Storefront price monitoring and deal alerts",
        version=deal_sentinel.__version__,
        lifespan=lifespan,
    )

    # Stash overrides so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_fetcher = fetcher
    app.state._pending_notifier = notifier

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(DealSentinelError)
    async def sentinel_exception_handler(request: Request, exc: DealSentinelError):
        status_map = {
            ConfigError: 400,
            SweepError: 409,
            FetchFailedError: 502,
            NotificationError: 502,
            StorageError: 500,
        }
        status = status_map.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
