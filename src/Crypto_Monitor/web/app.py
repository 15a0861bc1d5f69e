"""FastAPI app factory and lifespan wiring.

The lifespan builds every long-lived component once, in dependency order
(database, cache, rate limiter, CoinGecko client, hub, alert service,
scheduler), stores them on ``app.state`` and tears them down in reverse.
"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from Crypto_Monitor.config import Settings
from Crypto_Monitor.data.database import Database
from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.logging_config import configure_logging
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.services.broadcast import BroadcastHub
from Crypto_Monitor.services.cache import ServiceCache
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.services.mailer import create_email_service
from Crypto_Monitor.services.rate_limiter import RateLimiter
from Crypto_Monitor.services.scheduler import IngestionScheduler
from Crypto_Monitor.web.middleware import RequestLoggingMiddleware, register_exception_handlers
from Crypto_Monitor.web.routes import (
    alerts_router,
    health_router,
    prices_router,
    stream_router,
    ws_router,
)

logger = logging.getLogger(__name__)


def _build_lifespan(settings: Settings, *, start_scheduler: bool):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        db = Database(settings.db_path)
        await db.connect()

        cache = ServiceCache(database=db, stale_retention_seconds=settings.cache_stale_retention)
        await cache.initialize()
        rate_limiter = RateLimiter(
            requests_per_minute=settings.coingecko_rate_limit,
            default_retry_after=settings.coingecko_default_retry_after,
        )
        coingecko = CoinGeckoService(
            cache,
            rate_limiter,
            supported_coins=settings.supported_coins,
            base_url=settings.coingecko_base_url,
            api_key=settings.coingecko_api_key,
            timeout=settings.coingecko_timeout,
        )
        hub = BroadcastHub()
        repository = Repository(db)
        email_service = create_email_service(settings.email, client_url=settings.client_url)
        alert_service = AlertService(repository, hub, email_service)
        scheduler = IngestionScheduler(
            coingecko,
            hub,
            alert_service,
            repository,
            price_interval=settings.price_update_interval,
            history_sample_every=settings.history_sample_every,
            cleanup_interval=settings.cleanup_interval,
            retention_days=settings.history_retention_days,
        )

        app.state.settings = settings
        app.state.database = db
        app.state.cache = cache
        app.state.rate_limiter = rate_limiter
        app.state.coingecko = coingecko
        app.state.hub = hub
        app.state.alert_service = alert_service
        app.state.scheduler = scheduler
        app.state.started_at = time.monotonic()

        if start_scheduler:
            scheduler.start()
        logger.info("Crypto Monitor started: %d coins tracked", len(settings.supported_coins))

        try:
            yield
        finally:
            await scheduler.stop()
            await coingecko.aclose()
            await db.close()
            logger.info("Crypto Monitor shut down")

    return lifespan


def create_app(settings: Settings | None = None, *, start_scheduler: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="Crypto Monitor",
        lifespan=_build_lifespan(settings, start_scheduler=start_scheduler),
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(prices_router, prefix="/api")
    app.include_router(alerts_router, prefix="/api")
    app.include_router(stream_router, prefix="/api")
    app.include_router(health_router)
    app.include_router(ws_router)

    logger.info("Crypto Monitor web app created")
    return app
