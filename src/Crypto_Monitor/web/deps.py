"""Dependency injection providers for FastAPI route handlers.

All shared resources (Database, Repository, services) are created once in
the application lifespan and stored on ``app.state``. Route handlers never
construct these directly; they declare dependencies and FastAPI injects them.
"""

import logging
import re
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Path, Request

from Crypto_Monitor.data.database import Database
from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.models.alerts import DEFAULT_USER_ID
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.services.broadcast import BroadcastHub
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.services.health import HealthService

logger = logging.getLogger(__name__)

# CoinGecko ids: lowercase alphanumerics and hyphens, e.g. "avalanche-2"
_COIN_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")
_USER_ID_MAX_LENGTH = 64


async def get_database(request: Request) -> AsyncGenerator[Database]:
    """Yield the Database instance from application state."""
    db: Database = request.app.state.database
    yield db


async def get_repository(
    db: Annotated[Database, Depends(get_database)],
) -> Repository:
    """Return a Repository backed by the app-wide Database."""
    return Repository(db)


async def get_coingecko_service(request: Request) -> CoinGeckoService:
    """Return the shared CoinGeckoService.

    One instance per app so the rate limiter and cache are shared by the
    scheduler and every request.
    """
    service: CoinGeckoService = request.app.state.coingecko
    return service


async def get_alert_service(request: Request) -> AlertService:
    service: AlertService = request.app.state.alert_service
    return service


async def get_broadcast_hub(request: Request) -> BroadcastHub:
    hub: BroadcastHub = request.app.state.hub
    return hub


async def get_health_service(request: Request) -> HealthService:
    """Return a HealthService over the app-wide dependencies."""
    state = request.app.state
    return HealthService(
        database=getattr(state, "database", None),
        coingecko=getattr(state, "coingecko", None),
        cache=getattr(state, "cache", None),
        scheduler=getattr(state, "scheduler", None),
        started_at=getattr(state, "started_at", None),
    )


async def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Return the caller's user id from ``X-User-Id``, or the default user."""
    if x_user_id is None or not x_user_id.strip():
        return DEFAULT_USER_ID
    user_id = x_user_id.strip()
    if len(user_id) > _USER_ID_MAX_LENGTH:
        raise HTTPException(status_code=422, detail="X-User-Id is too long.")
    return user_id


async def validate_coin_id(
    coin_id: Annotated[str, Path(description="CoinGecko coin id, e.g. 'bitcoin'")],
) -> str:
    """Validate and normalize a coin id path parameter.

    Converts to lowercase and validates against ``^[a-z0-9][a-z0-9-]{0,63}$``.
    Raises HTTP 422 if the id is invalid.
    """
    normalized = coin_id.strip().lower()
    if not _COIN_ID_PATTERN.match(normalized):
        raise HTTPException(
            status_code=422,
            detail=f"Invalid coin id: '{coin_id}'. Use lowercase letters, digits and hyphens.",
        )
    return normalized
