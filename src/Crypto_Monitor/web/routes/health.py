"""Health routes.

GET /health       — Liveness: process is up.
GET /api/health   — Dependency status (CoinGecko, SQLite, cache, scheduler).
"""

import datetime
import logging
import time
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from Crypto_Monitor.models.health import HealthStatus
from Crypto_Monitor.services.health import HealthService
from Crypto_Monitor.web.deps import get_health_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def liveness(request: Request) -> dict[str, object]:
    """Return ``status: ok`` with process uptime."""
    started_at: float | None = getattr(request.app.state, "started_at", None)
    uptime = 0.0 if started_at is None else round(time.monotonic() - started_at, 3)
    return {
        "status": "ok",
        "uptime_seconds": uptime,
        "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
    }


@router.get("/api/health", response_model=HealthStatus)
async def dependency_health(
    service: Annotated[HealthService, Depends(get_health_service)],
) -> HealthStatus:
    """Run every dependency check and return the consolidated status."""
    return await service.check_all()
