"""Health check model: system dependency availability status."""

import datetime

from pydantic import BaseModel, ConfigDict


class HealthStatus(BaseModel):
    """Status of the dependencies the monitoring loop relies on.

    Served by ``GET /api/health`` and printed by the CLI. ``GET /health`` is
    liveness only and does not run these checks.
    """

    model_config = ConfigDict(frozen=True)

    coingecko_available: bool
    sqlite_available: bool
    cache_available: bool
    scheduler_running: bool
    uptime_seconds: float
    last_check: datetime.datetime
