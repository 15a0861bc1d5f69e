"""Health checks for the monitoring loop's dependencies.

Checks CoinGecko reachability, SQLite accessibility and the cache tier.
Each check runs independently with its own timeout so a single dependency
being down does not block the entire health report.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from typing import Final

from Crypto_Monitor.data.database import Database
from Crypto_Monitor.models.health import HealthStatus
from Crypto_Monitor.services.cache import ServiceCache
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.services.scheduler import IngestionScheduler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COINGECKO_CHECK_TIMEOUT: Final[float] = 10.0
SQLITE_CHECK_TIMEOUT: Final[float] = 5.0
CACHE_CHECK_TIMEOUT: Final[float] = 5.0


class HealthService:
    """Check availability of every dependency of the monitoring loop.

    Usage::

        health = HealthService(database=db, coingecko=coingecko, cache=cache)
        status = await health.check_all()
        if not status.coingecko_available:
            logger.warning("CoinGecko is down, serving cached prices.")
    """

    def __init__(
        self,
        database: Database | None = None,
        coingecko: CoinGeckoService | None = None,
        cache: ServiceCache | None = None,
        scheduler: IngestionScheduler | None = None,
        started_at: float | None = None,
    ) -> None:
        self._database = database
        self._coingecko = coingecko
        self._cache = cache
        self._scheduler = scheduler
        self._started_at = started_at if started_at is not None else time.monotonic()

    async def check_all(self) -> HealthStatus:
        """Run all health checks concurrently and return a consolidated status."""
        results = await asyncio.gather(
            self.check_coingecko(),
            self.check_database(),
            self.check_cache(),
            return_exceptions=True,
        )

        flags: list[bool] = []
        for name, result in zip(("CoinGecko", "SQLite", "cache"), results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("%s health check raised: %s", name, result)
                flags.append(False)
            else:
                flags.append(result)

        status = HealthStatus(
            coingecko_available=flags[0],
            sqlite_available=flags[1],
            cache_available=flags[2],
            scheduler_running=self._scheduler is not None and self._scheduler.is_running,
            uptime_seconds=round(time.monotonic() - self._started_at, 3),
            last_check=datetime.datetime.now(datetime.UTC),
        )

        logger.info(
            "Health check complete: coingecko=%s sqlite=%s cache=%s scheduler=%s",
            status.coingecko_available,
            status.sqlite_available,
            status.cache_available,
            status.scheduler_running,
        )
        return status

    async def check_coingecko(self) -> bool:
        """Return True if CoinGecko answers its ping endpoint."""
        if self._coingecko is None:
            return False
        try:
            return await asyncio.wait_for(
                self._coingecko.ping(), timeout=COINGECKO_CHECK_TIMEOUT
            )
        except TimeoutError:
            logger.warning("CoinGecko health check timed out.")
            return False

    async def check_database(self) -> bool:
        """Return True if the database answers and migrations have run."""
        if self._database is None:
            logger.debug("No database configured for health check.")
            return False

        try:
            return await asyncio.wait_for(self._sqlite_check(), timeout=SQLITE_CHECK_TIMEOUT)
        except TimeoutError:
            logger.warning("SQLite health check timed out.")
            return False
        except Exception:
            logger.warning("SQLite health check failed.", exc_info=True)
            return False

    async def check_cache(self) -> bool:
        if self._cache is None:
            return False
        try:
            return await asyncio.wait_for(self._cache.is_available(), timeout=CACHE_CHECK_TIMEOUT)
        except TimeoutError:
            logger.warning("Cache health check timed out.")
            return False

    async def _sqlite_check(self) -> bool:
        if self._database is None:
            return False

        version = await self._database.schema_version()
        if version is None:
            logger.warning("SQLite reachable but no migrations recorded.")
            return False

        logger.debug("SQLite check passed: schema v%d.", version)
        return True
