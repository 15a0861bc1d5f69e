"""Periodic price ingestion and history cleanup.

Two asyncio timer tasks drive the monitoring loop:

* the price tick fetches snapshots, broadcasts them, checks alert rules and
  every Nth tick stores a history sample;
* the cleanup tick deletes history older than the retention window.

Each tick runs inside a failure boundary: exceptions are logged and the
timer keeps going. Ticks of one kind never overlap. The next tick starts one
period after the previous one started, or at once if the previous overran.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Final

from pydantic import BaseModel, ConfigDict

from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.models.market_data import PriceSnapshot
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.services.broadcast import BroadcastHub
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.utils.exceptions import DataFetchError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_PRICE_INTERVAL: Final[float] = 10.0
DEFAULT_HISTORY_SAMPLE_EVERY: Final[int] = 6
DEFAULT_CLEANUP_INTERVAL: Final[float] = 24 * 60 * 60
DEFAULT_RETENTION_DAYS: Final[int] = 30


class TickResult(BaseModel):
    """Outcome of one price tick."""

    model_config = ConfigDict(frozen=True)

    tick: int
    snapshot_count: int = 0
    broadcast_count: int | None = None
    alerts_triggered: int | None = None
    history_saved: int | None = None
    error: str | None = None


class IngestionScheduler:
    """Owns the price and cleanup timers.

    Usage::

        scheduler = IngestionScheduler(coingecko, hub, alert_service, repository)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        coingecko: CoinGeckoService,
        hub: BroadcastHub,
        alert_service: AlertService,
        repository: Repository,
        *,
        price_interval: float = DEFAULT_PRICE_INTERVAL,
        history_sample_every: int = DEFAULT_HISTORY_SAMPLE_EVERY,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._coingecko = coingecko
        self._hub = hub
        self._alert_service = alert_service
        self._repository = repository
        self._price_interval = price_interval
        self._history_sample_every = max(1, history_sample_every)
        self._cleanup_interval = cleanup_interval
        self._retention_days = retention_days

        self._tick_count = 0
        self._tasks: list[asyncio.Task[None]] = []

        logger.info(
            "IngestionScheduler initialized: price every %.1fs, history every %d ticks, "
            "cleanup every %.0fs (retention %d days)",
            price_interval,
            self._history_sample_every,
            cleanup_interval,
            retention_days,
        )

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def start(self) -> None:
        """Start both timers. The first price tick runs immediately."""
        if self.is_running:
            logger.warning("IngestionScheduler already running.")
            return
        self._tasks = [
            asyncio.create_task(
                self._run_periodic("price", self._price_interval, self.run_price_tick, True),
                name="price-tick",
            ),
            asyncio.create_task(
                self._run_periodic(
                    "cleanup", self._cleanup_interval, self.run_cleanup_tick, False
                ),
                name="cleanup-tick",
            ),
        ]
        logger.info("IngestionScheduler started.")

    async def stop(self) -> None:
        """Cancel both timers and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("IngestionScheduler stopped.")

    # ------------------------------------------------------------------
    # Tick bodies
    # ------------------------------------------------------------------

    async def run_price_tick(self) -> TickResult:
        """Fetch, broadcast, evaluate, and maybe persist history.

        A failed fetch ends the tick early. Broadcast, evaluation and the
        history write are isolated from each other.
        """
        self._tick_count += 1
        tick = self._tick_count

        try:
            snapshots = await self._coingecko.fetch_current_prices()
        except DataFetchError as exc:
            logger.error("Price tick %d: fetch failed: %s", tick, exc)
            return TickResult(tick=tick, error=str(exc))

        if not snapshots:
            logger.warning("Price tick %d: no snapshots returned.", tick)
            return TickResult(tick=tick)

        broadcast_count = await self._run_isolated(
            "broadcast", self._broadcast(snapshots)
        )
        triggered = await self._run_isolated(
            "alert check", self._alert_service.check_alerts(snapshots)
        )

        history_saved: int | None = None
        if tick % self._history_sample_every == 0:
            history_saved = await self._run_isolated(
                "history write", self._repository.save_price_history(snapshots)
            )

        logger.info(
            "Price tick %d: %d snapshots, %s alerts triggered%s",
            tick,
            len(snapshots),
            "?" if triggered is None else len(triggered),
            "" if history_saved is None else f", {history_saved} history rows",
        )
        return TickResult(
            tick=tick,
            snapshot_count=len(snapshots),
            broadcast_count=broadcast_count,
            alerts_triggered=None if triggered is None else len(triggered),
            history_saved=history_saved,
        )

    async def run_cleanup_tick(self) -> int:
        """Delete history samples older than the retention window."""
        cutoff = datetime.datetime.now(datetime.UTC) - datetime.timedelta(
            days=self._retention_days
        )
        deleted = await self._repository.delete_price_history_before(cutoff)
        logger.info("Cleanup: deleted %d history rows older than %s", deleted, cutoff.date())
        return deleted

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _broadcast(self, snapshots: Sequence[PriceSnapshot]) -> int:
        return self._hub.broadcast_prices(snapshots)

    @staticmethod
    async def _run_isolated[T](label: str, awaitable: Awaitable[T]) -> T | None:
        """Await ``awaitable``; log and return None on any exception."""
        try:
            return await awaitable
        except Exception:
            logger.exception("%s failed; continuing", label.capitalize())
            return None

    async def _run_periodic(
        self,
        name: str,
        interval: float,
        body: Callable[[], Awaitable[object]],
        run_immediately: bool,
    ) -> None:
        loop = asyncio.get_running_loop()
        if not run_immediately:
            await asyncio.sleep(interval)
        while True:
            started = loop.time()
            await self._run_isolated(f"{name} tick", body())
            delay = started + interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            else:
                logger.warning(
                    "%s tick overran its %.1fs period by %.1fs", name, interval, -delay
                )
