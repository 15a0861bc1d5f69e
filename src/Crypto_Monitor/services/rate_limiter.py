"""Async request pacing with a single retry on HTTP 429.

Enforces a minimum interval of ``60 / requests_per_minute`` seconds between
request starts. Waiting is a timed ``asyncio.sleep`` under an
``asyncio.Lock``, so concurrent callers queue up instead of polling.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Final

from Crypto_Monitor.models.market_data import UsageStats
from Crypto_Monitor.utils.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COINGECKO_REQUESTS_PER_MINUTE: Final[int] = 30
DEFAULT_MAX_RETRIES: Final[int] = 1
DEFAULT_RETRY_AFTER: Final[float] = 60.0


class RateLimiter:
    """Space out upstream requests and retry once when rate limited.

    Usage::

        limiter = RateLimiter(requests_per_minute=30)

        # Pace a single request
        await limiter.acquire()
        response = await client.get(url)

        # Or let execute() pace and retry on RateLimitExceededError
        result = await limiter.execute(
            lambda: fetch_markets(ids),
            symbol="bitcoin",
            source="coingecko",
        )
    """

    def __init__(
        self,
        requests_per_minute: int = COINGECKO_REQUESTS_PER_MINUTE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
    ) -> None:
        if requests_per_minute <= 0:
            msg = f"requests_per_minute must be positive, got {requests_per_minute}"
            raise ValueError(msg)

        self._requests_per_minute = requests_per_minute
        self._min_interval = 60.0 / requests_per_minute
        self._max_retries = max_retries
        self._default_retry_after = default_retry_after

        self._lock = asyncio.Lock()
        self._last_request_started: float | None = None
        self._request_count = 0
        self._last_request_at: datetime.datetime | None = None

        logger.info(
            "RateLimiter initialized: rate=%d req/min (interval %.2fs), max_retries=%d",
            requests_per_minute,
            self._min_interval,
            max_retries,
        )

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        """Block until at least ``min_interval`` has passed since the last start."""
        async with self._lock:
            if self._last_request_started is not None:
                elapsed = time.monotonic() - self._last_request_started
                wait = self._min_interval - elapsed
                if wait > 0:
                    logger.debug("Pacing upstream request: sleeping %.2fs", wait)
                    await asyncio.sleep(wait)
            self._last_request_started = time.monotonic()
            self._request_count += 1
            self._last_request_at = datetime.datetime.now(datetime.UTC)

    async def execute[T](
        self,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        symbol: str,
        source: str,
    ) -> T:
        """Pace and run ``fetch_fn``, retrying on RateLimitExceededError.

        ``fetch_fn`` is a zero-argument callable so each attempt gets a fresh
        awaitable. The wait before a retry honours the exception's
        ``retry_after`` when positive, else the configured default.

        Raises:
            RateLimitExceededError: After exhausting all retries.
        """
        attempt = 0
        while True:
            await self.acquire()
            try:
                return await fetch_fn()
            except RateLimitExceededError as exc:
                if attempt >= self._max_retries:
                    logger.error(
                        "Rate limit exceeded for %s from %s after %d retries",
                        symbol,
                        source,
                        self._max_retries,
                    )
                    raise

                delay = self._get_retry_delay(exc)
                logger.warning(
                    "Rate limited on %s from %s (attempt %d/%d), retrying in %.1fs",
                    symbol,
                    source,
                    attempt + 1,
                    self._max_retries,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    def get_usage_stats(self) -> UsageStats:
        return UsageStats(
            request_count=self._request_count,
            last_request_at=self._last_request_at,
            rate_limit_per_minute=self._requests_per_minute,
        )

    def _get_retry_delay(self, exc: RateLimitExceededError) -> float:
        if exc.retry_after is not None and exc.retry_after > 0:
            return exc.retry_after
        return self._default_retry_after
