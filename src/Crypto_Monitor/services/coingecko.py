"""CoinGecko market data client.

Fetches live prices, price history, coin search results and the coin list
from the CoinGecko v3 REST API. Every call is cache-first. Misses go through
the RateLimiter, which paces requests and retries once on HTTP 429. When the
upstream call fails, the last cached value is served (even if stale) and the
response is logged as degraded; only with no cached value at all does the
call raise UpstreamUnavailableError.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Final

import httpx
from pydantic import ValidationError

from Crypto_Monitor.models.market_data import CoinListing, PricePoint, PriceSnapshot, UsageStats
from Crypto_Monitor.services._helpers import (
    COINGECKO_SOURCE,
    normalize_coin_ids,
    parse_retry_after,
    safe_decimal,
)
from Crypto_Monitor.services.cache import (
    TTL_COIN_LIST,
    TTL_HISTORY,
    TTL_LIVE_PRICES,
    TTL_SEARCH,
    CacheNamespace,
    ServiceCache,
)
from Crypto_Monitor.services.rate_limiter import RateLimiter
from Crypto_Monitor.utils.exceptions import (
    MalformedPayloadError,
    RateLimitExceededError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COINGECKO_API_BASE_URL: Final[str] = "https://api.coingecko.com/api/v3"
COINGECKO_API_KEY_HEADER: Final[str] = "x-cg-demo-api-key"
COINGECKO_FETCH_TIMEOUT: Final[float] = 10.0

VS_CURRENCY: Final[str] = "usd"
SEARCH_RESULT_LIMIT: Final[int] = 10
DEFAULT_HISTORY_DAYS: Final[int] = 7

# Cache namespaces
PRICES_CACHE: Final = CacheNamespace[list[PriceSnapshot]](
    "cg:prices", list[PriceSnapshot], TTL_LIVE_PRICES
)
PRICE_CACHE: Final = CacheNamespace[PriceSnapshot]("cg:price", PriceSnapshot, TTL_LIVE_PRICES)
HISTORY_CACHE: Final = CacheNamespace[list[PricePoint]](
    "cg:history", list[PricePoint], TTL_HISTORY
)
SEARCH_CACHE: Final = CacheNamespace[list[CoinListing]](
    "cg:search", list[CoinListing], TTL_SEARCH
)
COINS_CACHE: Final = CacheNamespace[list[CoinListing]](
    "cg:coins", list[CoinListing], TTL_COIN_LIST
)


class CoinGeckoService:
    """Cache-first, rate-limited access to the CoinGecko API.

    Usage::

        cache = ServiceCache(database=db)
        limiter = RateLimiter(requests_per_minute=30)
        coingecko = CoinGeckoService(cache, limiter, supported_coins=["bitcoin"])
        snapshots = await coingecko.fetch_current_prices()
    """

    def __init__(
        self,
        cache: ServiceCache,
        rate_limiter: RateLimiter,
        *,
        supported_coins: Sequence[str] = (),
        base_url: str = COINGECKO_API_BASE_URL,
        api_key: str | None = None,
        timeout: float = COINGECKO_FETCH_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._supported_coins = normalize_coin_ids(supported_coins)
        self._timeout = timeout
        self._headers: dict[str, str] = {"Accept": "application/json"}
        if api_key:
            self._headers[COINGECKO_API_KEY_HEADER] = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect=5.0, read=timeout, write=10.0, pool=5.0),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

        logger.info(
            "CoinGeckoService initialized: %d supported coins, api_key=%s",
            len(self._supported_coins),
            "configured" if api_key else "not configured",
        )

    @property
    def supported_coins(self) -> list[str]:
        return list(self._supported_coins)

    async def aclose(self) -> None:
        """Close the shared httpx client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_current_prices(
        self, coin_ids: Iterable[str] | None = None
    ) -> list[PriceSnapshot]:
        """Return market snapshots for ``coin_ids`` (default: supported coins).

        Raises:
            UpstreamUnavailableError: Upstream failed and nothing is cached.
        """
        ids = normalize_coin_ids(coin_ids) if coin_ids is not None else self._supported_coins
        if not ids:
            return []

        key = PRICES_CACHE.key(",".join(ids))
        return await self._cached_fetch(
            PRICES_CACHE,
            key,
            lambda: self._fetch_markets(ids),
            symbol=",".join(ids),
        )

    async def fetch_coin_price(self, coin_id: str) -> PriceSnapshot | None:
        """Return one coin's snapshot, or None if CoinGecko does not know it."""
        normalized = coin_id.strip().lower()
        if not normalized:
            return None

        async def fetch_one() -> PriceSnapshot:
            snapshots = await self._fetch_markets([normalized])
            if not snapshots:
                msg = f"Coin '{normalized}' not found."
                raise SymbolNotFoundError(msg, symbol=normalized, source=COINGECKO_SOURCE)
            return snapshots[0]

        try:
            return await self._cached_fetch(
                PRICE_CACHE, PRICE_CACHE.key(normalized), fetch_one, symbol=normalized
            )
        except SymbolNotFoundError:
            logger.info("Coin %s not found on CoinGecko", normalized)
            return None

    async def fetch_historical_prices(
        self, coin_id: str, days: int = DEFAULT_HISTORY_DAYS
    ) -> list[PricePoint]:
        """Return (timestamp, price) samples for the last ``days`` days.

        Hourly granularity for one day or less, daily otherwise.

        Raises:
            SymbolNotFoundError: CoinGecko has no such coin.
            UpstreamUnavailableError: Upstream failed and nothing is cached.
        """
        normalized = coin_id.strip().lower()
        key = HISTORY_CACHE.key(normalized, str(days))

        async def fetch_history() -> list[PricePoint]:
            params = {
                "vs_currency": VS_CURRENCY,
                "days": str(days),
                "interval": "hourly" if days <= 1 else "daily",
            }
            data = await self._request(
                f"/coins/{normalized}/market_chart", params, symbol=normalized
            )
            return _parse_market_chart(data, normalized)

        return await self._cached_fetch(HISTORY_CACHE, key, fetch_history, symbol=normalized)

    async def search_coins(self, query: str) -> list[CoinListing]:
        """Return up to ten coins matching ``query``."""
        normalized = query.strip()
        if not normalized:
            return []
        key = SEARCH_CACHE.key(normalized.lower())

        async def fetch_search() -> list[CoinListing]:
            data = await self._request("/search", {"query": normalized}, symbol=normalized)
            if not isinstance(data, dict) or not isinstance(data.get("coins"), list):
                msg = "CoinGecko search response has no 'coins' list."
                raise MalformedPayloadError(msg, symbol=normalized, source=COINGECKO_SOURCE)
            return _parse_listings(data["coins"])[:SEARCH_RESULT_LIMIT]

        return await self._cached_fetch(SEARCH_CACHE, key, fetch_search, symbol=normalized)

    async def fetch_supported_coins(self) -> list[CoinListing]:
        """Return every coin CoinGecko lists (id, symbol, name)."""

        async def fetch_list() -> list[CoinListing]:
            data = await self._request("/coins/list", {}, symbol="*")
            if not isinstance(data, list):
                msg = "CoinGecko coin list response is not a list."
                raise MalformedPayloadError(msg, symbol="*", source=COINGECKO_SOURCE)
            return _parse_listings(data)

        return await self._cached_fetch(COINS_CACHE, COINS_CACHE.key("all"), fetch_list, symbol="*")

    def get_usage_stats(self) -> UsageStats:
        """Request counters from the rate limiter."""
        return self._rate_limiter.get_usage_stats()

    async def ping(self) -> bool:
        """Return True if CoinGecko answers ``/ping``. Not rate limited."""
        try:
            await self._request("/ping", {}, symbol="ping")
        except (UpstreamUnavailableError, RateLimitExceededError, SymbolNotFoundError) as exc:
            logger.warning("CoinGecko ping failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _cached_fetch[T](
        self,
        namespace: CacheNamespace[T],
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        symbol: str,
    ) -> T:
        """Cache-first fetch with rate limiting and stale fallback."""
        cached = await self._cache.get_model(namespace, key)
        if cached is not None:
            logger.debug("CoinGecko cache hit: %s", key)
            return cached

        try:
            result = await self._rate_limiter.execute(
                fetch_fn, symbol=symbol, source=COINGECKO_SOURCE
            )
        except (UpstreamUnavailableError, RateLimitExceededError) as exc:
            stale = await self._cache.get_model_stale_allowed(namespace, key)
            if stale is not None:
                logger.warning("CoinGecko unavailable for %s (%s); serving stale data", key, exc)
                return stale
            if isinstance(exc, UpstreamUnavailableError):
                raise
            msg = f"CoinGecko rate limit persisted for {symbol} and no cached data exists."
            raise UpstreamUnavailableError(
                msg, symbol=symbol, source=COINGECKO_SOURCE, http_status=exc.http_status
            ) from exc

        await self._cache.set_model(namespace, key, result)
        return result

    async def _fetch_markets(self, ids: Sequence[str]) -> list[PriceSnapshot]:
        symbol = ",".join(ids)
        params = {
            "vs_currency": VS_CURRENCY,
            "ids": symbol,
            "order": "market_cap_desc",
            "per_page": str(max(len(ids), 1)),
            "page": "1",
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        data = await self._request("/coins/markets", params, symbol=symbol)
        if not isinstance(data, list):
            msg = "CoinGecko markets response is not a list."
            raise MalformedPayloadError(msg, symbol=symbol, source=COINGECKO_SOURCE)

        fetched_at = datetime.datetime.now(datetime.UTC)
        snapshots: list[PriceSnapshot] = []
        for item in data:
            snapshot = _parse_market_item(item, fetched_at)
            if snapshot is None:
                logger.warning("Skipping malformed CoinGecko market item: %r", item)
                continue
            snapshots.append(snapshot)

        if data and not snapshots:
            msg = "Every item in the CoinGecko markets response was malformed."
            raise MalformedPayloadError(msg, symbol=symbol, source=COINGECKO_SOURCE)

        logger.info("Fetched %d/%d prices from CoinGecko", len(snapshots), len(ids))
        return snapshots

    async def _request(self, path: str, params: dict[str, str], *, symbol: str) -> Any:
        """GET ``path`` and return the decoded JSON body.

        Raises:
            RateLimitExceededError: HTTP 429.
            SymbolNotFoundError: HTTP 404.
            UpstreamUnavailableError: Timeout, transport error, other non-2xx.
            MalformedPayloadError: Body is not JSON.
        """
        try:
            response = await asyncio.wait_for(
                self._client.get(path, params=params, headers=self._headers),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            msg = f"CoinGecko request to {path} timed out."
            logger.error(msg)
            raise UpstreamUnavailableError(msg, symbol=symbol, source=COINGECKO_SOURCE) from exc
        except httpx.HTTPError as exc:
            msg = f"CoinGecko request to {path} failed: {exc}"
            logger.error(msg)
            raise UpstreamUnavailableError(msg, symbol=symbol, source=COINGECKO_SOURCE) from exc

        status = response.status_code
        if status == 429:  # noqa: PLR2004
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            msg = f"CoinGecko rate limit hit on {path}."
            raise RateLimitExceededError(
                msg, symbol=symbol, source=COINGECKO_SOURCE, retry_after=retry_after
            )
        if status == 404:  # noqa: PLR2004
            msg = f"CoinGecko returned 404 for {path}."
            raise SymbolNotFoundError(
                msg, symbol=symbol, source=COINGECKO_SOURCE, http_status=status
            )
        if not 200 <= status < 300:  # noqa: PLR2004
            msg = f"CoinGecko returned HTTP {status} for {path}."
            raise UpstreamUnavailableError(
                msg, symbol=symbol, source=COINGECKO_SOURCE, http_status=status
            )

        try:
            return response.json()
        except ValueError as exc:
            msg = f"CoinGecko returned a non-JSON body for {path}."
            raise MalformedPayloadError(msg, symbol=symbol, source=COINGECKO_SOURCE) from exc


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _parse_market_item(item: object, fetched_at: datetime.datetime) -> PriceSnapshot | None:
    """Build a snapshot from one ``/coins/markets`` item, or None if unusable."""
    if not isinstance(item, dict):
        return None
    coin_id = item.get("id")
    symbol = item.get("symbol")
    price = safe_decimal(item.get("current_price"))
    if not isinstance(coin_id, str) or not isinstance(symbol, str) or price is None:
        return None
    try:
        return PriceSnapshot(
            coin_id=coin_id,
            symbol=symbol,
            name=str(item.get("name") or ""),
            current_price=price,
            price_change_24h=safe_decimal(item.get("price_change_24h")),
            price_change_percentage_24h=safe_decimal(item.get("price_change_percentage_24h")),
            market_cap=safe_decimal(item.get("market_cap")),
            total_volume=safe_decimal(item.get("total_volume")),
            fetched_at=fetched_at,
        )
    except ValidationError:
        return None


def _parse_market_chart(data: object, coin_id: str) -> list[PricePoint]:
    """Convert ``{"prices": [[ms, price], ...]}`` into PricePoints."""
    if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
        msg = "CoinGecko market_chart response has no 'prices' list."
        raise MalformedPayloadError(msg, symbol=coin_id, source=COINGECKO_SOURCE)

    points: list[PricePoint] = []
    for pair in data["prices"]:
        if not isinstance(pair, list | tuple) or len(pair) != 2:  # noqa: PLR2004
            continue
        millis, raw_price = pair
        price = safe_decimal(raw_price)
        if price is None or not isinstance(millis, int | float):
            continue
        points.append(
            PricePoint(
                timestamp=datetime.datetime.fromtimestamp(millis / 1000, tz=datetime.UTC),
                price=price,
            )
        )
    return points


def _parse_listings(items: list[Any]) -> list[CoinListing]:
    listings: list[CoinListing] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            listings.append(
                CoinListing(
                    id=str(item["id"]),
                    symbol=str(item["symbol"]),
                    name=str(item.get("name") or ""),
                )
            )
        except KeyError:
            continue
    return listings
