"""Tests for CoinGeckoService: parsing, caching, rate limiting, and stale fallback.

All HTTP traffic goes through ``httpx.MockTransport``. No real API calls.

Covers:
- /coins/markets parsing into PriceSnapshots (symbols uppercased, Decimals)
- Fresh cache hits make no upstream call
- HTTP 429 is retried once, honouring Retry-After
- Upstream failure serves the last cached value; with no cache it raises
- Malformed items are skipped; an all-malformed payload is an error
- Unknown coins return None
- History, search and coin list endpoints
- API key header and ping
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import httpx
import pytest

from Crypto_Monitor.services.cache import ServiceCache
from Crypto_Monitor.services.coingecko import COINGECKO_API_KEY_HEADER, CoinGeckoService
from Crypto_Monitor.services.rate_limiter import RateLimiter
from Crypto_Monitor.utils.exceptions import (
    MalformedPayloadError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)

_BTC: dict[str, Any] = {
    "id": "bitcoin",
    "symbol": "btc",
    "name": "Bitcoin",
    "current_price": 61000,
    "price_change_24h": 1500.5,
    "price_change_percentage_24h": 2.5,
    "market_cap": 1200000000000,
    "total_volume": 35000000000,
}
_ETH: dict[str, Any] = {
    "id": "ethereum",
    "symbol": "eth",
    "name": "Ethereum",
    "current_price": 3200.12,
    "price_change_24h": -204.3,
    "price_change_percentage_24h": -6.0,
    "market_cap": 385000000000,
    "total_volume": 18000000000,
}

Handler = Callable[[httpx.Request], httpx.Response]


class _Recorder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def calls(self) -> int:
        return len(self.requests)


def _make_service(
    handler: Handler,
    *,
    cache: ServiceCache | None = None,
    api_key: str | None = None,
    supported: tuple[str, ...] = ("bitcoin", "ethereum"),
    timeout: float = 5.0,
) -> CoinGeckoService:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://api.test"
    )
    return CoinGeckoService(
        cache or ServiceCache(),
        RateLimiter(requests_per_minute=6000, default_retry_after=0.01),
        supported_coins=supported,
        api_key=api_key,
        timeout=timeout,
        client=client,
    )


class TestFetchCurrentPrices:
    @pytest.mark.asyncio()
    async def test_parses_snapshots(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC, _ETH]))
        service = _make_service(recorder)

        snapshots = await service.fetch_current_prices()

        assert [s.symbol for s in snapshots] == ["BTC", "ETH"]
        btc = snapshots[0]
        assert btc.coin_id == "bitcoin"
        assert btc.current_price == Decimal("61000")
        assert btc.price_change_percentage_24h == Decimal("2.5")
        assert snapshots[1].current_price == Decimal("3200.12")

        request = recorder.requests[0]
        assert request.url.path == "/coins/markets"
        assert request.url.params["ids"] == "bitcoin,ethereum"
        assert request.url.params["vs_currency"] == "usd"
        assert request.url.params["price_change_percentage"] == "24h"

    @pytest.mark.asyncio()
    async def test_fresh_cache_hit_makes_no_request(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC, _ETH]))
        service = _make_service(recorder)

        first = await service.fetch_current_prices()
        second = await service.fetch_current_prices()

        assert first == second
        assert recorder.calls == 1

    @pytest.mark.asyncio()
    async def test_explicit_ids_are_normalized(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC]))
        service = _make_service(recorder)

        await service.fetch_current_prices(["Bitcoin", "bitcoin"])
        assert recorder.requests[0].url.params["ids"] == "bitcoin"

    @pytest.mark.asyncio()
    async def test_no_coins_returns_empty_without_request(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[]))
        service = _make_service(recorder, supported=())

        assert await service.fetch_current_prices() == []
        assert recorder.calls == 0

    @pytest.mark.asyncio()
    async def test_malformed_item_skipped(self) -> None:
        broken = {"id": "mystery", "symbol": "mys", "current_price": None}
        recorder = _Recorder(httpx.Response(200, json=[_BTC, broken, "junk"]))
        service = _make_service(recorder)

        snapshots = await service.fetch_current_prices()
        assert [s.symbol for s in snapshots] == ["BTC"]

    @pytest.mark.asyncio()
    async def test_all_items_malformed_raises(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[{"id": "x"}]))
        service = _make_service(recorder)

        with pytest.raises(MalformedPayloadError):
            await service.fetch_current_prices()

    @pytest.mark.asyncio()
    async def test_non_json_body_raises_malformed(self) -> None:
        recorder = _Recorder(httpx.Response(200, text="<html>oops</html>"))
        service = _make_service(recorder)

        with pytest.raises(MalformedPayloadError):
            await service.fetch_current_prices()


class TestRateLimitHandling:
    @pytest.mark.asyncio()
    async def test_429_retried_once_then_succeeds(self) -> None:
        recorder = _Recorder(
            httpx.Response(429, headers={"Retry-After": "0.05"}),
            httpx.Response(200, json=[_BTC, _ETH]),
        )
        service = _make_service(recorder)

        snapshots = await service.fetch_current_prices()

        assert len(snapshots) == 2
        assert recorder.calls == 2

    @pytest.mark.asyncio()
    async def test_persistent_429_without_cache_is_unavailable(self) -> None:
        recorder = _Recorder(httpx.Response(429))
        service = _make_service(recorder)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await service.fetch_current_prices()

        assert exc_info.value.http_status == 429
        assert recorder.calls == 2


class TestStaleFallback:
    """When the upstream fails, the last cached value is served."""

    @pytest.mark.asyncio()
    async def test_upstream_error_serves_last_known_good(self) -> None:
        recorder = _Recorder(
            httpx.Response(200, json=[_BTC, _ETH]),
            httpx.Response(503),
        )
        cache = ServiceCache()
        service = _make_service(recorder, cache=cache)

        first = await service.fetch_current_prices()
        # Expire the fresh copy; the last-known-good copy remains.
        cache._memory_cache.clear()

        second = await service.fetch_current_prices()

        assert second == first
        assert recorder.calls == 2

    @pytest.mark.asyncio()
    async def test_persistent_429_serves_stale(self) -> None:
        recorder = _Recorder(
            httpx.Response(200, json=[_BTC]),
            httpx.Response(429),
        )
        cache = ServiceCache()
        service = _make_service(recorder, cache=cache)

        first = await service.fetch_current_prices(["bitcoin"])
        cache._memory_cache.clear()

        assert await service.fetch_current_prices(["bitcoin"]) == first

    @pytest.mark.asyncio()
    async def test_upstream_error_without_cache_raises(self) -> None:
        recorder = _Recorder(httpx.Response(500))
        service = _make_service(recorder)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await service.fetch_current_prices()
        assert exc_info.value.http_status == 500
        assert exc_info.value.source == "coingecko"

    @pytest.mark.asyncio()
    async def test_transport_error_raises_unavailable(self) -> None:
        recorder = _Recorder(httpx.ConnectError("connection refused"))
        service = _make_service(recorder)

        with pytest.raises(UpstreamUnavailableError):
            await service.fetch_current_prices()

    @pytest.mark.asyncio()
    async def test_timeout_raises_unavailable(self) -> None:
        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json=[_BTC])

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(slow_handler), base_url="https://api.test"
        )
        service = CoinGeckoService(
            ServiceCache(),
            RateLimiter(requests_per_minute=6000),
            supported_coins=["bitcoin"],
            timeout=0.05,
            client=client,
        )

        with pytest.raises(UpstreamUnavailableError, match="timed out"):
            await service.fetch_current_prices()


class TestFetchCoinPrice:
    @pytest.mark.asyncio()
    async def test_returns_snapshot(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC]))
        service = _make_service(recorder)

        snapshot = await service.fetch_coin_price("Bitcoin")
        assert snapshot is not None
        assert snapshot.symbol == "BTC"
        assert recorder.requests[0].url.params["ids"] == "bitcoin"

    @pytest.mark.asyncio()
    async def test_unknown_coin_returns_none(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[]))
        service = _make_service(recorder)

        assert await service.fetch_coin_price("not-a-coin") is None

    @pytest.mark.asyncio()
    async def test_404_returns_none(self) -> None:
        recorder = _Recorder(httpx.Response(404))
        service = _make_service(recorder)

        assert await service.fetch_coin_price("not-a-coin") is None


class TestHistoricalPrices:
    @pytest.mark.asyncio()
    async def test_daily_history(self) -> None:
        payload = {"prices": [[1736899200000, 60000.5], [1736985600000, 61000], ["bad"]]}
        recorder = _Recorder(httpx.Response(200, json=payload))
        service = _make_service(recorder)

        points = await service.fetch_historical_prices("bitcoin", days=7)

        assert [p.price for p in points] == [Decimal("60000.5"), Decimal("61000")]
        assert points[0].timestamp.year == 2025
        assert points[0].timestamp.tzinfo is not None
        request = recorder.requests[0]
        assert request.url.path == "/coins/bitcoin/market_chart"
        assert request.url.params["interval"] == "daily"
        assert request.url.params["days"] == "7"

    @pytest.mark.asyncio()
    async def test_one_day_is_hourly(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"prices": []}))
        service = _make_service(recorder)

        await service.fetch_historical_prices("bitcoin", days=1)
        assert recorder.requests[0].url.params["interval"] == "hourly"

    @pytest.mark.asyncio()
    async def test_unknown_coin_raises(self) -> None:
        recorder = _Recorder(httpx.Response(404))
        service = _make_service(recorder)

        with pytest.raises(SymbolNotFoundError):
            await service.fetch_historical_prices("not-a-coin")

    @pytest.mark.asyncio()
    async def test_missing_prices_key_is_malformed(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"market_caps": []}))
        service = _make_service(recorder)

        with pytest.raises(MalformedPayloadError):
            await service.fetch_historical_prices("bitcoin")


class TestSearchAndListing:
    @pytest.mark.asyncio()
    async def test_search_limited_to_ten(self) -> None:
        coins = [{"id": f"coin-{i}", "symbol": f"c{i}", "name": f"Coin {i}"} for i in range(12)]
        recorder = _Recorder(httpx.Response(200, json={"coins": coins}))
        service = _make_service(recorder)

        results = await service.search_coins("coin")

        assert len(results) == 10
        assert results[0].id == "coin-0"
        assert recorder.requests[0].url.params["query"] == "coin"

    @pytest.mark.asyncio()
    async def test_blank_search_makes_no_request(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"coins": []}))
        service = _make_service(recorder)

        assert await service.search_coins("   ") == []
        assert recorder.calls == 0

    @pytest.mark.asyncio()
    async def test_supported_coins_list(self) -> None:
        listing = [
            {"id": "bitcoin", "symbol": "btc", "name": "Bitcoin"},
            {"symbol": "broken"},
        ]
        recorder = _Recorder(httpx.Response(200, json=listing))
        service = _make_service(recorder)

        coins = await service.fetch_supported_coins()
        assert [c.id for c in coins] == ["bitcoin"]
        assert recorder.requests[0].url.path == "/coins/list"


class TestHeadersPingAndStats:
    @pytest.mark.asyncio()
    async def test_api_key_header_sent(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC]))
        service = _make_service(recorder, api_key="demo-key")

        await service.fetch_current_prices(["bitcoin"])
        assert recorder.requests[0].headers[COINGECKO_API_KEY_HEADER] == "demo-key"

    @pytest.mark.asyncio()
    async def test_no_api_key_header_by_default(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC]))
        service = _make_service(recorder)

        await service.fetch_current_prices(["bitcoin"])
        assert COINGECKO_API_KEY_HEADER not in recorder.requests[0].headers

    @pytest.mark.asyncio()
    async def test_ping(self) -> None:
        up = _make_service(_Recorder(httpx.Response(200, json={"gecko_says": "(V3) To the Moon!"})))
        down = _make_service(_Recorder(httpx.Response(503)))

        assert await up.ping() is True
        assert await down.ping() is False

    @pytest.mark.asyncio()
    async def test_usage_stats_count_upstream_requests(self) -> None:
        recorder = _Recorder(httpx.Response(200, json=[_BTC, _ETH]))
        service = _make_service(recorder)

        await service.fetch_current_prices()
        await service.fetch_current_prices()

        stats = service.get_usage_stats()
        assert stats.request_count == 1
        assert stats.rate_limit_per_minute == 6000

    @pytest.mark.asyncio()
    async def test_aclose(self) -> None:
        service = _make_service(_Recorder(httpx.Response(200, json=[])))
        await service.aclose()
