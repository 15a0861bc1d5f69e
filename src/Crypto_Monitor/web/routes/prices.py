"""Price API routes.

GET /api/prices                     — Snapshots for the configured (or given) coins.
GET /api/prices/supported           — Every coin CoinGecko lists.
GET /api/prices/search?q=           — Up to ten coins matching a query.
GET /api/prices/stats               — Upstream request counters.
GET /api/prices/{coin_id}           — One coin's snapshot.
GET /api/prices/{coin_id}/history   — Upstream history plus stored samples.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.models.market_data import (
    CoinListing,
    PriceHistoryRecord,
    PricePoint,
    PriceSnapshot,
    UsageStats,
)
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.web.deps import get_coingecko_service, get_repository, validate_coin_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/prices", tags=["prices"])

# ---------------------------------------------------------------------------
# Response models (web-layer output schemas)
# ---------------------------------------------------------------------------


class PriceHistoryResponse(BaseModel):
    """Upstream history for a coin alongside the samples stored locally."""

    model_config = ConfigDict(frozen=True)

    coin_id: str
    symbol: str
    external: list[PricePoint]
    stored: list[PriceHistoryRecord]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("", response_model=list[PriceSnapshot])
async def get_current_prices(
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
    coins: Annotated[str | None, Query(description="Comma-separated coin ids")] = None,
) -> list[PriceSnapshot]:
    """Return snapshots for ``coins``, or for the configured coins if omitted."""
    coin_ids = [c for c in coins.split(",") if c.strip()] if coins else None
    return await coingecko.fetch_current_prices(coin_ids)


@router.get("/supported", response_model=list[CoinListing])
async def get_supported_coins(
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
) -> list[CoinListing]:
    return await coingecko.fetch_supported_coins()


@router.get("/search", response_model=list[CoinListing])
async def search_coins(
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
    q: Annotated[str, Query(min_length=1, max_length=100)],
) -> list[CoinListing]:
    """Search CoinGecko for coins matching ``q``."""
    return await coingecko.search_coins(q)


@router.get("/stats", response_model=UsageStats)
async def get_api_stats(
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
) -> UsageStats:
    return coingecko.get_usage_stats()


@router.get("/{coin_id}", response_model=PriceSnapshot)
async def get_coin_price(
    coin_id: Annotated[str, Depends(validate_coin_id)],
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
) -> PriceSnapshot:
    """Return one coin's snapshot, 404 if CoinGecko does not know it."""
    snapshot = await coingecko.fetch_coin_price(coin_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Cryptocurrency '{coin_id}' not found")
    return snapshot


@router.get("/{coin_id}/history", response_model=PriceHistoryResponse)
async def get_price_history(
    coin_id: Annotated[str, Depends(validate_coin_id)],
    coingecko: Annotated[CoinGeckoService, Depends(get_coingecko_service)],
    repo: Annotated[Repository, Depends(get_repository)],
    days: Annotated[int, Query(ge=1, le=365)] = 7,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> PriceHistoryResponse:
    """Return upstream history and the locally stored samples for a coin."""
    snapshot = await coingecko.fetch_coin_price(coin_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Cryptocurrency '{coin_id}' not found")

    external = await coingecko.fetch_historical_prices(coin_id, days)
    stored = await repo.get_price_history(snapshot.symbol, limit=limit)
    return PriceHistoryResponse(
        coin_id=coin_id,
        symbol=snapshot.symbol,
        external=external,
        stored=stored,
    )
