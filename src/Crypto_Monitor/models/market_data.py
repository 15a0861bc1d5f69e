"""Market data models: price snapshots, history points, and coin listings.

All price fields use Decimal (constructed from strings) with custom
serializers to prevent silent float conversion in JSON roundtrips.
"""

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator


class PriceSnapshot(BaseModel):
    """One quote for one coin at one instant.

    Frozen because a snapshot is superseded by the next fetch, never updated.
    """

    model_config = ConfigDict(frozen=True)

    coin_id: str
    symbol: str
    name: str = ""
    current_price: Decimal
    price_change_24h: Decimal | None = None
    price_change_percentage_24h: Decimal | None = None
    market_cap: Decimal | None = None
    total_volume: Decimal | None = None
    fetched_at: datetime.datetime

    @field_validator("symbol")
    @classmethod
    def canonicalize_symbol(cls, value: str) -> str:
        """Uppercase and strip the ticker; reject empty symbols."""
        normalized = value.strip().upper()
        if not normalized:
            msg = "symbol must not be empty"
            raise ValueError(msg)
        return normalized

    @field_serializer(
        "current_price",
        "price_change_24h",
        "price_change_percentage_24h",
        "market_cap",
        "total_volume",
    )
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        """Serialize Decimal fields as strings to preserve precision."""
        return None if value is None else str(value)


class PricePoint(BaseModel):
    """A single (timestamp, price) sample from the upstream history endpoint."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime.datetime
    price: Decimal

    @field_serializer("price")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal fields as strings to preserve precision."""
        return str(value)


class CoinListing(BaseModel):
    """Identifier triple for a coin known to the upstream source."""

    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    name: str


class PriceHistoryRecord(BaseModel):
    """A price sample persisted by the ingestion scheduler."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Decimal
    timestamp: datetime.datetime
    volume_24h: Decimal | None = None
    market_cap: Decimal | None = None

    @field_serializer("price", "volume_24h", "market_cap")
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        """Serialize Decimal fields as strings to preserve precision."""
        return None if value is None else str(value)


class UsageStats(BaseModel):
    """Request counters for the upstream client. Observability only."""

    model_config = ConfigDict(frozen=True)

    request_count: int
    last_request_at: datetime.datetime | None
    rate_limit_per_minute: int
