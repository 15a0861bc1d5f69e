"""Shared test fixtures for the Crypto Monitor test suite.

Provides realistic sample instances of the core models and an in-memory
database so tests don't need to inline large construction blocks.
"""

import datetime
from collections.abc import AsyncGenerator, Callable
from decimal import Decimal

import pytest
import pytest_asyncio

from Crypto_Monitor.data.database import Database
from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.models import (
    AlertCondition,
    AlertRule,
    HealthStatus,
    NotificationPreferences,
    PriceSnapshot,
    TriggeredAlert,
)

FIXED_NOW = datetime.datetime(2025, 1, 15, 15, 30, 0, tzinfo=datetime.UTC)


def make_snapshot(
    symbol: str = "BTC",
    price: str = "61000",
    *,
    coin_id: str | None = None,
    change_pct: str | None = "2.5",
) -> PriceSnapshot:
    """Build a PriceSnapshot with sensible defaults for the given symbol."""
    return PriceSnapshot(
        coin_id=coin_id or {"BTC": "bitcoin", "ETH": "ethereum"}.get(symbol, symbol.lower()),
        symbol=symbol,
        name={"BTC": "Bitcoin", "ETH": "Ethereum"}.get(symbol, symbol.title()),
        current_price=Decimal(price),
        price_change_24h=Decimal("1500.25"),
        price_change_percentage_24h=None if change_pct is None else Decimal(change_pct),
        market_cap=Decimal("1200000000000"),
        total_volume=Decimal("35000000000"),
        fetched_at=FIXED_NOW,
    )


def make_rule(
    rule_id: int = 1,
    symbol: str = "BTC",
    condition: AlertCondition = AlertCondition.ABOVE,
    threshold: str = "50000",
    *,
    user_id: str = "default",
    is_active: bool = True,
) -> AlertRule:
    """Build an AlertRule, putting ``threshold`` in the field the condition uses."""
    value = Decimal(threshold)
    return AlertRule(
        id=rule_id,
        user_id=user_id,
        symbol=symbol,
        condition=condition,
        target_price=value if condition.uses_price else None,
        percentage_change=None if condition.uses_price else value,
        is_active=is_active,
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )


@pytest_asyncio.fixture()
async def db() -> AsyncGenerator[Database]:
    """Provide a connected in-memory Database for each test, with cleanup."""
    database = Database(db_path=":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture()
async def repo(db: Database) -> Repository:
    """Provide a Repository backed by the in-memory Database."""
    return Repository(db)


@pytest.fixture()
def sample_snapshot() -> PriceSnapshot:
    """A BTC snapshot at $61,000, up 2.5% over 24h."""
    return make_snapshot()


@pytest.fixture()
def sample_eth_snapshot() -> PriceSnapshot:
    """An ETH snapshot at $3,200, down 6% over 24h."""
    return make_snapshot("ETH", "3200", change_pct="-6.0")


@pytest.fixture()
def sample_rule() -> AlertRule:
    """An active BTC above-$50,000 rule."""
    return make_rule()


@pytest.fixture()
def sample_triggered_alert(
    sample_rule: AlertRule, sample_snapshot: PriceSnapshot
) -> TriggeredAlert:
    """The event produced when ``sample_rule`` fires against ``sample_snapshot``."""
    return TriggeredAlert(
        rule=sample_rule,
        snapshot=sample_snapshot,
        current_price=sample_snapshot.current_price,
        price_change_percentage_24h=sample_snapshot.price_change_percentage_24h,
        triggered_at=FIXED_NOW,
    )


@pytest.fixture()
def sample_prefs() -> NotificationPreferences:
    """A user who opted in to alert emails."""
    return NotificationPreferences(
        user_id="default",
        email="alice@example.com",
        first_name="Alice",
        email_notifications=True,
    )


@pytest.fixture()
def sample_health_status() -> HealthStatus:
    """A healthy HealthStatus snapshot."""
    return HealthStatus(
        coingecko_available=True,
        sqlite_available=True,
        cache_available=True,
        scheduler_running=True,
        uptime_seconds=120.5,
        last_check=FIXED_NOW,
    )


@pytest.fixture()
def snapshot_factory() -> Callable[..., PriceSnapshot]:
    """Return ``make_snapshot`` for tests that need several snapshots."""
    return make_snapshot


@pytest.fixture()
def rule_factory() -> Callable[..., AlertRule]:
    """Return ``make_rule`` for tests that need several rules."""
    return make_rule
