"""Shared fixtures for web route tests.

Provides a test FastAPI app whose ``app.state`` holds mocked services, and a
TestClient that does not run the lifespan, so route tests never open a
database or reach CoinGecko.
"""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from Crypto_Monitor.config import Settings
from Crypto_Monitor.data.database import Database
from Crypto_Monitor.data.repository import Repository
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.services.broadcast import BroadcastHub
from Crypto_Monitor.services.coingecko import CoinGeckoService
from Crypto_Monitor.web.app import create_app
from Crypto_Monitor.web.deps import get_repository


@pytest.fixture()
def settings() -> Settings:
    return Settings(db_path=":memory:", supported_coins=("bitcoin", "ethereum"))


@pytest.fixture()
def mock_coingecko() -> MagicMock:
    """CoinGeckoService with every coroutine method stubbed."""
    service = MagicMock(spec=CoinGeckoService)
    service.fetch_current_prices = AsyncMock(return_value=[])
    service.fetch_coin_price = AsyncMock(return_value=None)
    service.fetch_historical_prices = AsyncMock(return_value=[])
    service.search_coins = AsyncMock(return_value=[])
    service.fetch_supported_coins = AsyncMock(return_value=[])
    service.ping = AsyncMock(return_value=True)
    return service


@pytest.fixture()
def mock_alert_service() -> MagicMock:
    """AlertService with every coroutine method stubbed."""
    service = MagicMock(spec=AlertService)
    for name in (
        "create_alert",
        "list_alerts",
        "get_alert",
        "update_alert",
        "delete_alert",
        "get_alert_stats",
    ):
        setattr(service, name, AsyncMock())
    return service


@pytest.fixture()
def mock_repo() -> MagicMock:
    repo = MagicMock(spec=Repository)
    repo.get_price_history = AsyncMock(return_value=[])
    return repo


@pytest.fixture()
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture()
def app(
    settings: Settings,
    mock_coingecko: MagicMock,
    mock_alert_service: MagicMock,
    mock_repo: MagicMock,
    hub: BroadcastHub,
) -> FastAPI:
    """Create a test app with mocked services on app.state."""
    test_app = create_app(settings, start_scheduler=False)
    test_app.state.settings = settings
    test_app.state.database = MagicMock(spec=Database)
    test_app.state.coingecko = mock_coingecko
    test_app.state.alert_service = mock_alert_service
    test_app.state.hub = hub
    test_app.state.started_at = time.monotonic() - 42

    async def override_get_repository() -> MagicMock:
        return mock_repo

    test_app.dependency_overrides[get_repository] = override_get_repository
    return test_app


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    """Create a synchronous test client for the app (lifespan not started)."""
    return TestClient(app, raise_server_exceptions=False)
