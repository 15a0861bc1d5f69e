"""Tests for domain exception handlers and request logging middleware.

Verifies that each domain exception type maps to the correct HTTP status code
and returns a JSON response with a detail message.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from Crypto_Monitor.models.alerts import AlertRuleCreate
from Crypto_Monitor.utils.exceptions import (
    AlertNotFoundError,
    DataFetchError,
    MalformedPayloadError,
    RateLimitExceededError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)
from Crypto_Monitor.web.middleware import (
    RequestLoggingMiddleware,
    _alert_not_found_handler,
    _rate_limit_exceeded_handler,
    _symbol_not_found_handler,
    register_exception_handlers,
)


def _make_test_app() -> FastAPI:
    """Create a minimal FastAPI app with exception handlers for testing."""
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise-symbol-not-found")
    async def raise_symbol_not_found() -> None:
        raise SymbolNotFoundError("dogecoin2 not found", symbol="dogecoin2", source="coingecko")

    @app.get("/raise-alert-not-found")
    async def raise_alert_not_found() -> None:
        raise AlertNotFoundError(17)

    @app.get("/raise-upstream-unavailable")
    async def raise_upstream_unavailable() -> None:
        raise UpstreamUnavailableError("CoinGecko is down", symbol="bitcoin", source="coingecko")

    @app.get("/raise-malformed")
    async def raise_malformed() -> None:
        raise MalformedPayloadError("Bad JSON", symbol="bitcoin", source="coingecko")

    @app.get("/raise-rate-limit")
    async def raise_rate_limit() -> None:
        raise RateLimitExceededError(
            "Rate limit hit", symbol="bitcoin", source="coingecko", retry_after=12.2
        )

    @app.get("/raise-rate-limit-no-hint")
    async def raise_rate_limit_no_hint() -> None:
        raise RateLimitExceededError("Rate limit hit", symbol="bitcoin", source="coingecko")

    @app.get("/raise-data-fetch-error")
    async def raise_data_fetch_error() -> None:
        raise DataFetchError("Generic fetch error", symbol="bitcoin", source="coingecko")

    @app.get("/raise-validation-error")
    async def raise_validation_error() -> None:
        AlertRuleCreate(symbol="BTC", condition="above")  # type: ignore[arg-type]

    return app


class TestExceptionHandlers:
    """Test that domain exceptions map to correct HTTP status codes."""

    def setup_method(self) -> None:
        """Create test client with exception handlers registered."""
        self.app = _make_test_app()
        self.client = TestClient(self.app, raise_server_exceptions=False)

    def test_symbol_not_found_returns_404(self) -> None:
        response = self.client.get("/raise-symbol-not-found")
        assert response.status_code == 404
        assert response.json()["detail"] == "dogecoin2 not found"

    def test_alert_not_found_returns_404(self) -> None:
        response = self.client.get("/raise-alert-not-found")
        assert response.status_code == 404
        assert response.json()["detail"] == "Alert 17 not found."

    def test_upstream_unavailable_returns_503(self) -> None:
        response = self.client.get("/raise-upstream-unavailable")
        assert response.status_code == 503
        assert "detail" in response.json()

    def test_malformed_payload_returns_503(self) -> None:
        """MalformedPayloadError is an UpstreamUnavailableError."""
        assert self.client.get("/raise-malformed").status_code == 503

    def test_rate_limit_returns_429_with_retry_after(self) -> None:
        response = self.client.get("/raise-rate-limit")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "13"

    def test_rate_limit_without_hint_has_no_header(self) -> None:
        response = self.client.get("/raise-rate-limit-no-hint")
        assert response.status_code == 429
        assert "Retry-After" not in response.headers

    def test_data_fetch_error_returns_502(self) -> None:
        """DataFetchError (base) should map to HTTP 502."""
        response = self.client.get("/raise-data-fetch-error")
        assert response.status_code == 502
        assert response.json()["detail"] == "Generic fetch error"

    def test_validation_error_returns_422(self) -> None:
        response = self.client.get("/raise-validation-error")
        assert response.status_code == 422
        errors = response.json()["detail"]
        assert isinstance(errors, list)
        assert errors
        assert {"loc", "msg", "type"} <= errors[0].keys()


class TestHandlerFunctions:
    """Test individual handler functions return correct JSONResponse."""

    @staticmethod
    def _request() -> Request:
        return Request(scope={"type": "http", "method": "GET", "path": "/test"})

    @pytest.mark.asyncio()
    async def test_symbol_not_found_handler(self) -> None:
        exc = SymbolNotFoundError("Not found", symbol="xyz", source="test")
        result = await _symbol_not_found_handler(self._request(), exc)
        assert isinstance(result, JSONResponse)
        assert result.status_code == 404

    @pytest.mark.asyncio()
    async def test_alert_not_found_handler(self) -> None:
        result = await _alert_not_found_handler(self._request(), AlertNotFoundError(3))
        assert result.status_code == 404

    @pytest.mark.asyncio()
    async def test_rate_limit_handler(self) -> None:
        exc = RateLimitExceededError("Throttled", symbol="xyz", source="test", retry_after=1)
        result = await _rate_limit_exceeded_handler(self._request(), exc)
        assert result.status_code == 429
        assert result.headers["Retry-After"] == "1"


class TestRequestLoggingMiddleware:
    """Test request logging middleware integration."""

    def test_middleware_logs_request(self, caplog: pytest.LogCaptureFixture) -> None:
        """RequestLoggingMiddleware should log method, path, status, and duration."""
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.get("/test-log")
        async def test_endpoint() -> dict[str, str]:
            return {"status": "ok"}

        client = TestClient(app)
        with caplog.at_level("INFO", logger="Crypto_Monitor.web.middleware"):
            response = client.get("/test-log")

        assert response.status_code == 200
        assert any(
            "GET" in record.message and "/test-log" in record.message and "200" in record.message
            for record in caplog.records
        )

    def test_health_requests_logged_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        app = FastAPI()
        app.add_middleware(RequestLoggingMiddleware)

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        client = TestClient(app)
        with caplog.at_level("INFO", logger="Crypto_Monitor.web.middleware"):
            client.get("/health")

        assert not any("/health" in record.message for record in caplog.records)
