"""Tests for custom exception hierarchy.

Covers:
- Inheritance: data exceptions are subclasses of DataFetchError -> Exception
- MalformedPayloadError is an UpstreamUnavailableError
- Attributes: symbol, source, http_status, retry_after accessible
- http_status defaults
- AlertNotFoundError message
"""

import pytest

from Crypto_Monitor.utils.exceptions import (
    AlertNotFoundError,
    DataFetchError,
    MalformedPayloadError,
    RateLimitExceededError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)


class TestDataFetchErrorBase:
    """Tests for the base DataFetchError exception."""

    def test_is_subclass_of_exception(self) -> None:
        assert issubclass(DataFetchError, Exception)

    def test_attributes_accessible(self) -> None:
        exc = DataFetchError("boom", symbol="bitcoin", source="coingecko", http_status=500)
        assert exc.symbol == "bitcoin"
        assert exc.source == "coingecko"
        assert exc.http_status == 500
        assert str(exc) == "boom"

    def test_http_status_defaults_to_none(self) -> None:
        exc = DataFetchError("boom", symbol="bitcoin", source="coingecko")
        assert exc.http_status is None


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_type",
        [SymbolNotFoundError, UpstreamUnavailableError, MalformedPayloadError, RateLimitExceededError],
    )
    def test_caught_as_data_fetch_error(self, exc_type: type[DataFetchError]) -> None:
        with pytest.raises(DataFetchError):
            raise exc_type("failed", symbol="bitcoin", source="coingecko")

    def test_malformed_payload_is_upstream_unavailable(self) -> None:
        with pytest.raises(UpstreamUnavailableError):
            raise MalformedPayloadError("bad json", symbol="bitcoin", source="coingecko")

    def test_rate_limit_is_not_upstream_unavailable(self) -> None:
        assert not issubclass(RateLimitExceededError, UpstreamUnavailableError)


class TestRateLimitExceededError:
    def test_defaults(self) -> None:
        exc = RateLimitExceededError("slow down", symbol="bitcoin", source="coingecko")
        assert exc.http_status == 429
        assert exc.retry_after is None

    def test_retry_after(self) -> None:
        exc = RateLimitExceededError(
            "slow down", symbol="bitcoin", source="coingecko", retry_after=12.0
        )
        assert exc.retry_after == 12.0


class TestAlertNotFoundError:
    def test_message_and_id(self) -> None:
        exc = AlertNotFoundError(42)
        assert exc.alert_id == 42
        assert str(exc) == "Alert 42 not found."

    def test_not_a_data_fetch_error(self) -> None:
        assert not issubclass(AlertNotFoundError, DataFetchError)
