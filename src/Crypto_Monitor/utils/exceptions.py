"""Custom exception hierarchy for the Crypto Monitor application.

All upstream data exceptions inherit from DataFetchError, which carries
contextual information about what went wrong during data retrieval.
"""


class DataFetchError(Exception):
    """Base exception for all data-fetching failures.

    Attributes:
        symbol: The coin id or symbol involved in the failure.
        source: The data source that failed (e.g., "coingecko").
        http_status: The HTTP status code, if the failure was HTTP-related.
    """

    def __init__(
        self,
        message: str,
        *,
        symbol: str,
        source: str,
        http_status: int | None = None,
    ) -> None:
        self.symbol = symbol
        self.source = source
        self.http_status = http_status
        super().__init__(message)


class SymbolNotFoundError(DataFetchError):
    """Raised when a coin id does not exist in the data source."""


class UpstreamUnavailableError(DataFetchError):
    """Raised when the upstream source is unreachable and no fallback exists."""


class MalformedPayloadError(UpstreamUnavailableError):
    """Raised when the upstream response body cannot be interpreted."""


class RateLimitExceededError(DataFetchError):
    """Raised when the data source rate limit has been hit.

    ``retry_after`` holds the server-provided wait in seconds, or None when
    the response carried no usable ``Retry-After`` header.
    """

    def __init__(
        self,
        message: str,
        *,
        symbol: str,
        source: str,
        http_status: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, symbol=symbol, source=source, http_status=http_status)
        self.retry_after = retry_after


class AlertNotFoundError(Exception):
    """Raised when an alert rule does not exist or is not owned by the caller."""

    def __init__(self, alert_id: int) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} not found.")
