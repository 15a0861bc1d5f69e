"""Exception handlers and request logging middleware.

Maps domain exceptions from ``Crypto_Monitor.utils.exceptions`` to HTTP
status codes. Provides request logging middleware that logs method, path,
status code, and duration at INFO level.
"""

import logging
import math
import time

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from Crypto_Monitor.utils.exceptions import (
    AlertNotFoundError,
    DataFetchError,
    RateLimitExceededError,
    SymbolNotFoundError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Domain exception -> HTTP status handlers
# ---------------------------------------------------------------------------


async def _symbol_not_found_handler(request: Request, exc: SymbolNotFoundError) -> JSONResponse:
    """Map SymbolNotFoundError to HTTP 404."""
    logger.warning("Symbol not found: %s", exc)
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _alert_not_found_handler(request: Request, exc: AlertNotFoundError) -> JSONResponse:
    """Map AlertNotFoundError to HTTP 404."""
    logger.warning("Alert not found: %s", exc)
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _upstream_unavailable_handler(
    request: Request, exc: UpstreamUnavailableError
) -> JSONResponse:
    """Map UpstreamUnavailableError (and MalformedPayloadError) to HTTP 503."""
    logger.error("Upstream unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceededError
) -> JSONResponse:
    """Map RateLimitExceededError to HTTP 429 with a Retry-After header."""
    logger.warning("Rate limit exceeded: %s", exc)
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(exc.retry_after))
    return JSONResponse(status_code=429, content={"detail": str(exc)}, headers=headers)


async def _data_fetch_error_handler(request: Request, exc: DataFetchError) -> JSONResponse:
    """Map base DataFetchError to HTTP 502 (catch-all for data errors)."""
    logger.error("Data fetch error: %s", exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Map a model ValidationError raised inside a handler to HTTP 422."""
    logger.warning("Validation failed: %s", exc)
    errors = [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"detail": errors})


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain exception handlers on the FastAPI application.

    More specific exception types must be registered before their base classes
    so FastAPI matches them correctly.
    """
    app.add_exception_handler(SymbolNotFoundError, _symbol_not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AlertNotFoundError, _alert_not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(UpstreamUnavailableError, _upstream_unavailable_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceededError, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DataFetchError, _data_fetch_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, _validation_error_handler)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request, log timing information, and return response."""
        start_time = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start_time) * 1000

        path = request.url.path
        if path in ("/health", "/api/health"):
            logger.debug(
                "%s %s -> %d (%.1fms)", request.method, path, response.status_code, duration_ms
            )
        else:
            logger.info(
                "%s %s -> %d (%.1fms)", request.method, path, response.status_code, duration_ms
            )

        return response
