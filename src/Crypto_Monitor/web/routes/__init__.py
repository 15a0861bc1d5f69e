"""FastAPI route modules for Crypto Monitor.

Re-exports all routers so the application factory can import them:
    from Crypto_Monitor.web.routes import alerts_router, prices_router
"""

from Crypto_Monitor.web.routes.alerts import router as alerts_router
from Crypto_Monitor.web.routes.health import router as health_router
from Crypto_Monitor.web.routes.prices import router as prices_router
from Crypto_Monitor.web.routes.stream import router as stream_router
from Crypto_Monitor.web.routes.stream import ws_router

__all__ = [
    "alerts_router",
    "health_router",
    "prices_router",
    "stream_router",
    "ws_router",
]
