"""FastAPI web layer for Crypto Monitor.

Re-exports the application factory so consumers can import directly:
    from Crypto_Monitor.web import create_app
"""

from Crypto_Monitor.web.app import create_app

__all__ = ["create_app"]
