"""Persistence layer for Crypto Monitor.

Re-exports the main public API: Database for connection management,
Repository for typed query operations.
"""

from Crypto_Monitor.data.database import Database
from Crypto_Monitor.data.repository import Repository

__all__ = ["Database", "Repository"]
