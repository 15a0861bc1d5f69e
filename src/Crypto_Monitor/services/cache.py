"""In-memory and SQLite caching layer with TTL and stale fallback.

Provides a cache-first pattern for data fetching: check cache, fetch on miss,
store, and return. Short-lived data (live prices) lives in memory; slower data
(history, coin lists, search results) goes to SQLite via the Database class.

Normal reads never serve expired data. Each ``set`` also records a
last-known-good copy of the value, which survives lazy eviction and is only
reachable through ``get_stale_allowed``: the fallback path used when the
upstream source is down. The cache never raises to callers; backend errors
are logged and degrade to a miss or a no-op.
"""

from __future__ import annotations

import datetime
import logging
import sqlite3
from collections.abc import Mapping
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from Crypto_Monitor.data.database import Database

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants: TTL values in seconds
# ---------------------------------------------------------------------------

TTL_PERMANENT: Final[float] = 0  # 0 means never expires
TTL_LIVE_PRICES: Final[float] = 30
TTL_HISTORY: Final[float] = 5 * 60
TTL_SEARCH: Final[float] = 10 * 60
TTL_COIN_LIST: Final[float] = 60 * 60

# Last-known-good copies are kept this long after being written
DEFAULT_STALE_RETENTION: Final[float] = 24 * 60 * 60

# Namespaces (second key segment) persisted to SQLite when a database is set
DATA_TYPE_PRICES: Final[str] = "prices"
DATA_TYPE_PRICE: Final[str] = "price"
DATA_TYPE_HISTORY: Final[str] = "history"
DATA_TYPE_SEARCH: Final[str] = "search"
DATA_TYPE_COINS: Final[str] = "coins"
_SQLITE_TYPES: Final[frozenset[str]] = frozenset(
    {DATA_TYPE_HISTORY, DATA_TYPE_SEARCH, DATA_TYPE_COINS}
)

# Lazy cleanup: run eviction at most every N accesses
LAZY_CLEANUP_INTERVAL: Final[int] = 100

_TIER_PRIMARY: Final[str] = "primary"
_TIER_FALLBACK: Final[str] = "fallback"

# aiosqlite surfaces a closed connection as ValueError; a never-opened
# Database raises RuntimeError from its connection property.
_BACKEND_ERRORS: Final = (sqlite3.Error, RuntimeError, ValueError)

_CACHE_TABLE_DDL: Final[str] = (
    "CREATE TABLE IF NOT EXISTS service_cache ("
    "  key TEXT NOT NULL,"
    "  tier TEXT NOT NULL,"
    "  value TEXT NOT NULL,"
    "  created_at TEXT NOT NULL,"
    "  ttl_seconds REAL NOT NULL,"
    "  PRIMARY KEY (key, tier)"
    ")"
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class CacheEntry(BaseModel):
    """A single cached value with metadata for freshness checking."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: str  # JSON-serialized payload
    created_at: datetime.datetime
    ttl_seconds: float

    def is_fresh(self) -> bool:
        """Return True while ``now - created_at < ttl_seconds``.

        A ttl_seconds of 0 means the entry never expires.
        """
        if self.ttl_seconds == 0:
            return True
        age = (_utcnow() - self.created_at).total_seconds()
        return age < self.ttl_seconds

    def is_expired(self) -> bool:
        return not self.is_fresh()


class CacheNamespace[T]:
    """A key prefix bound to a payload type and a TTL.

    Payloads are validated against ``payload_type`` when read back, so a
    cached value of the wrong shape is reported as a miss instead of leaking
    an untyped dict into the caller.
    """

    def __init__(self, prefix: str, payload_type: Any, ttl_seconds: float) -> None:
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self._adapter: TypeAdapter[T] = TypeAdapter(payload_type)

    def key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    def dump(self, value: T) -> str:
        return self._adapter.dump_json(value).decode("utf-8")

    def load(self, raw: str) -> T:
        return self._adapter.validate_json(raw)


class ServiceCache:
    """Two-tier cache: in-memory dict for short-lived data, SQLite for persistent.

    Usage::

        async with Database("data/crypto_monitor.db") as db:
            cache = ServiceCache(database=db)
            await cache.initialize()

            cached = await cache.get("cg:prices:bitcoin")
            if cached is None:
                data = await fetch_prices(["bitcoin"])
                await cache.set("cg:prices:bitcoin", json.dumps(data), TTL_LIVE_PRICES)
    """

    def __init__(
        self,
        database: Database | None = None,
        *,
        stale_retention_seconds: float = DEFAULT_STALE_RETENTION,
    ) -> None:
        self._database = database
        self._stale_retention = stale_retention_seconds
        self._memory_cache: dict[str, CacheEntry] = {}
        self._fallback_cache: dict[str, CacheEntry] = {}
        self._access_count: int = 0
        self._sqlite_initialized: bool = False

        logger.info(
            "ServiceCache initialized: sqlite=%s, stale_retention=%.0fs",
            "enabled" if database is not None else "disabled",
            stale_retention_seconds,
        )

    async def initialize(self) -> None:
        """Create the SQLite cache table if a database is configured.

        Must be called after the database connection is open. Safe to call
        multiple times (idempotent). A failure leaves the cache memory-only.
        """
        if self._database is None or self._sqlite_initialized:
            return
        try:
            conn = self._database.connection
            await conn.execute(_CACHE_TABLE_DDL)
            await conn.commit()
        except _BACKEND_ERRORS:
            logger.error("SQLite cache table could not be created; memory only.", exc_info=True)
            return
        self._sqlite_initialized = True
        logger.info("SQLite cache table initialized.")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        """Return the cached value only if fresh.

        A stale entry is deleted (lazy eviction) and reported as a miss. Its
        last-known-good copy is kept for ``get_stale_allowed``.
        """
        self._increment_access_count()

        entry = self._memory_cache.get(key)
        if entry is not None:
            if entry.is_expired():
                del self._memory_cache[key]
                logger.debug("Memory cache expired: %s", key)
                return None
            logger.debug("Memory cache hit: %s", key)
            return entry.value

        if self._sqlite_enabled:
            try:
                entry = await self._sqlite_get(key, _TIER_PRIMARY)
                if entry is not None:
                    if entry.is_expired():
                        await self._sqlite_delete(key, _TIER_PRIMARY)
                        logger.debug("SQLite cache expired: %s", key)
                        return None
                    logger.debug("SQLite cache hit: %s", key)
                    return entry.value
            except _BACKEND_ERRORS:
                logger.error("Cache get error for %s", key, exc_info=True)
                return None

        logger.debug("Cache miss: %s", key)
        return None

    async def get_stale_allowed(self, key: str) -> str | None:
        """Return the value even if expired. Fallback path only.

        Checks the primary entry first, then the last-known-good copy.
        """
        entry = self._memory_cache.get(key) or self._live_fallback(key)
        if entry is not None:
            logger.debug("Stale-allowed memory hit: %s (fresh=%s)", key, entry.is_fresh())
            return entry.value

        if self._sqlite_enabled:
            try:
                entry = await self._sqlite_get(key, _TIER_PRIMARY)
                if entry is None:
                    entry = await self._sqlite_get(key, _TIER_FALLBACK)
                    if entry is not None and entry.is_expired():
                        await self._sqlite_delete(key, _TIER_FALLBACK)
                        entry = None
                if entry is not None:
                    logger.debug("Stale-allowed SQLite hit: %s", key)
                    return entry.value
            except _BACKEND_ERRORS:
                logger.error("Cache stale get error for %s", key, exc_info=True)
                return None

        return None

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        """Store a value, overwriting any prior entry. Never raises."""
        now = _utcnow()
        entry = CacheEntry(key=key, value=value, created_at=now, ttl_seconds=ttl_seconds)
        fallback = CacheEntry(
            key=key, value=value, created_at=now, ttl_seconds=self._stale_retention
        )

        if self._should_use_sqlite(key) and self._sqlite_enabled:
            try:
                await self._sqlite_set(entry, _TIER_PRIMARY)
                await self._sqlite_set(fallback, _TIER_FALLBACK)
                logger.debug("SQLite cache set: %s (ttl=%ss)", key, ttl_seconds)
                return
            except _BACKEND_ERRORS:
                logger.error("Cache set error for %s; using memory", key, exc_info=True)

        self._memory_cache[key] = entry
        self._fallback_cache[key] = fallback
        logger.debug("Memory cache set: %s (ttl=%ss)", key, ttl_seconds)

    async def set_many(self, values: Mapping[str, str], ttl_seconds: float) -> None:
        """Store several values with the same TTL."""
        for key, value in values.items():
            await self.set(key, value, ttl_seconds)
        logger.debug("Cache set multiple: %d keys", len(values))

    async def delete(self, key: str) -> None:
        """Remove a key and its last-known-good copy from both tiers."""
        self._memory_cache.pop(key, None)
        self._fallback_cache.pop(key, None)

        if self._sqlite_enabled:
            try:
                await self._sqlite_delete(key, None)
            except _BACKEND_ERRORS:
                logger.error("Cache delete error for %s", key, exc_info=True)

        logger.debug("Cache deleted: %s", key)

    async def exists(self, key: str) -> bool:
        """Return True if a fresh value is cached for ``key``."""
        return await self.get(key) is not None

    async def flush(self) -> None:
        """Drop every entry from both tiers."""
        self._memory_cache.clear()
        self._fallback_cache.clear()
        if self._sqlite_enabled:
            try:
                conn = self._database.connection  # type: ignore[union-attr]
                await conn.execute("DELETE FROM service_cache")
                await conn.commit()
            except _BACKEND_ERRORS:
                logger.error("Cache flush error", exc_info=True)
        logger.info("Cache flushed")

    async def is_available(self) -> bool:
        """Probe the SQLite tier. A memory-only cache is always available."""
        if self._database is None:
            return True
        if not self._sqlite_enabled:
            return False
        try:
            conn = self._database.connection
            cursor = await conn.execute("SELECT COUNT(*) FROM service_cache")
            await cursor.fetchone()
        except _BACKEND_ERRORS:
            logger.warning("Cache availability probe failed.", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Typed access
    # ------------------------------------------------------------------

    async def get_model[T](self, namespace: CacheNamespace[T], key: str) -> T | None:
        """Fresh typed read; a payload that fails validation is a miss."""
        raw = await self.get(key)
        return self._load(namespace, key, raw)

    async def get_model_stale_allowed[T](
        self, namespace: CacheNamespace[T], key: str
    ) -> T | None:
        """Typed ``get_stale_allowed``."""
        raw = await self.get_stale_allowed(key)
        return self._load(namespace, key, raw)

    async def set_model[T](self, namespace: CacheNamespace[T], key: str, value: T) -> None:
        """Typed ``set`` using the namespace's TTL."""
        await self.set(key, namespace.dump(value), namespace.ttl_seconds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def _sqlite_enabled(self) -> bool:
        return self._database is not None and self._sqlite_initialized

    @staticmethod
    def _load[T](namespace: CacheNamespace[T], key: str, raw: str | None) -> T | None:
        if raw is None:
            return None
        try:
            return namespace.load(raw)
        except ValidationError:
            logger.warning("Cached payload for %s failed validation; treating as miss", key)
            return None

    def _live_fallback(self, key: str) -> CacheEntry | None:
        entry = self._fallback_cache.get(key)
        if entry is not None and entry.is_expired():
            del self._fallback_cache[key]
            return None
        return entry

    def _should_use_sqlite(self, key: str) -> bool:
        """Keys whose second segment is a slow-changing data type go to SQLite."""
        parts = key.split(":")
        if len(parts) < 2:  # noqa: PLR2004
            return False
        return parts[1] in _SQLITE_TYPES

    def _increment_access_count(self) -> None:
        """Track accesses and trigger lazy cleanup when threshold is reached."""
        self._access_count += 1
        if self._access_count >= LAZY_CLEANUP_INTERVAL:
            self._access_count = 0
            self._evict_expired_memory_entries()

    def _evict_expired_memory_entries(self) -> None:
        """Remove expired primaries and out-of-retention fallback copies."""
        expired_keys = [k for k, v in self._memory_cache.items() if v.is_expired()]
        for key in expired_keys:
            del self._memory_cache[key]

        dead_fallbacks = [k for k, v in self._fallback_cache.items() if v.is_expired()]
        for key in dead_fallbacks:
            del self._fallback_cache[key]

        if expired_keys or dead_fallbacks:
            logger.debug(
                "Lazy cleanup: evicted %d expired entries, %d fallback copies",
                len(expired_keys),
                len(dead_fallbacks),
            )

    # ------------------------------------------------------------------
    # SQLite operations
    # ------------------------------------------------------------------

    async def _sqlite_get(self, key: str, tier: str) -> CacheEntry | None:
        if self._database is None:
            return None

        conn = self._database.connection
        cursor = await conn.execute(
            "SELECT key, value, created_at, ttl_seconds FROM service_cache "
            "WHERE key = ? AND tier = ?",
            (key, tier),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        return CacheEntry(
            key=row[0],
            value=row[1],
            created_at=datetime.datetime.fromisoformat(row[2]),
            ttl_seconds=row[3],
        )

    async def _sqlite_set(self, entry: CacheEntry, tier: str) -> None:
        if self._database is None:
            return

        conn = self._database.connection
        await conn.execute(
            "INSERT OR REPLACE INTO service_cache (key, tier, value, created_at, ttl_seconds) "
            "VALUES (?, ?, ?, ?, ?)",
            (entry.key, tier, entry.value, entry.created_at.isoformat(), entry.ttl_seconds),
        )
        await conn.commit()

    async def _sqlite_delete(self, key: str, tier: str | None) -> None:
        """Delete one tier of a key, or every tier when ``tier`` is None."""
        if self._database is None:
            return

        conn = self._database.connection
        if tier is None:
            await conn.execute("DELETE FROM service_cache WHERE key = ?", (key,))
        else:
            await conn.execute(
                "DELETE FROM service_cache WHERE key = ? AND tier = ?", (key, tier)
            )
        await conn.commit()
