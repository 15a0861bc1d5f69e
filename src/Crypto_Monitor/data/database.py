"""SQLite connection lifecycle and schema migrations.

One aiosqlite connection is shared by the scheduler (history writes, rule
deactivation) and the request handlers (rule CRUD, history reads). WAL mode
lets readers proceed while a tick writes; ``busy_timeout`` covers the short
window where two writers meet.

Migrations are ``NNN_description.sql`` files applied in version order and
recorded in ``schema_version``.
"""

import datetime
import logging
from pathlib import Path
from types import TracebackType
from typing import Final

import aiosqlite

logger = logging.getLogger(__name__)

MIGRATIONS_DIR: Final[Path] = Path(__file__).parent / "migrations"
DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
MEMORY_PATH: Final[str] = ":memory:"


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[tuple[int, Path]]:
    """Return ``(version, path)`` for every migration file, sorted by version.

    Raises:
        ValueError: A file name lacks a numeric prefix, or two files share one.
    """
    found: dict[int, Path] = {}
    for path in directory.glob("*.sql"):
        prefix = path.name.split("_", 1)[0]
        if not prefix.isdigit():
            msg = f"Migration file '{path.name}' must start with a version number"
            raise ValueError(msg)
        version = int(prefix)
        if version in found:
            msg = f"Duplicate migration version {version}: {found[version].name}, {path.name}"
            raise ValueError(msg)
        found[version] = path
    return sorted(found.items())


class Database:
    """Async SQLite database with connection lifecycle and migration support.

    Usage::

        async with Database("data/crypto_monitor.db") as db:
            repo = Repository(db)
            ...
    """

    def __init__(
        self,
        db_path: str = "data/crypto_monitor.db",
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        migrations_dir: Path = MIGRATIONS_DIR,
    ) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._migrations_dir = migrations_dir
        self._connection: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def connection(self) -> aiosqlite.Connection:
        """Return the active connection or raise if not connected."""
        if self._connection is None:
            msg = "Database is not connected. Call connect() or use 'async with'."
            raise RuntimeError(msg)
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open the connection, set pragmas, and apply pending migrations.

        Calling ``connect()`` on an open database does nothing.
        """
        if self._connection is not None:
            return
        if self._db_path != MEMORY_PATH:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA foreign_keys=ON")
        await self._connection.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        applied = await self._run_migrations()
        logger.info(
            "Database connected: %s (schema v%s, %d migrations applied now)",
            self._db_path,
            await self.schema_version(),
            applied,
        )

    async def close(self) -> None:
        """Close the connection. Safe to call when already closed."""
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        logger.info("Database closed: %s", self._db_path)

    async def schema_version(self) -> int | None:
        """Return the highest applied migration version, or None if none ran."""
        cursor = await self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return None if row is None else row[0]

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _run_migrations(self) -> int:
        """Apply migrations newer than those recorded; return how many ran."""
        conn = self.connection
        await conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version "
            "(version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)"
        )
        await conn.commit()

        cursor = await conn.execute("SELECT version FROM schema_version")
        applied_versions = {row[0] for row in await cursor.fetchall()}

        count = 0
        for version, path in discover_migrations(self._migrations_dir):
            if version in applied_versions:
                continue
            logger.info("Applying migration %03d: %s", version, path.name)
            # executescript() commits first; each file uses IF NOT EXISTS so a
            # half-applied file is retried cleanly on the next connect.
            await conn.executescript(path.read_text(encoding="utf-8"))
            await conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, datetime.datetime.now(datetime.UTC).isoformat()),
            )
            await conn.commit()
            count += 1
        return count
