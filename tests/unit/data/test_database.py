"""Tests for the Database class: connection lifecycle, pragmas, and migrations."""

import sqlite3
from pathlib import Path

import pytest
import pytest_asyncio

from Crypto_Monitor.data.database import Database, discover_migrations


@pytest_asyncio.fixture()
async def memory_db() -> Database:
    """Create a Database with an in-memory SQLite backend."""
    return Database(db_path=":memory:")


class TestDatabaseConnect:
    """Tests for Database.connect() and connection properties."""

    @pytest.mark.asyncio()
    async def test_connect_creates_connection(self, memory_db: Database) -> None:
        await memory_db.connect()
        assert memory_db.is_connected
        await memory_db.close()

    @pytest.mark.asyncio()
    async def test_connection_property_raises_when_not_connected(
        self, memory_db: Database
    ) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            _ = memory_db.connection

    @pytest.mark.asyncio()
    async def test_foreign_keys_enabled(self, memory_db: Database) -> None:
        await memory_db.connect()
        cursor = await memory_db.connection.execute("PRAGMA foreign_keys")
        row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 1
        await memory_db.close()

    @pytest.mark.asyncio()
    async def test_file_database_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "monitor.db"
        async with Database(str(db_path)) as db:
            assert db.is_connected
        assert db_path.exists()


class TestDatabaseClose:
    @pytest.mark.asyncio()
    async def test_close_resets_connection(self, memory_db: Database) -> None:
        await memory_db.connect()
        await memory_db.close()
        assert not memory_db.is_connected

    @pytest.mark.asyncio()
    async def test_close_when_not_connected_is_safe(self, memory_db: Database) -> None:
        await memory_db.close()

    @pytest.mark.asyncio()
    async def test_async_context_manager(self) -> None:
        async with Database(":memory:") as db:
            assert db.is_connected
        assert not db.is_connected


class TestMigrations:
    """Tests for the migration runner."""

    @pytest.mark.asyncio()
    async def test_tables_created(self, db: Database) -> None:
        cursor = await db.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        tables = {row[0] for row in await cursor.fetchall()}
        assert {"schema_version", "users", "alert_rules", "price_history"} <= tables

    @pytest.mark.asyncio()
    async def test_schema_version_recorded(self, db: Database) -> None:
        cursor = await db.connection.execute("SELECT version FROM schema_version")
        versions = [row[0] for row in await cursor.fetchall()]
        assert versions == [1]

    @pytest.mark.asyncio()
    async def test_migrations_idempotent(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "monitor.db")
        async with Database(db_path):
            pass
        async with Database(db_path) as db:
            cursor = await db.connection.execute("SELECT COUNT(*) FROM schema_version")
            row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 1

    @pytest.mark.asyncio()
    async def test_schema_version(self, db: Database) -> None:
        assert await db.schema_version() == 1

    @pytest.mark.asyncio()
    async def test_new_migration_applied_on_reconnect(self, tmp_path: Path) -> None:
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        (migrations / "001_base.sql").write_text("CREATE TABLE IF NOT EXISTS a (id INTEGER);")
        db_path = str(tmp_path / "monitor.db")
        async with Database(db_path, migrations_dir=migrations) as db:
            assert await db.schema_version() == 1

        (migrations / "002_more.sql").write_text("CREATE TABLE IF NOT EXISTS b (id INTEGER);")
        async with Database(db_path, migrations_dir=migrations) as db:
            assert await db.schema_version() == 2

    @pytest.mark.asyncio()
    async def test_connect_twice_keeps_connection(self, db: Database) -> None:
        conn = db.connection
        await db.connect()
        assert db.connection is conn

    @pytest.mark.asyncio()
    async def test_busy_timeout_applied(self) -> None:
        async with Database(":memory:", busy_timeout_ms=1234) as db:
            cursor = await db.connection.execute("PRAGMA busy_timeout")
            row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 1234

    @pytest.mark.asyncio()
    async def test_condition_check_constraint(self, db: Database) -> None:
        with pytest.raises(sqlite3.IntegrityError):
            await db.connection.execute(
                "INSERT INTO alert_rules (symbol, condition, created_at, updated_at) "
                "VALUES ('BTC', 'sideways', 'x', 'x')"
            )


class TestDiscoverMigrations:
    def test_bundled_migrations(self) -> None:
        versions = [version for version, _ in discover_migrations()]
        assert versions[0] == 1
        assert versions == sorted(versions)

    def test_sorted_numerically(self, tmp_path: Path) -> None:
        for name in ("010_late.sql", "002_early.sql"):
            (tmp_path / name).write_text("SELECT 1;")
        assert [v for v, _ in discover_migrations(tmp_path)] == [2, 10]

    def test_missing_prefix_rejected(self, tmp_path: Path) -> None:
        (tmp_path / "initial.sql").write_text("SELECT 1;")
        with pytest.raises(ValueError, match="version number"):
            discover_migrations(tmp_path)

    def test_duplicate_version_rejected(self, tmp_path: Path) -> None:
        (tmp_path / "001_a.sql").write_text("SELECT 1;")
        (tmp_path / "1_b.sql").write_text("SELECT 1;")
        with pytest.raises(ValueError, match="Duplicate migration version 1"):
            discover_migrations(tmp_path)
