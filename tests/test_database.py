"""Tests for connection management, transactions and backup."""

import asyncio

import aiosqlite
import pytest

from localdb.config.app_config import AppConfig, DatabaseConfig
from localdb.db.database import MEMORY, Database
from localdb.db.migrations import Migrator
from localdb.db.schema import SCHEMA_VERSION, build_migrator
from localdb.db.users_repository import User, UserRepository
from localdb.errors import BackupError, ConstraintError, DatabaseConnectionError


class CountingMigrator(Migrator):
    """Migrator that records how often it runs."""

    def __init__(self):
        base = build_migrator()
        super().__init__(base.create_statements, base.steps, base.target_version)
        self.calls = 0

    async def migrate(self, conn, from_version, to_version=None):
        self.calls += 1
        return await super().migrate(conn, from_version, to_version)


class TestGetConnection:
    """Lazy, memoized, migrated connection."""

    @pytest.mark.asyncio
    async def test_creates_file_and_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "app.sqlite3"
        async with Database(path, build_migrator()) as db:
            assert path.exists()
            assert await db.schema_version() == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_returns_same_handle(self, db):
        first = await db.get_connection()
        second = await db.get_connection()
        assert first is second

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_open_once(self, db_path):
        """Racing callers share one handle and one migration run."""
        migrator = CountingMigrator()
        db = Database(db_path, migrator)
        try:
            handles = await asyncio.gather(*(db.get_connection() for _ in range(10)))
            assert all(h is handles[0] for h in handles)
            assert migrator.calls == 1
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_reopen_at_current_version_is_noop(self, db_path):
        migrator = CountingMigrator()
        async with Database(db_path, migrator):
            pass
        async with Database(db_path, migrator) as db:
            assert await db.schema_version() == SCHEMA_VERSION
        assert migrator.calls == 2

    @pytest.mark.asyncio
    async def test_close_then_reopen(self, db):
        first = await db.get_connection()
        await db.close()
        assert not db.is_open

        second = await db.get_connection()
        assert second is not first
        assert db.is_open

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, db):
        await db.close()
        await db.close()
        assert not db.is_open

    @pytest.mark.asyncio
    async def test_foreign_keys_enabled(self, db):
        conn = await db.get_connection()
        async with conn.execute("PRAGMA foreign_keys") as cursor:
            assert (await cursor.fetchone())[0] == 1

    @pytest.mark.asyncio
    async def test_file_database_opens_in_wal_mode(self, tmp_path):
        """The journal mode switch runs with no read transaction open."""
        async with Database(tmp_path / "wal.sqlite3", build_migrator(), journal_mode="WAL") as db:
            conn = await db.get_connection()
            async with conn.execute("PRAGMA journal_mode") as cursor:
                assert (await cursor.fetchone())[0] == "wal"
            assert not conn.in_transaction

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        async with Database(MEMORY, build_migrator()) as db:
            users = UserRepository(db)
            user_id = await users.insert(User(email="mem@example.com", name="Mem"))
            assert (await users.find_by_id(user_id)).name == "Mem"


class TestConnectionErrors:
    """Unreachable or corrupt files raise DatabaseConnectionError."""

    @pytest.mark.asyncio
    async def test_parent_is_a_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        db = Database(blocker / "app.sqlite3", build_migrator())
        with pytest.raises(DatabaseConnectionError, match="cannot create directory"):
            await db.get_connection()
        assert not db.is_open

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "corrupt.sqlite3"
        path.write_bytes(b"this is definitely not a sqlite database file" * 100)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            await Database(path, build_migrator()).get_connection()
        assert exc_info.value.path == str(path)

    @pytest.mark.asyncio
    async def test_path_is_a_directory(self, tmp_path):
        with pytest.raises(DatabaseConnectionError):
            await Database(tmp_path, build_migrator()).get_connection()

    def test_invalid_journal_mode(self, tmp_path):
        with pytest.raises(ValueError, match="journal_mode"):
            Database(tmp_path / "x.sqlite3", journal_mode="FAST")


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_uses_config_values(self, tmp_path):
        config = AppConfig(
            database=DatabaseConfig(
                path=tmp_path / "cfg.sqlite3", journal_mode="DELETE", busy_timeout_ms=1234
            )
        )
        async with Database.from_config(config, build_migrator()) as db:
            conn = await db.get_connection()
            async with conn.execute("PRAGMA journal_mode") as cursor:
                assert (await cursor.fetchone())[0].upper() == "DELETE"
            async with conn.execute("PRAGMA busy_timeout") as cursor:
                assert (await cursor.fetchone())[0] == 1234
        assert db.path == tmp_path / "cfg.sqlite3"


class TestTransactions:
    """Atomic blocks on the shared connection."""

    @pytest.mark.asyncio
    async def test_commit(self, db, users, make_user):
        async with db.transaction():
            await users.insert(make_user())
            await users.insert(make_user())
        assert await users.count() == 2

    @pytest.mark.asyncio
    async def test_in_transaction_tracks_the_block(self, db):
        assert not db.in_transaction
        async with db.transaction():
            assert db.in_transaction
            async with db.transaction():
                assert db.in_transaction
            assert db.in_transaction
        assert not db.in_transaction

    @pytest.mark.asyncio
    async def test_exception_rolls_back(self, db, users, make_user):
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await users.insert(make_user())
                raise RuntimeError("boom")

        assert await users.count() == 0
        assert not db.in_transaction

    @pytest.mark.asyncio
    async def test_nested_failure_only_undoes_inner_block(self, db, users, make_user):
        async with db.transaction():
            await users.insert(make_user("Outer"))
            with pytest.raises(ConstraintError):
                async with db.transaction():
                    await users.insert(make_user("Inner", email="dup@example.com"))
                    await users.insert(make_user("Inner2", email="dup@example.com"))

        names = [u.name for u in await users.find_all()]
        assert names == ["Outer"]

    @pytest.mark.asyncio
    async def test_run_in_transaction_returns_results_in_order(self, db, users, make_user):
        a, b = make_user("A"), make_user("B")
        results = await db.run_in_transaction(
            [lambda: users.insert(a), lambda: users.insert(b), lambda: users.count()]
        )
        assert results[2] == 2
        assert results[0] < results[1]

    @pytest.mark.asyncio
    async def test_outside_writer_waits_for_open_transaction(self, db, users, make_user):
        """A write from another task is never absorbed into an open transaction."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def transactional():
            with pytest.raises(RuntimeError):
                async with db.transaction():
                    await users.insert(make_user("InTx"))
                    started.set()
                    await release.wait()
                    raise RuntimeError("abort")

        async def outsider():
            await started.wait()
            return await users.insert(make_user("Outside"))

        tx_task = asyncio.create_task(transactional())
        outside_task = asyncio.create_task(outsider())

        await started.wait()
        await asyncio.sleep(0.05)
        assert not outside_task.done()

        release.set()
        await tx_task
        await outside_task

        assert [u.name for u in await users.find_all()] == ["Outside"]


class TestBackup:
    @pytest.mark.asyncio
    async def test_backup_copies_rows(self, db, users, make_user, tmp_path):
        await users.insert(make_user("Ana"))
        dest = tmp_path / "backups" / "copy.sqlite3"

        assert await db.backup(dest) == dest

        async with aiosqlite.connect(dest) as copy:
            async with copy.execute("SELECT name FROM users") as cursor:
                assert [r[0] for r in await cursor.fetchall()] == ["Ana"]
            async with copy.execute("PRAGMA user_version") as cursor:
                assert (await cursor.fetchone())[0] == SCHEMA_VERSION

    @pytest.mark.asyncio
    async def test_backup_inside_transaction_rejected(self, db, tmp_path):
        async with db.transaction():
            with pytest.raises(BackupError, match="transaction"):
                await db.backup(tmp_path / "copy.sqlite3")

    @pytest.mark.asyncio
    async def test_backup_onto_live_file_rejected(self, db, db_path):
        with pytest.raises(BackupError, match="live database"):
            await db.backup(db_path)
