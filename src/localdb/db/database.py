"""SQLite connection and transaction management.

One ``Database`` object owns one lazily-opened ``aiosqlite`` connection to
one file. The application constructs it once and passes it to every
repository; there is no module-level connection.

Example:
    db = Database(Path("data/db/localdb.sqlite3"), build_migrator())
    async with db:
        users = UserRepository(db)
        user_id = await users.insert(User(email="ana@example.com", name="Ana"))
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, Sequence

import aiosqlite
import structlog

from localdb.db.migrations import Migrator, read_user_version
from localdb.errors import BackupError, ConstraintError, DatabaseConnectionError

if TYPE_CHECKING:
    from localdb.config.app_config import AppConfig

logger = structlog.get_logger(__name__)

MEMORY = ":memory:"
JOURNAL_MODES = ("DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF")


async def _run_to_completion(conn: aiosqlite.Connection, sql: str) -> None:
    # An unfinished SELECT keeps a read transaction open on the connection
    async with conn.execute(sql) as cursor:
        await cursor.fetchall()


@dataclass
class ExecuteResult:
    """Outcome of a write statement."""

    rowcount: int
    lastrowid: int | None


class Database:
    """Lazily opened, migrated, shared connection to one SQLite file."""

    def __init__(
        self,
        path: Path | str,
        migrator: Migrator | None = None,
        *,
        timeout: float = 5.0,
        busy_timeout_ms: int = 5000,
        journal_mode: str | None = "WAL",
    ):
        if journal_mode is not None and journal_mode.upper() not in JOURNAL_MODES:
            raise ValueError(f"Unknown journal_mode: {journal_mode}")

        self.path: Path | str = path if path == MEMORY else Path(path)
        self.migrator = migrator
        self.timeout = timeout
        self.busy_timeout_ms = busy_timeout_ms
        self.journal_mode = journal_mode.upper() if journal_mode else None

        self._conn: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        # Transaction nesting depth for the current task
        self._tx_depth: ContextVar[int] = ContextVar(f"localdb_tx_{id(self)}", default=0)

    @classmethod
    def from_config(cls, config: AppConfig, migrator: Migrator | None = None) -> Database:
        """Build a Database from the application config."""
        db_config = config.database
        return cls(
            db_config.path,
            migrator,
            timeout=db_config.timeout,
            busy_timeout_ms=db_config.busy_timeout_ms,
            journal_mode=db_config.journal_mode,
        )

    async def __aenter__(self) -> Database:
        await self.get_connection()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        """True when the calling task is inside ``transaction()``."""
        return self._tx_depth.get() > 0

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def get_connection(self) -> aiosqlite.Connection:
        """Return the shared connection, opening and migrating on first use.

        Raises:
            DatabaseConnectionError: Path not writable or file not a database
            MigrationError: Schema creation/upgrade failed
        """
        if self._conn is not None:
            return self._conn

        async with self._open_lock:
            if self._conn is None:
                self._conn = await self._open()
        return self._conn

    async def close(self) -> None:
        """Close the connection. A later get_connection() reopens it."""
        async with self._open_lock:
            if self._conn is None:
                return
            await self._conn.close()
            self._conn = None
        logger.info("database.closed", path=str(self.path))

    async def schema_version(self) -> int:
        """Stored schema version (PRAGMA user_version)."""
        conn = await self.get_connection()
        return await read_user_version(conn)

    def _resolve_path(self) -> str:
        if self.path == MEMORY:
            return MEMORY

        path = Path(self.path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DatabaseConnectionError(str(path), f"cannot create directory: {e}") from e

        if not os.access(path.parent, os.W_OK):
            raise DatabaseConnectionError(str(path), "directory is not writable")
        if path.exists() and not os.access(path, os.R_OK | os.W_OK):
            raise DatabaseConnectionError(str(path), "file is not readable and writable")

        return str(path)

    async def _open(self) -> aiosqlite.Connection:
        database = self._resolve_path()

        try:
            # Autocommit mode: transactions are issued explicitly
            conn = await aiosqlite.connect(
                database, timeout=self.timeout, isolation_level=None
            )
        except (sqlite3.Error, OSError) as e:
            raise DatabaseConnectionError(database, str(e)) from e

        try:
            conn.row_factory = aiosqlite.Row
            await _run_to_completion(conn, f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            await _run_to_completion(conn, "PRAGMA foreign_keys = ON")
            # Forces the header to be read: corrupt or non-SQLite files fail here
            await _run_to_completion(conn, "SELECT count(*) FROM sqlite_master")
            if self.journal_mode and database != MEMORY:
                await _run_to_completion(conn, f"PRAGMA journal_mode = {self.journal_mode}")
            version = await read_user_version(conn)
        except sqlite3.Error as e:
            await conn.close()
            raise DatabaseConnectionError(database, str(e)) from e

        if self.migrator is not None:
            try:
                version = await self.migrator.migrate(conn, version)
            except BaseException:
                await conn.close()
                raise

        logger.info("database.opened", path=database, schema_version=version)
        return conn

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed block atomically.

        Holds the write lock for the whole block. Nested use runs as a
        SAVEPOINT, so an inner failure that is caught only undoes the inner
        block.
        """
        conn = await self.get_connection()
        depth = self._tx_depth.get()

        if depth:
            savepoint = f"sp_{depth}"
            await conn.execute(f"SAVEPOINT {savepoint}")
            token = self._tx_depth.set(depth + 1)
            try:
                yield conn
            except BaseException:
                await conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                await conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise
            else:
                await conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            finally:
                self._tx_depth.reset(token)
        else:
            async with self._write_lock:
                await conn.execute("BEGIN IMMEDIATE")
                token = self._tx_depth.set(1)
                try:
                    yield conn
                    await conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        await conn.execute("ROLLBACK")
                    logger.debug("database.rolled_back", path=str(self.path))
                    raise
                finally:
                    self._tx_depth.reset(token)

    async def run_in_transaction(
        self, operations: Sequence[Callable[[], Awaitable[Any]]]
    ) -> list[Any]:
        """Await each operation in order inside one transaction.

        Args:
            operations: Zero-argument async callables

        Returns:
            Results of the operations, in order.
        """
        results: list[Any] = []
        async with self.transaction():
            for operation in operations:
                results.append(await operation())
        return results

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Connection for a single statement.

        Inside a transaction the caller already holds the write lock;
        outside, the lock keeps the statement out of other tasks' open
        transactions.
        """
        conn = await self.get_connection()
        if self._tx_depth.get():
            yield conn
        else:
            async with self._write_lock:
                yield conn

    # =========================================================================
    # STATEMENTS
    # =========================================================================

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """Execute a write statement.

        Raises:
            ConstraintError: On sqlite3.IntegrityError
        """
        async with self._acquire() as conn:
            try:
                async with conn.execute(sql, tuple(params)) as cursor:
                    return ExecuteResult(cursor.rowcount, cursor.lastrowid)
            except sqlite3.IntegrityError as e:
                raise ConstraintError(str(e)) from e

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        async with self._acquire() as conn:
            async with conn.execute(sql, tuple(params)) as cursor:
                return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        async with self._acquire() as conn:
            async with conn.execute(sql, tuple(params)) as cursor:
                return list(await cursor.fetchall())

    # =========================================================================
    # BACKUP
    # =========================================================================

    async def backup(self, destination: Path | str) -> Path:
        """Copy the live database to ``destination``.

        Waits until no write transaction is in progress, then uses SQLite's
        online backup API.

        Raises:
            BackupError: Called inside a transaction, or the copy failed
        """
        if self._tx_depth.get():
            raise BackupError("Cannot back up while a transaction is in progress")

        dest = Path(destination).expanduser()
        if self.path != MEMORY and dest.resolve() == Path(self.path).resolve():
            raise BackupError(f"Backup destination is the live database: {dest}")

        conn = await self.get_connection()
        async with self._write_lock:
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                async with aiosqlite.connect(str(dest)) as target:
                    await conn.backup(target)
            except (sqlite3.Error, OSError) as e:
                raise BackupError(f"Backup to {dest} failed: {e}") from e

        logger.info("database.backup_created", source=str(self.path), destination=str(dest))
        return dest
