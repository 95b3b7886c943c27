"""Version-gated schema migrations.

The stored schema version is SQLite's ``PRAGMA user_version``. A fresh
database (version 0) gets the full create-schema statements; an existing one
gets every registered step whose target version lies in (stored, target],
applied in ascending order inside one transaction.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Sequence

import aiosqlite
import structlog

from localdb.errors import MigrationError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MigrationStep:
    """DDL statements that bring the schema to ``version``."""

    version: int
    statements: tuple[str, ...]
    description: str = ""


async def read_user_version(conn: aiosqlite.Connection) -> int:
    """Read the stored schema version."""
    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
    return int(row[0]) if row else 0


async def _rollback(conn: aiosqlite.Connection) -> None:
    # SQLite may already have rolled back on some errors (e.g. SQLITE_FULL)
    if conn.in_transaction:
        await conn.execute("ROLLBACK")


class Migrator:
    """Apply an ordered table of migration steps up to ``target_version``."""

    def __init__(
        self,
        create_statements: Sequence[str],
        steps: Sequence[MigrationStep],
        target_version: int,
    ):
        if target_version < 1:
            raise ValueError(f"target_version must be >= 1, got {target_version}")

        seen: set[int] = set()
        for step in steps:
            if step.version in seen:
                raise ValueError(f"Duplicate migration step for version {step.version}")
            if not 2 <= step.version <= target_version:
                raise ValueError(
                    f"Migration step version {step.version} outside 2..{target_version}"
                )
            seen.add(step.version)

        self.create_statements = tuple(create_statements)
        self.steps = tuple(sorted(steps, key=lambda s: s.version))
        self.target_version = target_version

    def steps_between(self, from_version: int, to_version: int) -> list[MigrationStep]:
        """Steps with from_version < version <= to_version, ascending."""
        selected = [s for s in self.steps if from_version < s.version <= to_version]
        missing = sorted(
            set(range(from_version + 1, to_version + 1)) - {s.version for s in selected}
        )
        if missing:
            raise MigrationError(
                f"No migration step registered for version {missing[0]}",
                from_version,
                to_version,
                failed_version=missing[0],
            )
        return selected

    async def migrate(
        self,
        conn: aiosqlite.Connection,
        from_version: int,
        to_version: int | None = None,
    ) -> int:
        """Bring the schema from ``from_version`` to ``to_version``.

        Args:
            conn: Open connection in autocommit mode (isolation_level=None)
            from_version: Currently stored version (0 = fresh database)
            to_version: Version to reach; defaults to ``target_version``

        Returns:
            The schema version after migrating.

        Raises:
            MigrationError: On downgrade, missing step, or any failing
                statement. The database is left at ``from_version``.
        """
        if to_version is None:
            to_version = self.target_version

        if from_version == to_version:
            logger.debug("migration.up_to_date", version=from_version)
            return from_version

        if from_version > to_version:
            raise MigrationError(
                f"Downgrade from version {from_version} to {to_version} is not supported",
                from_version,
                to_version,
            )

        if from_version == 0:
            if to_version != self.target_version:
                raise MigrationError(
                    f"A fresh database can only be created at version {self.target_version}",
                    from_version,
                    to_version,
                )
            plan = [MigrationStep(to_version, self.create_statements, "create schema")]
        else:
            plan = self.steps_between(from_version, to_version)

        current = from_version
        try:
            await conn.execute("BEGIN IMMEDIATE")
            for step in plan:
                current = step.version
                for statement in step.statements:
                    await conn.execute(statement)
                logger.info(
                    "migration.step_applied",
                    version=step.version,
                    description=step.description,
                )
            # PRAGMA arguments can't be bound; to_version is an int
            await conn.execute(f"PRAGMA user_version = {int(to_version)}")
            await conn.execute("COMMIT")
        except sqlite3.Error as e:
            await _rollback(conn)
            logger.error(
                "migration.failed",
                from_version=from_version,
                to_version=to_version,
                failed_version=current,
                error=str(e),
            )
            raise MigrationError(
                f"Migration to version {current} failed: {e}",
                from_version,
                to_version,
                failed_version=current,
            ) from e
        except BaseException:
            await _rollback(conn)
            raise

        logger.info("migration.completed", from_version=from_version, to_version=to_version)
        return to_version
