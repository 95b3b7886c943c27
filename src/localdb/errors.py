"""Error hierarchy for the data access layer.

Zero affected rows is never an error: update/delete report it as a count.
"""

from __future__ import annotations


class LocalDBError(Exception):
    """Base class for all localdb errors."""

    pass


class DatabaseConnectionError(LocalDBError):
    """Database file is unreachable, not writable, or not a SQLite database."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot open database {path}: {reason}")


class MigrationError(LocalDBError):
    """Schema migration failed or was refused (e.g. downgrade)."""

    def __init__(
        self,
        message: str,
        from_version: int,
        to_version: int,
        failed_version: int | None = None,
    ):
        self.from_version = from_version
        self.to_version = to_version
        self.failed_version = failed_version
        super().__init__(message)


class ConstraintError(LocalDBError):
    """UNIQUE, FOREIGN KEY, NOT NULL or CHECK violation on write."""

    pass


class SerializationError(LocalDBError):
    """A value cannot be converted to or from its storage representation."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class BackupError(LocalDBError):
    """Backup could not be taken."""

    pass
