"""Database module for SQLite persistence.

Provides:
- Connection management (Database)
- Version-gated schema migrations (Migrator, MigrationStep)
- Generic typed repository and filter builder
- Repositories for the users and posts tables
"""

from localdb.db.database import Database, ExecuteResult
from localdb.db.filters import Column, OrderBy, Where
from localdb.db.migrations import MigrationStep, Migrator
from localdb.db.posts_repository import Post, PostRepository
from localdb.db.repository import RecordMapper, Repository
from localdb.db.schema import SCHEMA_VERSION, build_migrator
from localdb.db.users_repository import User, UserRepository

__all__ = [
    "Column",
    "Database",
    "ExecuteResult",
    "MigrationStep",
    "Migrator",
    "OrderBy",
    "Post",
    "PostRepository",
    "RecordMapper",
    "Repository",
    "SCHEMA_VERSION",
    "User",
    "UserRepository",
    "Where",
    "build_migrator",
]
