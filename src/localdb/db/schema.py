"""Example schema: users and their posts.

Version history:
- v1: users (email is the unique natural key) + idx_users_email
- v2: users.age, users.avatar
- v3: posts (user_id -> users.id ON DELETE CASCADE) + idx_posts_user_id

CREATE_STATEMENTS is the full v3 schema for fresh databases. Its column
order matches what the incremental steps produce, so both paths end up with
the same table layout.
"""

from __future__ import annotations

from localdb.db.migrations import MigrationStep, Migrator

SCHEMA_VERSION = 3

_CREATE_USERS_V1 = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )
"""

_CREATE_POSTS = """
    CREATE TABLE IF NOT EXISTS posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        body TEXT NOT NULL DEFAULT '',
        score REAL NOT NULL DEFAULT 0,
        published INTEGER NOT NULL DEFAULT 0 CHECK(published IN (0, 1)),
        created_at INTEGER NOT NULL
    )
"""

_INDEX_USERS_EMAIL = "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)"
_INDEX_POSTS_USER = "CREATE INDEX IF NOT EXISTS idx_posts_user_id ON posts(user_id)"

CREATE_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        age INTEGER,
        avatar BLOB
    )
    """,
    _CREATE_POSTS,
    _INDEX_USERS_EMAIL,
    _INDEX_POSTS_USER,
)

# Schema as first released; used to build v1 databases in tests and tools
V1_STATEMENTS: tuple[str, ...] = (_CREATE_USERS_V1, _INDEX_USERS_EMAIL)

MIGRATION_STEPS: tuple[MigrationStep, ...] = (
    MigrationStep(
        version=2,
        statements=(
            "ALTER TABLE users ADD COLUMN age INTEGER",
            "ALTER TABLE users ADD COLUMN avatar BLOB",
        ),
        description="add users.age and users.avatar",
    ),
    MigrationStep(
        version=3,
        statements=(_CREATE_POSTS, _INDEX_POSTS_USER),
        description="add posts table",
    ),
)


def build_migrator() -> Migrator:
    """Migrator for the users/posts schema at SCHEMA_VERSION."""
    return Migrator(CREATE_STATEMENTS, MIGRATION_STEPS, SCHEMA_VERSION)


def build_v1_migrator() -> Migrator:
    """Migrator that creates the original v1 schema only."""
    return Migrator(V1_STATEMENTS, (), 1)
