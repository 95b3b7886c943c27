"""Shared fixtures: a migrated database file per test plus repositories."""

from pathlib import Path

import pytest
import pytest_asyncio

from localdb.config.app_config import clear_config_cache
from localdb.db.database import Database
from localdb.db.posts_repository import PostRepository
from localdb.db.schema import build_migrator
from localdb.db.users_repository import User, UserRepository


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Never read a developer's config file or env overrides."""
    monkeypatch.delenv("LOCALDB_CONFIG", raising=False)
    monkeypatch.delenv("LOCALDB_DB_PATH", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "db" / "test.sqlite3"


@pytest_asyncio.fixture
async def db(db_path):
    """Migrated database at the current schema version."""
    database = Database(db_path, build_migrator())
    await database.get_connection()
    yield database
    await database.close()


@pytest.fixture
def users(db) -> UserRepository:
    return UserRepository(db)


@pytest.fixture
def posts(db) -> PostRepository:
    return PostRepository(db)


@pytest.fixture
def make_user():
    """Factory for users with unique emails."""
    counter = {"n": 0}

    def factory(name: str = "Ana", **kwargs) -> User:
        counter["n"] += 1
        kwargs.setdefault("email", f"user{counter['n']}@example.com")
        return User(name=name, **kwargs)

    return factory
