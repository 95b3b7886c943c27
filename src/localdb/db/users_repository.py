"""Repository for the users table.

Provides the User record, its row mapping, and user-specific lookups on top
of the generic CRUD operations.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from localdb.db.database import Database
from localdb.db.filters import Column
from localdb.db.repository import RecordMapper, Repository
from localdb.utils.serialization import BLOB, INTEGER, TEXT, TIMESTAMP, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class User:
    """User record."""

    email: str
    name: str
    age: int | None = None
    avatar: bytes | None = None
    created_at: datetime = field(default_factory=utc_now)
    id: int | None = None


USER_FIELDS = {
    "email": TEXT,
    "name": TEXT,
    "created_at": TIMESTAMP,
    "age": INTEGER.optional(),
    "avatar": BLOB.optional(),
}


def _user_to_row(user: User) -> dict[str, Any]:
    """Convert User to column values (id excluded)."""
    return {
        "email": TEXT.to_storage(user.email, "users.email"),
        "name": TEXT.to_storage(user.name, "users.name"),
        "created_at": TIMESTAMP.to_storage(user.created_at, "users.created_at"),
        "age": USER_FIELDS["age"].to_storage(user.age, "users.age"),
        "avatar": USER_FIELDS["avatar"].to_storage(user.avatar, "users.avatar"),
    }


def _row_to_user(row) -> User:
    """Convert database row to User."""
    return User(
        id=INTEGER.from_storage(row["id"], "users.id"),
        email=TEXT.from_storage(row["email"], "users.email"),
        name=TEXT.from_storage(row["name"], "users.name"),
        created_at=TIMESTAMP.from_storage(row["created_at"], "users.created_at"),
        age=USER_FIELDS["age"].from_storage(row["age"], "users.age"),
        avatar=USER_FIELDS["avatar"].from_storage(row["avatar"], "users.avatar"),
    )


USER_MAPPER: RecordMapper[User] = RecordMapper(
    table="users",
    fields=USER_FIELDS,
    to_row=_user_to_row,
    from_row=_row_to_user,
    get_id=lambda user: user.id,
    with_id=lambda user, new_id: dataclasses.replace(user, id=new_id),
)


class UserRepository(Repository[User]):
    """CRUD over users plus email and name lookups."""

    def __init__(self, db: Database):
        super().__init__(db, USER_MAPPER)

    async def find_by_email(self, email: str) -> User | None:
        """Get user by email (the natural key).

        Args:
            email: Email address, matched exactly

        Returns:
            User if found, None otherwise
        """
        return await self.find_one(Column("email") == email)

    async def search_by_name(
        self,
        fragment: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[User]:
        """Users whose name contains ``fragment`` (SQLite LIKE case rules)."""
        return await self.find_all(
            Column("name").contains(fragment), limit=limit, offset=offset
        )

    async def save(self, user: User) -> User | None:
        """Insert a new user or update an existing one.

        Returns:
            The user with its identifier set, or None when ``user.id`` names
            a row that no longer exists (nothing is written)
        """
        if user.id is None:
            return self.mapper.with_id(user, await self.insert(user))

        if await self.update(user) == 0:
            logger.warning("users.save_missing", id=user.id)
            return None
        logger.debug("users.saved", id=user.id)
        return user
