"""Repository for the posts table.

Posts depend on users: ``user_id`` references ``users.id`` with
ON DELETE CASCADE, so deleting a user removes their posts.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from localdb.db.database import Database
from localdb.db.filters import Column, OrderBy
from localdb.db.repository import RecordMapper, Repository
from localdb.utils.serialization import BOOLEAN, INTEGER, REAL, TEXT, TIMESTAMP, utc_now


@dataclass
class Post:
    """Post record."""

    user_id: int
    title: str
    body: str = ""
    score: float = 0.0
    published: bool = False
    created_at: datetime = field(default_factory=utc_now)
    id: int | None = None


POST_FIELDS = {
    "user_id": INTEGER,
    "title": TEXT,
    "body": TEXT,
    "score": REAL,
    "published": BOOLEAN,
    "created_at": TIMESTAMP,
}


def _post_to_row(post: Post) -> dict[str, Any]:
    return {
        "user_id": INTEGER.to_storage(post.user_id, "posts.user_id"),
        "title": TEXT.to_storage(post.title, "posts.title"),
        "body": TEXT.to_storage(post.body, "posts.body"),
        "score": REAL.to_storage(post.score, "posts.score"),
        "published": BOOLEAN.to_storage(post.published, "posts.published"),
        "created_at": TIMESTAMP.to_storage(post.created_at, "posts.created_at"),
    }


def _row_to_post(row) -> Post:
    return Post(
        id=INTEGER.from_storage(row["id"], "posts.id"),
        user_id=INTEGER.from_storage(row["user_id"], "posts.user_id"),
        title=TEXT.from_storage(row["title"], "posts.title"),
        body=TEXT.from_storage(row["body"], "posts.body"),
        score=REAL.from_storage(row["score"], "posts.score"),
        published=BOOLEAN.from_storage(row["published"], "posts.published"),
        created_at=TIMESTAMP.from_storage(row["created_at"], "posts.created_at"),
    )


POST_MAPPER: RecordMapper[Post] = RecordMapper(
    table="posts",
    fields=POST_FIELDS,
    to_row=_post_to_row,
    from_row=_row_to_post,
    get_id=lambda post: post.id,
    with_id=lambda post, new_id: dataclasses.replace(post, id=new_id),
)


class PostRepository(Repository[Post]):
    def __init__(self, db: Database):
        super().__init__(db, POST_MAPPER)

    async def find_by_user(
        self, user_id: int, published_only: bool = False
    ) -> list[Post]:
        """Posts of one user, newest first."""
        cond = Column("user_id") == user_id
        if published_only:
            cond = cond & (Column("published") == True)  # noqa: E712
        return await self.find_all(cond, order_by=OrderBy("created_at", descending=True))
