# src/community_feed/models/comment.py
"""Comment entity as shown in a thread."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from community_feed.schemas import AuthorSnapshot, CommentRow


@dataclass(frozen=True)
class Comment:
    """A comment or reply.

    ``replies`` is only populated on snapshots produced by the comment tree;
    the tree itself stores nodes without children.
    """

    post_id: str
    created_at: datetime
    id: str | None = None
    temp_id: str | None = None
    author_id: str | None = None
    author: AuthorSnapshot | None = None
    content: str | None = None
    image_url: str | None = None
    reply_to: str | None = None
    pending: bool = False
    replies: tuple[Comment, ...] = ()

    @property
    def key(self) -> str:
        return self.id if self.id is not None else self.temp_id  # type: ignore[return-value]

    @classmethod
    def from_row(cls, row: CommentRow, *, author: AuthorSnapshot | None = None) -> Comment:
        return cls(
            id=row.id,
            post_id=row.post_id,
            author_id=row.user_id,
            author=author,
            content=row.content,
            image_url=row.image_url,
            reply_to=row.reply_to,
            created_at=row.created_at,
        )
