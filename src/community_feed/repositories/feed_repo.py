"""Data access helpers for posts, comments, reactions and author snapshots."""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from community_feed.core.settings import Settings, settings
from community_feed.schemas import (
    AuthorSnapshot,
    CommentRow,
    PostAggregates,
    PostRow,
    ReactionRow,
)
from community_feed.services.backend import DataStore
from community_feed.services.errors import DataStoreError

__all__ = ["FeedRepository"]


class FeedRepository:
    """Typed wrapper around a ``DataStore`` for the community tables.

    Rows are validated here, so everything past this class works with
    schemas rather than raw mappings.
    """

    def __init__(self, store: DataStore, config: Settings | None = None) -> None:
        """Initialize the repository with a data store and table names."""
        self.store = store
        self.config = config or settings

    # --- posts ---------------------------------------------------------------------
    async def list_posts(self) -> list[PostRow]:
        """Return all posts, newest first."""
        rows = await self.store.select(
            self.config.posts_table, order_by="created_at", descending=True
        )
        return [_decode(PostRow, row) for row in rows]

    async def insert_post(
        self,
        *,
        user_id: str,
        content: str | None,
        image_urls: list[str],
        is_anonymous: bool,
        client_temp_id: str,
    ) -> PostRow:
        """Insert a post and return the persisted row.

        Args:
            user_id: Author of the post (stored even when anonymous).
            content: Trimmed text, or None for image-only posts.
            image_urls: Uploaded public URLs, cover first.
            is_anonymous: Hide the author when rendering.
            client_temp_id: Temporary id echoed back on the realtime insert.
        """
        row = await self.store.insert(
            self.config.posts_table,
            {
                "user_id": user_id,
                "content": content,
                "image_urls": image_urls or None,
                "is_anonymous": is_anonymous,
                "client_temp_id": client_temp_id,
            },
        )
        return _decode(PostRow, row)

    async def delete_post(self, post_id: str) -> None:
        await self.store.delete(self.config.posts_table, filters={"id": post_id})

    # --- aggregates ----------------------------------------------------------------
    async def aggregates_for(
        self, post_ids: Iterable[str], viewer_id: str | None
    ) -> dict[str, PostAggregates]:
        """Return reaction counts, the viewer's reaction and comment counts per post."""
        ids = list(dict.fromkeys(post_ids))
        if not ids:
            return {}
        reactions = await self.list_reactions(ids)
        comment_rows = await self.store.select(
            self.config.comments_table, filters={"post_id": ids}
        )

        counts: dict[str, Counter[str]] = {post_id: Counter() for post_id in ids}
        mine: dict[str, str] = {}
        for reaction in reactions:
            counts[reaction.post_id][reaction.kind] += 1
            if viewer_id is not None and reaction.user_id == viewer_id:
                mine[reaction.post_id] = reaction.kind
        comments = Counter(str(row["post_id"]) for row in comment_rows if row.get("post_id"))

        return {
            post_id: PostAggregates(
                reaction_counts=dict(counts[post_id]),
                my_reaction=mine.get(post_id),
                comments_count=comments.get(post_id, 0),
            )
            for post_id in ids
        }

    # --- authors -------------------------------------------------------------------
    async def authors_for(self, user_ids: Iterable[str | None]) -> dict[str, AuthorSnapshot]:
        """Return author snapshots keyed by user id; unknown ids are omitted."""
        ids = [uid for uid in dict.fromkeys(user_ids) if uid]
        if not ids:
            return {}
        rows = await self.store.select(self.config.users_table, filters={"id": ids})
        authors = (_decode(AuthorSnapshot, row) for row in rows)
        return {author.id: author for author in authors}

    async def author(self, user_id: str | None) -> AuthorSnapshot | None:
        return (await self.authors_for([user_id])).get(user_id or "")

    # --- comments ------------------------------------------------------------------
    async def list_comments(self, post_id: str) -> list[CommentRow]:
        """Return a post's comments and replies, oldest first."""
        rows = await self.store.select(
            self.config.comments_table, filters={"post_id": post_id}, order_by="created_at"
        )
        return [_decode(CommentRow, row) for row in rows]

    async def insert_comment(
        self,
        *,
        post_id: str,
        user_id: str,
        content: str | None,
        image_url: str | None,
        reply_to: str | None,
        client_temp_id: str,
    ) -> CommentRow:
        row = await self.store.insert(
            self.config.comments_table,
            {
                "post_id": post_id,
                "user_id": user_id,
                "content": content,
                "image_url": image_url,
                "reply_to": reply_to,
                "client_temp_id": client_temp_id,
            },
        )
        return _decode(CommentRow, row)

    async def delete_comment(self, comment_id: str) -> None:
        await self.store.delete(self.config.comments_table, filters={"id": comment_id})

    # --- reactions -----------------------------------------------------------------
    async def list_reactions(self, post_ids: list[str]) -> list[ReactionRow]:
        rows = await self.store.select(self.config.reactions_table, filters={"post_id": post_ids})
        return [_decode(ReactionRow, row) for row in rows]

    async def set_reaction(self, post_id: str, user_id: str, kind: str | None) -> None:
        """Make ``kind`` the user's only reaction on the post (None removes it)."""
        key = {"post_id": post_id, "user_id": user_id}
        if kind is None:
            await self.store.delete(self.config.reactions_table, filters=key)
            return
        await self.store.upsert(
            self.config.reactions_table,
            {**key, "reaction_type": kind},
            on_conflict=("post_id", "user_id"),
        )


def _decode(schema: Any, row: Mapping[str, Any]) -> Any:
    try:
        return schema.model_validate(dict(row))
    except ValidationError as exc:
        raise DataStoreError(f"Malformed {schema.__name__} row: {exc}") from exc
