# src/community_feed/models/post.py
"""Post entity as shown in the feed."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType

from community_feed.schemas import AuthorSnapshot, PostAggregates, PostRow


def _frozen_counts(counts: Mapping[str, int] | None = None) -> Mapping[str, int]:
    return MappingProxyType({kind: n for kind, n in (counts or {}).items() if n > 0})


@dataclass(frozen=True)
class Post:
    """A feed entry.

    Exactly one of ``id`` (persisted) or ``temp_id`` (optimistic, ``pending``)
    identifies the entry at any time.
    """

    created_at: datetime
    id: str | None = None
    temp_id: str | None = None
    author_id: str | None = None
    author: AuthorSnapshot | None = None
    is_anonymous: bool = False
    content: str | None = None
    image_urls: tuple[str, ...] = ()
    reaction_counts: Mapping[str, int] = field(default_factory=_frozen_counts)
    my_reaction: str | None = None
    comments_count: int = 0
    pending: bool = False
    dirty: bool = False

    @property
    def key(self) -> str:
        """Return the identifier the entry is currently tracked by."""
        return self.id if self.id is not None else self.temp_id  # type: ignore[return-value]

    @property
    def cover_url(self) -> str | None:
        return self.image_urls[0] if self.image_urls else None

    @property
    def total_reactions(self) -> int:
        return sum(self.reaction_counts.values())

    @classmethod
    def from_row(
        cls,
        row: PostRow,
        *,
        author: AuthorSnapshot | None = None,
        aggregates: PostAggregates | None = None,
    ) -> Post:
        """Build a confirmed post from a backend row and its aggregates."""
        aggregates = aggregates or PostAggregates()
        return cls(
            id=row.id,
            author_id=row.user_id,
            author=None if row.is_anonymous else author,
            is_anonymous=row.is_anonymous,
            content=row.content,
            image_urls=tuple(row.image_urls),
            created_at=row.created_at,
            reaction_counts=_frozen_counts(aggregates.reaction_counts),
            my_reaction=aggregates.my_reaction,
            comments_count=aggregates.comments_count,
        )

    def with_aggregates(self, aggregates: PostAggregates) -> Post:
        """Return a copy carrying fresh aggregates, clearing ``dirty``."""
        return replace(
            self,
            reaction_counts=_frozen_counts(aggregates.reaction_counts),
            my_reaction=aggregates.my_reaction,
            comments_count=aggregates.comments_count,
            dirty=False,
        )

    def with_reaction(self, kind: str | None) -> Post:
        """Return a copy with the viewer's reaction switched to ``kind``.

        The previous kind (if any) is decremented; ``kind`` is incremented
        unless it is None (reaction removed).
        """
        counts = dict(self.reaction_counts)
        if self.my_reaction is not None:
            counts[self.my_reaction] = max(0, counts.get(self.my_reaction, 0) - 1)
        if kind is not None:
            counts[kind] = counts.get(kind, 0) + 1
        return replace(self, reaction_counts=_frozen_counts(counts), my_reaction=kind)

    def with_comments_delta(self, delta: int) -> Post:
        return replace(self, comments_count=max(0, self.comments_count + delta))
