# src/community_feed/schemas/post.py
"""Post-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ._coerce import ensure_aware, stringify_id
from .reaction import ReactionKind


class PostRow(BaseModel):
    """A row of the posts table."""

    id: str
    user_id: str | None = None
    content: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    is_anonymous: bool = False
    created_at: datetime
    client_temp_id: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: object) -> object:
        return stringify_id(value)

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="before")
    @classmethod
    def _null_image_urls(cls, data: object) -> object:
        if isinstance(data, dict) and data.get("image_urls") is None:
            data = {**data, "image_urls": []}
        return data


class PostAggregates(BaseModel):
    """Reaction and comment aggregates for one post, from the viewer's perspective."""

    reaction_counts: dict[ReactionKind, int] = Field(default_factory=dict)
    my_reaction: ReactionKind | None = None
    comments_count: int = 0

    model_config = ConfigDict(frozen=True)
