# src/community_feed/schemas/reaction.py
"""Reaction-related Pydantic schemas."""

from __future__ import annotations

from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._coerce import stringify_id

ReactionKind = Literal["like", "love", "haha", "wow", "sad", "angry"]
REACTION_KINDS: tuple[str, ...] = get_args(ReactionKind)


class ReactionRow(BaseModel):
    """One viewer's reaction on one post; (post_id, user_id) is unique."""

    id: str | None = None
    post_id: str
    user_id: str
    kind: ReactionKind = Field(alias="reaction_type")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("id", "post_id", "user_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: object) -> object:
        return stringify_id(value)
