# src/community_feed/schemas/comment.py
"""Comment-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from ._coerce import ensure_aware, stringify_id


class CommentRow(BaseModel):
    """A row of the comments table; ``reply_to`` is None for top-level comments."""

    id: str
    post_id: str
    user_id: str | None = None
    content: str | None = None
    image_url: str | None = None
    reply_to: str | None = None
    created_at: datetime
    client_temp_id: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("id", "post_id", "user_id", "reply_to", mode="before")
    @classmethod
    def _stringify_ids(cls, value: object) -> object:
        return stringify_id(value)

    @field_validator("created_at")
    @classmethod
    def _aware_created_at(cls, value: datetime) -> datetime:
        return ensure_aware(value)
