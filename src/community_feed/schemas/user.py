# src/community_feed/schemas/user.py
"""User identity schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ._coerce import stringify_id


class AuthorSnapshot(BaseModel):
    """Public profile fields shown next to a post or comment."""

    id: str
    email: str | None = None
    display_name: str | None = Field(default=None, alias="name")
    avatar_url: str | None = Field(default=None, alias="profile_photo")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return stringify_id(value)

    @property
    def label(self) -> str:
        """Return the name to display, falling back to the email's local part."""
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "User"


class Viewer(AuthorSnapshot):
    """The signed-in user as reported by the auth provider."""

    email_verified: bool = False

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> Viewer:
        """Build a viewer from decoded ID token claims."""
        return cls(
            id=claims.get("user_id") or claims["sub"],
            email=claims.get("email"),
            name=claims.get("name"),
            profile_photo=claims.get("picture"),
            email_verified=bool(claims.get("email_verified", False)),
        )

    def snapshot(self) -> AuthorSnapshot:
        """Return the public profile shown on the viewer's own posts."""
        return AuthorSnapshot(
            id=self.id,
            email=self.email,
            name=self.display_name,
            profile_photo=self.avatar_url,
        )
