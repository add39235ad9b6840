"""Pydantic schemas for rows exchanged with the hosted backends."""

from .comment import CommentRow
from .post import PostAggregates, PostRow
from .reaction import REACTION_KINDS, ReactionKind, ReactionRow
from .user import AuthorSnapshot, Viewer

__all__ = [
    "AuthorSnapshot",
    "CommentRow",
    "PostAggregates",
    "PostRow",
    "REACTION_KINDS",
    "ReactionKind",
    "ReactionRow",
    "Viewer",
]
