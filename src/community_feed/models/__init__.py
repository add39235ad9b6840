"""In-memory view entities owned by the feed reconciler."""

from .comment import Comment
from .post import Post

__all__ = ["Comment", "Post"]
