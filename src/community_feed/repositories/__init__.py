"""Data access layer over the hosted data store."""

from .feed_repo import FeedRepository

__all__ = ["FeedRepository"]
