# src/community_feed/services/__init__.py
"""Business logic services for the community feed.

The reconciler lives in :mod:`community_feed.services.feed`; only the error
types are re-exported here so the repositories can import them freely.
"""

from .errors import (
    AuthError,
    BlobStoreError,
    DataStoreError,
    FeedError,
    FeedPermissionError,
    FeedValidationError,
    RemoteError,
)

__all__ = [
    "AuthError",
    "BlobStoreError",
    "DataStoreError",
    "FeedError",
    "FeedPermissionError",
    "FeedValidationError",
    "RemoteError",
]
