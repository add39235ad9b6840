# tests/conftest.py
from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from community_feed.core.settings import Settings
from community_feed.schemas import Viewer
from community_feed.services.auth import StaticAuthProvider
from community_feed.services.feed import FeedReconciler
from community_feed.services.memory_backend import InMemoryBlobStore, InMemoryDataStore

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def at(minutes: int) -> datetime:
    """Return a fixed timestamp ``minutes`` after the test epoch."""
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture()
def test_settings() -> Settings:
    return Settings().model_copy(
        update={
            "reaction_refetch_debounce_seconds": 0.05,
            "backend_url": None,
            "backend_anon_key": None,
        }
    )


@pytest.fixture()
def viewer() -> Viewer:
    return Viewer(id="u-me", email="me@example.com", name="Me", profile_photo="https://img/me.png")


@pytest.fixture()
def other_user() -> dict[str, Any]:
    return {"id": "u-other", "email": "other@example.com", "name": "Other", "profile_photo": None}


@pytest.fixture()
def store(viewer: Viewer, other_user: dict[str, Any]) -> InMemoryDataStore:
    store = InMemoryDataStore()
    store.seed(
        "users",
        [
            {"id": viewer.id, "email": viewer.email, "name": "Me", "profile_photo": viewer.avatar_url},
            other_user,
        ],
    )
    return store


@pytest.fixture()
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture()
def auth(viewer: Viewer) -> StaticAuthProvider:
    return StaticAuthProvider(viewer)


@pytest.fixture()
def feed(
    store: InMemoryDataStore,
    blobs: InMemoryBlobStore,
    auth: StaticAuthProvider,
    test_settings: Settings,
) -> FeedReconciler:
    return FeedReconciler(store=store, blobs=blobs, auth=auth, config=test_settings)


@pytest_asyncio.fixture()
async def running_feed(feed: FeedReconciler) -> AsyncIterator[FeedReconciler]:
    await feed.start()
    try:
        yield feed
    finally:
        await feed.stop()


@pytest.fixture()
def seeded_posts(store: InMemoryDataStore) -> list[dict[str, Any]]:
    """Two posts by the viewer and one anonymous post by another user."""
    posts = store.seed(
        "community_posts",
        [
            {"id": "p1", "user_id": "u-me", "content": "Selling a bike", "created_at": at(1)},
            {
                "id": "p2",
                "user_id": "u-other",
                "content": "Lost keys near the library",
                "image_urls": ["https://cdn/keys.jpg"],
                "is_anonymous": True,
                "created_at": at(2),
            },
            {"id": "p3", "user_id": "u-me", "content": "Room for rent", "created_at": at(3)},
        ],
    )
    store.seed(
        "community_reactions",
        [
            {"id": "r1", "post_id": "p1", "user_id": "u-other", "reaction_type": "like"},
            {"id": "r2", "post_id": "p1", "user_id": "u-me", "reaction_type": "love"},
            {"id": "r3", "post_id": "p2", "user_id": "u-other", "reaction_type": "wow"},
        ],
    )
    return posts


@pytest.fixture()
def seeded_comments(store: InMemoryDataStore, seeded_posts: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """A thread on p1: two top-level comments, a nested reply chain, one orphan."""
    return store.seed(
        "community_comments",
        [
            {"id": "c1", "post_id": "p1", "user_id": "u-other", "content": "Price?", "created_at": at(10)},
            {"id": "c2", "post_id": "p1", "user_id": "u-me", "content": "Still there?", "created_at": at(5)},
            {
                "id": "c3",
                "post_id": "p1",
                "user_id": "u-me",
                "content": "50 dollars",
                "reply_to": "c1",
                "created_at": at(12),
            },
            {
                "id": "c4",
                "post_id": "p1",
                "user_id": "u-other",
                "content": "Deal",
                "reply_to": "c3",
                "created_at": at(13),
            },
            {
                "id": "c5",
                "post_id": "p1",
                "user_id": "u-other",
                "content": "orphan",
                "reply_to": "gone",
                "created_at": at(1),
            },
        ],
    )
