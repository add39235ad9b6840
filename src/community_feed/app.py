"""Composition root: builds the feed and owns its backend clients."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from community_feed.core.settings import Settings, settings
from community_feed.services.auth import JwtAuthProvider, StaticAuthProvider
from community_feed.services.backend import AuthProvider
from community_feed.services.feed import FeedReconciler
from community_feed.services.memory_backend import InMemoryBlobStore, InMemoryDataStore
from community_feed.services.realtime import ChangeFeed
from community_feed.services.supabase import (
    SupabaseBlobStore,
    SupabaseClient,
    SupabaseDataStore,
    load_supabase_config,
)

logger = logging.getLogger(__name__)


@dataclass
class FeedApp:
    """The reconciler plus the clients whose lifecycle it shares."""

    feed: FeedReconciler
    change_feed: ChangeFeed
    http: SupabaseClient | None = None

    async def start(self) -> None:
        await self.feed.start()

    async def close(self) -> None:
        await self.feed.stop()
        if self.http is not None:
            await self.http.aclose()


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_feed(config: Settings | None = None, *, auth: AuthProvider | None = None) -> FeedApp:
    """Wire the feed against the hosted backend, or in-process stores when unconfigured.

    Realtime changes reach the feed through ``FeedApp.change_feed``; the
    platform's realtime transport publishes into it.
    """
    config = config or settings
    configure_logging(config)
    change_feed = ChangeFeed()
    if auth is None:
        auth = JwtAuthProvider(config) if config.auth_jwt_secret else StaticAuthProvider()

    if config.backend_enabled:
        token_source = auth.access_token_getter if isinstance(auth, JwtAuthProvider) else None
        http = SupabaseClient(load_supabase_config(config), token_source=token_source)
        feed = FeedReconciler(
            store=SupabaseDataStore(http, change_feed),
            blobs=SupabaseBlobStore(http),
            auth=auth,
            config=config,
        )
        logger.info("Feed wired to %s", config.backend_url)
        return FeedApp(feed=feed, change_feed=change_feed, http=http)

    logger.info("No backend configured; using in-process stores")
    feed = FeedReconciler(
        store=InMemoryDataStore(change_feed),
        blobs=InMemoryBlobStore(),
        auth=auth,
        config=config,
    )
    return FeedApp(feed=feed, change_feed=change_feed)
