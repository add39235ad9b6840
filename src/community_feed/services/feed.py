"""Feed reconciliation between optimistic local state and the hosted backends.

This module provides the FeedReconciler class, which owns the post list and
the open comment thread. It merges three inputs into one consistent view:

- Bulk fetches (``load_feed``, ``fetch_comments``)
- Optimistic local mutations, confirmed in place or rolled back on failure
- Realtime change events, queued and applied one at a time in arrival order

All state changes happen synchronously between awaits, so a partially
applied mutation is never observable.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from itertools import count

from community_feed.core.settings import Settings, settings
from community_feed.models import Comment, Post
from community_feed.repositories.feed_repo import FeedRepository
from community_feed.schemas import REACTION_KINDS, CommentRow, PostRow, Viewer
from community_feed.services.auth import require_viewer
from community_feed.services.backend import AuthProvider, BlobStore, DataStore, LocalImage
from community_feed.services.comment_tree import CommentTree
from community_feed.services.debounce import KeyedDebouncer
from community_feed.services.errors import (
    FeedPermissionError,
    FeedValidationError,
    RemoteError,
)
from community_feed.services.realtime import ChangeEvent, ChangeType, Subscription
from community_feed.services.uploads import upload_image, upload_images

# Configure logger for this module
logger = logging.getLogger(__name__)

Listener = Callable[[], None]


@dataclass
class CommentView:
    """The open comment thread and its realtime subscription."""

    post_id: str
    tree: CommentTree
    subscription: Subscription | None = None


class FeedReconciler:
    """Owns the community feed state shown to the viewer.

    Clients are injected by the composition root; nothing here reaches for
    module-level backend singletons.
    """

    def __init__(
        self,
        *,
        store: DataStore,
        blobs: BlobStore,
        auth: AuthProvider,
        config: Settings | None = None,
        repository: FeedRepository | None = None,
    ) -> None:
        self.config = config or settings
        self.store = store
        self.blobs = blobs
        self.auth = auth
        self.repo = repository or FeedRepository(store, self.config)
        self.debouncer = KeyedDebouncer(
            self.config.reaction_refetch_debounce_seconds, self._refresh_dirty
        )
        self._posts: list[Post] = []
        self._view: CommentView | None = None
        self._inbox: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._subscriptions: list[Subscription] = []
        self._task: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []
        self._temp_ids = count(1)
        self._comments_in_flight: set[str] = set()

    # --- read access ---------------------------------------------------------------
    @property
    def posts(self) -> tuple[Post, ...]:
        return tuple(self._posts)

    @property
    def comments(self) -> tuple[Comment, ...]:
        """Top-level comments of the open thread, replies nested."""
        return self._view.tree.snapshot() if self._view else ()

    @property
    def active_post_id(self) -> str | None:
        return self._view.post_id if self._view else None

    def post(self, key: str) -> Post | None:
        index = self._index_of(key)
        return self._posts[index] if index is not None else None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` after every state change; returns a remover."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # --- lifecycle -----------------------------------------------------------------
    async def start(self) -> None:
        """Subscribe to the posts and reactions streams and start applying events."""
        if self._task is not None and not self._task.done():
            return
        self._subscriptions = [
            self.store.subscribe(self.config.posts_table, self._enqueue),
            self.store.subscribe(self.config.reactions_table, self._enqueue),
        ]
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Release every subscription, pending refetch and the event loop task."""
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        self.close_comments()
        self.debouncer.cancel_all()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def drain(self) -> None:
        """Wait until every queued change event has been applied."""
        if self._task is None or self._task.done():
            while not self._inbox.empty():
                await self._apply_safely(self._inbox.get_nowait())
                self._inbox.task_done()
            return
        await self._inbox.join()

    # --- posts ---------------------------------------------------------------------
    async def load_feed(self) -> tuple[Post, ...]:
        """Replace the list with a fresh snapshot, newest first.

        Posts still being published stay at the top so their confirmation can
        land in place. Posts that arrived while the fetch was in flight are
        kept, and posts removed meanwhile stay removed. On failure the
        current list is left untouched.
        """
        viewer = self.auth.current_user()
        before = {p.key for p in self._posts}
        try:
            rows = await self.repo.list_posts()
            aggregates = await self.repo.aggregates_for(
                [row.id for row in rows], _viewer_id(viewer)
            )
            authors = await self.repo.authors_for(
                row.user_id for row in rows if not row.is_anonymous
            )
        except RemoteError:
            logger.warning("Feed refresh failed; keeping %d cached posts", len(self._posts))
            raise

        removed = {key for key in before if self._index_of(key) is None}
        fetched = {row.id for row in rows}
        echoed = {row.client_temp_id for row in rows if row.client_temp_id}
        loaded = [
            Post.from_row(
                row,
                author=authors.get(row.user_id or ""),
                aggregates=aggregates.get(row.id),
            )
            for row in rows
            if row.id not in removed
        ]
        kept = [
            p
            for p in self._posts
            if (p.pending and p.temp_id not in echoed)
            or (p.id is not None and p.key not in before and p.id not in fetched)
        ]
        self._set_posts(kept + loaded)
        return self.posts

    async def refresh_post(self, post_id: str) -> Post | None:
        """Refetch one post's aggregates from the source of truth, clearing ``dirty``."""
        viewer_id = _viewer_id(self.auth.current_user())
        aggregates = await self.repo.aggregates_for([post_id], viewer_id)
        index = self._index_of(post_id)
        if index is None:
            return None
        self._replace_at(index, self._posts[index].with_aggregates(aggregates[post_id]))
        return self._posts[index]

    async def create_post(
        self,
        content: str | None,
        images: Iterable[LocalImage] = (),
        *,
        anonymous: bool = False,
    ) -> Post:
        """Publish a post optimistically.

        The pending copy is shown at the top immediately. Images are uploaded
        in order, then the row is inserted; the confirmed post replaces the
        pending copy in place, or the pending copy is removed on any failure.
        """
        text = (content or "").strip()
        pictures = list(images)
        if not text and not pictures:
            raise FeedValidationError("Add text or an image before posting.")
        viewer = require_viewer(self.auth)

        temp_id = self._next_temp_id()
        optimistic = Post(
            temp_id=temp_id,
            author_id=viewer.id,
            author=None if anonymous else viewer.snapshot(),
            is_anonymous=anonymous,
            content=text or None,
            image_urls=tuple(image.uri for image in pictures),
            created_at=datetime.now(UTC),
            pending=True,
        )
        self._set_posts([optimistic, *self._posts])

        try:
            urls = await upload_images(
                self.blobs,
                self.config.storage_bucket,
                folder="posts",
                owner_id=viewer.id,
                images=pictures,
            )
            row = await self.repo.insert_post(
                user_id=viewer.id,
                content=text or None,
                image_urls=urls,
                is_anonymous=anonymous,
                client_temp_id=temp_id,
            )
        except (Exception, asyncio.CancelledError):
            logger.warning("Post %s failed; removing pending copy", temp_id)
            self._set_posts([p for p in self._posts if not _is_temp(p, temp_id)])
            raise

        return self._confirm_post(temp_id, Post.from_row(row, author=optimistic.author))

    async def delete_post(self, post_id: str) -> None:
        """Remove a post locally, then remotely; reload the feed if the delete fails."""
        viewer = require_viewer(self.auth)
        post = self.post(post_id)
        if post is None:
            return
        if post.pending:
            raise FeedValidationError("This post is still being published.")
        if post.author_id != viewer.id:
            raise FeedPermissionError()

        self._set_posts([p for p in self._posts if p.id != post_id])
        if self.active_post_id == post_id:
            self.close_comments()
        try:
            await self.repo.delete_post(post_id)
        except Exception:
            logger.warning("Delete of post %s failed; reloading feed", post_id)
            await self._resync(self.load_feed())
            raise

    async def toggle_reaction(self, post_id: str, kind: str) -> Post | None:
        """Switch the viewer's reaction; the same kind again removes it.

        Counts change locally before the backend is called. If the backend
        call fails the previous reaction is restored and the post's
        aggregates are refetched rather than unwound by hand.
        """
        if kind not in REACTION_KINDS:
            raise FeedValidationError(f"Unknown reaction {kind!r}.")
        viewer = require_viewer(self.auth)
        index = self._index_of(post_id)
        if index is None or self._posts[index].pending:
            raise FeedValidationError("This post can't be reacted to yet.")

        before = self._posts[index]
        target = None if before.my_reaction == kind else kind
        self._replace_at(index, before.with_reaction(target))
        try:
            await self.repo.set_reaction(post_id, viewer.id, target)
        except Exception:
            logger.warning("Reaction on %s failed; restoring %s", post_id, before.my_reaction)
            index = self._index_of(post_id)
            if index is not None:
                self._replace_at(index, replace(self._posts[index], my_reaction=before.my_reaction))
            await self._resync(self.refresh_post(post_id))
            raise
        return self.post(post_id)

    # --- comments ------------------------------------------------------------------
    async def open_comments(self, post_id: str) -> tuple[Comment, ...]:
        """Make ``post_id``'s thread the active view and subscribe to its changes."""
        self.close_comments()
        view = CommentView(post_id=post_id, tree=CommentTree(post_id))
        view.subscription = self.store.subscribe(
            self.config.comments_table, self._enqueue, filters={"post_id": post_id}
        )
        self._view = view
        self._notify()
        await self.fetch_comments(post_id)
        return self.comments

    async def fetch_comments(self, post_id: str) -> tuple[Comment, ...]:
        """Rebuild the open thread from the backend's flat comment list.

        Comments that are pending, or that arrived while the fetch was in
        flight, are carried into the rebuilt tree; comments removed meanwhile
        stay removed.
        """
        view = self._view
        if view is None or view.post_id != post_id:
            return await self.open_comments(post_id)

        before = {c.key for c in view.tree.flatten()}
        rows = await self.repo.list_comments(post_id)
        authors = await self.repo.authors_for(row.user_id for row in rows)
        if self._view is not view:
            return self.comments

        removed = {key for key in before if key not in view.tree}
        fetched = {row.id for row in rows}
        tree = CommentTree.build(
            post_id,
            (
                Comment.from_row(row, author=authors.get(row.user_id or ""))
                for row in rows
                if row.id not in removed
            ),
        )
        for comment in view.tree.flatten():
            if comment.pending or (comment.key not in before and comment.key not in fetched):
                tree.insert(comment)
        for comment_id in view.tree.hidden:
            tree.hide(comment_id)
        view.tree = tree
        self._notify()
        return self.comments

    def close_comments(self) -> None:
        view, self._view = self._view, None
        if view is None:
            return
        if view.subscription is not None:
            view.subscription.close()
        self._notify()

    async def submit_comment(
        self, post_id: str, text: str | None, image: LocalImage | None = None
    ) -> Comment:
        """Add a top-level comment to a post."""
        content = (text or "").strip()
        if not content and image is None:
            raise FeedValidationError("Add text or image to post a comment.")
        viewer = require_viewer(self.auth)
        post = self.post(post_id)
        if post is not None and post.pending:
            raise FeedValidationError("This post is still being published.")
        return await self._submit_comment(viewer, post_id, content, image=image, reply_to=None)

    async def submit_reply(self, parent_id: str, text: str | None) -> Comment:
        """Reply to a comment of the open thread, at any depth.

        If the parent disappears before the reply is shown, the reply is still
        sent but stays out of the visible tree.
        """
        content = (text or "").strip()
        if not content:
            raise FeedValidationError("Write something before replying.")
        viewer = require_viewer(self.auth)
        view = self._view
        if view is None:
            raise FeedValidationError("Open the thread before replying.")
        parent = view.tree.get(parent_id)
        if parent is not None and parent.pending:
            raise FeedValidationError("Wait for the comment to finish posting.")
        return await self._submit_comment(
            viewer, view.post_id, content, image=None, reply_to=parent_id
        )

    async def delete_comment(self, comment_id: str) -> None:
        """Remove a comment and its replies locally, then remotely."""
        viewer = require_viewer(self.auth)
        view = self._view
        comment = view.tree.get(comment_id) if view else None
        if view is None or comment is None:
            return
        if comment.pending:
            raise FeedValidationError("This comment is still being posted.")
        if comment.author_id != viewer.id:
            raise FeedPermissionError()

        removed = view.tree.remove(comment_id)
        self._bump_comments(view.post_id, -len(removed))
        try:
            await self.repo.delete_comment(comment_id)
        except Exception:
            logger.warning("Delete of comment %s failed; refetching thread", comment_id)
            if self._view is view:
                await self._resync(self.fetch_comments(view.post_id))
            await self._resync(self.refresh_post(view.post_id))
            raise

    async def _submit_comment(
        self,
        viewer: Viewer,
        post_id: str,
        content: str,
        *,
        image: LocalImage | None,
        reply_to: str | None,
    ) -> Comment:
        temp_id = self._next_temp_id()
        optimistic = Comment(
            temp_id=temp_id,
            post_id=post_id,
            author_id=viewer.id,
            author=viewer.snapshot(),
            content=content or None,
            image_url=image.uri if image else None,
            reply_to=reply_to,
            created_at=datetime.now(UTC),
            pending=True,
        )
        view = self._view if self.active_post_id == post_id else None
        if view is not None:
            view.tree.insert(optimistic)
        self._bump_comments(post_id, 1)
        self._comments_in_flight.add(temp_id)

        try:
            image_url = None
            if image is not None:
                image_url = await upload_image(
                    self.blobs,
                    self.config.storage_bucket,
                    folder="comments",
                    owner_id=viewer.id,
                    image=image,
                )
            row = await self.repo.insert_comment(
                post_id=post_id,
                user_id=viewer.id,
                content=content or None,
                image_url=image_url,
                reply_to=reply_to,
                client_temp_id=temp_id,
            )
        except (Exception, asyncio.CancelledError):
            logger.warning("Comment %s failed; rolling back", temp_id)
            self._comments_in_flight.discard(temp_id)
            if view is not None:
                view.tree.remove(temp_id)
            self._bump_comments(post_id, -1)
            raise

        self._comments_in_flight.discard(temp_id)
        confirmed = Comment.from_row(row, author=optimistic.author)
        if view is not None and view is self._view:
            if not view.tree.confirm(temp_id, confirmed):
                view.tree.hide(confirmed.id)  # type: ignore[arg-type]
            self._notify()
        return confirmed

    # --- realtime ------------------------------------------------------------------
    def _enqueue(self, event: ChangeEvent) -> None:
        self._inbox.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                await self._apply_safely(event)
            finally:
                self._inbox.task_done()

    async def _apply_safely(self, event: ChangeEvent) -> None:
        try:
            await self._apply(event)
        except (RemoteError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error(
                "Failed to apply %s on %s: %s", event.type.value, event.table, e, exc_info=True
            )

    async def _apply(self, event: ChangeEvent) -> None:
        if event.table == self.config.posts_table:
            if event.type is ChangeType.INSERT:
                await self._on_post_insert(PostRow.model_validate(dict(event.new)))
            elif event.type is ChangeType.UPDATE:
                await self._on_post_update(PostRow.model_validate(dict(event.new)))
            else:
                self._on_post_delete(str(event.old["id"]))
        elif event.table == self.config.reactions_table:
            self._on_reaction_change(event)
        elif event.table == self.config.comments_table:
            if event.type is ChangeType.INSERT:
                await self._on_comment_insert(CommentRow.model_validate(dict(event.new)))
            elif event.type is ChangeType.DELETE:
                self._on_comment_delete(event)

    async def _on_post_insert(self, row: PostRow) -> None:
        if self._index_of(row.id) is not None:
            return
        temp_id = row.client_temp_id
        if temp_id and (index := self._index_of(temp_id)) is not None:
            pending = self._posts[index]
            self._confirm_post(temp_id, Post.from_row(row, author=pending.author))
            return

        author = None if row.is_anonymous else await self.repo.author(row.user_id)
        aggregates = await self.repo.aggregates_for([row.id], _viewer_id(self.auth.current_user()))
        if self._index_of(row.id) is not None:
            return
        post = Post.from_row(row, author=author, aggregates=aggregates.get(row.id))
        if temp_id and self._index_of(temp_id) is not None:
            self._confirm_post(temp_id, post)
        else:
            self._set_posts([post, *self._posts])

    async def _on_post_update(self, row: PostRow) -> None:
        index = self._index_of(row.id)
        if index is None:
            return
        current = self._posts[index]
        author = current.author
        if not row.is_anonymous and author is None:
            author = await self.repo.author(row.user_id)
            index = self._index_of(row.id)
            if index is None:
                return
            current = self._posts[index]
        self._replace_at(
            index,
            replace(
                current,
                content=row.content,
                image_urls=tuple(row.image_urls),
                is_anonymous=row.is_anonymous,
                author=None if row.is_anonymous else author,
            ),
        )

    def _on_post_delete(self, post_id: str) -> None:
        if self._index_of(post_id) is not None:
            self._set_posts([p for p in self._posts if p.id != post_id])
        if self.active_post_id == post_id:
            self.close_comments()

    def _on_reaction_change(self, event: ChangeEvent) -> None:
        post_id = event.record.get("post_id")
        if post_id is None:
            logger.debug("Reaction %s event without post_id ignored", event.type.value)
            return
        index = self._index_of(str(post_id))
        if index is None:
            return
        if not self._posts[index].dirty:
            self._replace_at(index, replace(self._posts[index], dirty=True))
        self.debouncer.trigger(str(post_id))

    async def _refresh_dirty(self, post_id: str) -> None:
        await self.refresh_post(post_id)

    async def _on_comment_insert(self, row: CommentRow) -> None:
        view = self._view
        if view is None or row.post_id != view.post_id or view.tree.knows(row.id):
            return
        temp_id = row.client_temp_id
        if temp_id and temp_id in self._comments_in_flight:
            pending = view.tree.get(temp_id)
            echoed = Comment.from_row(row, author=pending.author if pending else None)
            if not view.tree.confirm(temp_id, echoed):
                view.tree.hide(row.id)
            self._notify()
            return

        author = await self.repo.author(row.user_id)
        if self._view is not view or view.tree.knows(row.id):
            return
        comment = Comment.from_row(row, author=author)
        if temp_id and view.tree.confirm(temp_id, comment):
            self._notify()
            return
        view.tree.insert(comment)
        self._bump_comments(row.post_id, 1)

    def _on_comment_delete(self, event: ChangeEvent) -> None:
        view = self._view
        comment_id = str(event.old.get("id"))
        post_id = str(event.old.get("post_id") or (view.post_id if view else ""))
        if view is None or post_id != view.post_id or not view.tree.knows(comment_id):
            return
        removed = view.tree.remove(comment_id)
        self._bump_comments(view.post_id, -max(1, len(removed)))

    # --- state helpers -------------------------------------------------------------
    def _confirm_post(self, temp_id: str, confirmed: Post) -> Post:
        """Swap the pending copy for ``confirmed`` at the first matching position."""
        existing = next((p for p in self._posts if p.id == confirmed.id), None)
        if existing is not None:
            confirmed = replace(
                confirmed,
                reaction_counts=existing.reaction_counts,
                my_reaction=existing.my_reaction,
                comments_count=existing.comments_count,
                dirty=existing.dirty,
            )
        posts: list[Post] = []
        placed = False
        for post in self._posts:
            if post.id == confirmed.id or _is_temp(post, temp_id):
                if not placed:
                    posts.append(confirmed)
                    placed = True
                continue
            posts.append(post)
        if placed:
            self._set_posts(posts)
        return confirmed

    def _bump_comments(self, post_id: str, delta: int) -> None:
        index = self._index_of(post_id)
        if index is not None and delta:
            self._replace_at(index, self._posts[index].with_comments_delta(delta))
        else:
            self._notify()

    def _index_of(self, key: str) -> int | None:
        for index, post in enumerate(self._posts):
            if post.id == key or _is_temp(post, key):
                return index
        return None

    def _replace_at(self, index: int, post: Post) -> None:
        posts = list(self._posts)
        posts[index] = post
        self._set_posts(posts)

    def _set_posts(self, posts: list[Post]) -> None:
        self._posts = posts
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Feed listener %r failed", listener)

    def _next_temp_id(self) -> str:
        millis = datetime.now(UTC).timestamp() * 1000
        return f"{self.config.temp_id_prefix}-{int(millis)}-{next(self._temp_ids)}"

    async def _resync(self, refetch: Awaitable[object]) -> None:
        try:
            await refetch
        except RemoteError:
            logger.warning("Resync after failed operation also failed", exc_info=True)


def _is_temp(post: Post, temp_id: str) -> bool:
    return post.id is None and post.temp_id == temp_id


def _viewer_id(viewer: Viewer | None) -> str | None:
    return viewer.id if viewer is not None else None


__all__ = ["CommentView", "FeedReconciler"]
