"""Arena-backed comment tree.

Nodes are stored flat, keyed by ``id`` (or ``temp_id`` while pending), with
a parent map and an ordered children index. Inserts, removals and re-keying
are map updates; the nested ``replies`` view is rebuilt from the index on
demand by :meth:`CommentTree.snapshot`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from community_feed.models import Comment

logger = logging.getLogger(__name__)

ROOT: str | None = None


class CommentTree:
    """Comment thread for one post."""

    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        self._nodes: dict[str, Comment] = {}
        self._parent: dict[str, str | None] = {}
        self._children: dict[str | None, list[str]] = {ROOT: []}
        # Known to the server but not shown (their parent vanished).
        self._hidden: set[str] = set()

    @classmethod
    def build(cls, post_id: str, comments: Iterable[Comment]) -> CommentTree:
        """Build a tree from a flat list.

        Replies whose parent is not in the list are promoted to top level.
        """
        tree = cls(post_id)
        flat = list({c.key: replace(c, replies=()) for c in comments}.values())
        present = {c.key for c in flat}
        for comment in flat:
            tree._nodes[comment.key] = comment
            tree._children.setdefault(comment.key, [])
        for comment in flat:
            parent = comment.reply_to if comment.reply_to in present else ROOT
            if comment.reply_to is not None and parent is ROOT:
                logger.info(
                    "Promoting comment %s to top level; parent %s not found",
                    comment.key,
                    comment.reply_to,
                )
            tree._parent[comment.key] = parent
            tree._children[parent].append(comment.key)
        tree._promote_unreachable(flat)
        for keys in tree._children.values():
            tree._sort(keys)
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    @property
    def hidden(self) -> frozenset[str]:
        return frozenset(self._hidden)

    def knows(self, key: str | None) -> bool:
        """Return True if ``key`` is shown or was deliberately hidden."""
        return key is not None and (key in self._nodes or key in self._hidden)

    def get(self, key: str) -> Comment | None:
        return self._nodes.get(key)

    def insert(self, comment: Comment) -> bool:
        """Insert a comment under its ``reply_to`` parent (or at the root).

        Returns False when the comment is already present or its parent is
        missing; a comment with a missing parent is dropped, not promoted.
        """
        key = comment.key
        if self.knows(key) or (comment.temp_id is not None and comment.temp_id in self._nodes):
            return False
        parent = comment.reply_to
        if parent is not None and parent not in self._nodes:
            logger.info("Dropping comment %s; parent %s is gone", key, parent)
            if comment.id is not None:
                self._hidden.add(comment.id)
            return False
        self._nodes[key] = replace(comment, replies=())
        self._parent[key] = parent
        self._children[key] = []
        siblings = self._children[parent]
        siblings.append(key)
        self._sort(siblings)
        return True

    def hide(self, comment_id: str) -> None:
        """Remember a server-side comment that is intentionally not shown."""
        if comment_id not in self._nodes:
            self._hidden.add(comment_id)

    def confirm(self, temp_id: str, comment: Comment) -> bool:
        """Replace a pending node in place with its confirmed copy.

        The node keeps its position; children and the parent index are
        re-keyed to the confirmed id. Returns False if ``temp_id`` is gone.
        """
        if temp_id not in self._nodes or comment.id is None:
            return False
        new_key = comment.id
        if new_key in self._nodes:
            self.remove(temp_id)
            return True
        parent = self._parent.pop(temp_id)
        children = self._children.pop(temp_id)
        del self._nodes[temp_id]
        self._nodes[new_key] = replace(comment, reply_to=parent, replies=())
        self._parent[new_key] = parent
        self._children[new_key] = children
        for child in children:
            self._parent[child] = new_key
            self._nodes[child] = replace(self._nodes[child], reply_to=new_key)
        siblings = self._children[parent]
        siblings[siblings.index(temp_id)] = new_key
        self._sort(siblings)
        return True

    def remove(self, key: str) -> list[Comment]:
        """Remove a node and its whole subtree; returns the removed comments."""
        if key not in self._nodes:
            self._hidden.discard(key)
            return []
        self._children[self._parent[key]].remove(key)
        removed: list[Comment] = []
        stack = [key]
        while stack:
            current = stack.pop()
            removed.append(self._nodes.pop(current))
            del self._parent[current]
            stack.extend(self._children.pop(current))
        return removed

    def flatten(self) -> list[Comment]:
        """Return every shown node in depth-first, chronological order."""
        ordered: list[Comment] = []
        stack = list(reversed(self._children[ROOT]))
        while stack:
            key = stack.pop()
            ordered.append(self._nodes[key])
            stack.extend(reversed(self._children[key]))
        return ordered

    def snapshot(self) -> tuple[Comment, ...]:
        """Return top-level comments with nested ``replies`` materialized."""

        def materialize(key: str) -> Comment:
            replies = tuple(materialize(child) for child in self._children[key])
            return replace(self._nodes[key], replies=replies)

        return tuple(materialize(key) for key in self._children[ROOT])

    def _promote_unreachable(self, flat: list[Comment]) -> None:
        # Reply cycles in bulk data would otherwise hide nodes from every walk.
        reachable = {c.key for c in self.flatten()}
        for comment in flat:
            key = comment.key
            if key in reachable:
                continue
            logger.info("Promoting comment %s to top level; reply cycle", key)
            self._children[self._parent[key]].remove(key)
            self._parent[key] = ROOT
            self._children[ROOT].append(key)
            reachable = {c.key for c in self.flatten()}

    def _sort(self, keys: list[str]) -> None:
        keys.sort(key=lambda k: self._nodes[k].created_at)
