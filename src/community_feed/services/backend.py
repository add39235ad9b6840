"""Contracts for the hosted backends the feed is built on.

The reconciler only depends on these protocols; concrete clients are
injected by the composition root (see :mod:`community_feed.app`).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from community_feed.schemas import Viewer
from community_feed.services.realtime import ChangeHandler, Subscription

Row = dict[str, Any]
Filters = Mapping[str, Any]


@runtime_checkable
class AuthProvider(Protocol):
    """Supplies the signed-in viewer, or None when signed out."""

    def current_user(self) -> Viewer | None: ...


@runtime_checkable
class DataStore(Protocol):
    """Relational store with realtime change subscriptions.

    Filter values that are lists, tuples or sets match by membership; all
    other values match by equality.
    """

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]: ...

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row: ...

    async def upsert(
        self, table: str, values: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row:
        """Insert ``values``, or update the row that matches on ``on_conflict``."""
        ...

    async def update(
        self, table: str, values: Mapping[str, Any], *, filters: Filters
    ) -> list[Row]: ...

    async def delete(self, table: str, *, filters: Filters) -> list[Row]: ...

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filters: Filters | None = None,
    ) -> Subscription: ...


@runtime_checkable
class BlobStore(Protocol):
    """Object storage that returns public URLs for uploaded content."""

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str: ...


@dataclass(frozen=True)
class LocalImage:
    """An image picked on the device and not yet uploaded."""

    uri: str
    data: bytes
    content_type: str = "image/jpeg"

    @property
    def extension(self) -> str:
        name = self.uri.split("?", 1)[0].rsplit("/", 1)[-1]
        return name.rsplit(".", 1)[1] if "." in name else "jpg"


def is_membership(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def matches_filters(row: Mapping[str, Any], filters: Filters | None) -> bool:
    """Return True if ``row`` satisfies every filter (shared by in-process stores)."""
    if not filters:
        return True
    for column, expected in filters.items():
        actual = row.get(column)
        if is_membership(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def ordered(rows: Sequence[Row], order_by: str | None, descending: bool) -> list[Row]:
    if order_by is None:
        return list(rows)
    return sorted(rows, key=lambda row: row[order_by], reverse=descending)
