"""Process-local data and blob stores.

These implement the backend contracts without a network and publish every
row change through a :class:`ChangeFeed`, so the feed can run against them in
tests and local simulations exactly as it runs against the hosted platform.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from community_feed.services.backend import Filters, Row, matches_filters, ordered
from community_feed.services.errors import BlobStoreError
from community_feed.services.realtime import (
    ChangeEvent,
    ChangeFeed,
    ChangeHandler,
    ChangeType,
    Subscription,
)

logger = logging.getLogger(__name__)


class InMemoryDataStore:
    """Dict-of-lists table store with realtime publication."""

    def __init__(self, change_feed: ChangeFeed | None = None) -> None:
        self.change_feed = change_feed or ChangeFeed()
        self._tables: dict[str, list[Row]] = defaultdict(list)

    def seed(self, table: str, rows: list[Mapping[str, Any]]) -> list[Row]:
        """Load rows without publishing change events."""
        stored = [self._prepare(row) for row in rows]
        self._tables[table].extend(stored)
        return copy.deepcopy(stored)

    def rows(self, table: str) -> list[Row]:
        return copy.deepcopy(self._tables[table])

    async def select(
        self,
        table: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        matched = [row for row in self._tables[table] if matches_filters(row, filters)]
        return copy.deepcopy(ordered(matched, order_by, descending))

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        row = self._prepare(values)
        self._tables[table].append(row)
        self._publish(ChangeEvent(table=table, type=ChangeType.INSERT, new=copy.deepcopy(row)))
        return copy.deepcopy(row)

    async def upsert(
        self, table: str, values: Mapping[str, Any], *, on_conflict: Sequence[str]
    ) -> Row:
        key = {column: values.get(column) for column in on_conflict}
        if any(matches_filters(row, key) for row in self._tables[table]):
            updated = await self.update(table, values, filters=key)
            return updated[0]
        return await self.insert(table, values)

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Filters) -> list[Row]:
        updated: list[Row] = []
        for row in self._tables[table]:
            if not matches_filters(row, filters):
                continue
            old = copy.deepcopy(row)
            row.update(copy.deepcopy(dict(values)))
            updated.append(copy.deepcopy(row))
            self._publish(
                ChangeEvent(table=table, type=ChangeType.UPDATE, new=copy.deepcopy(row), old=old)
            )
        return updated

    async def delete(self, table: str, *, filters: Filters) -> list[Row]:
        kept: list[Row] = []
        removed: list[Row] = []
        for row in self._tables[table]:
            (removed if matches_filters(row, filters) else kept).append(row)
        self._tables[table] = kept
        for row in removed:
            self._publish(ChangeEvent(table=table, type=ChangeType.DELETE, old=copy.deepcopy(row)))
        return copy.deepcopy(removed)

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filters: Filters | None = None,
    ) -> Subscription:
        return self.change_feed.subscribe(table, handler, filters=filters)

    def _prepare(self, values: Mapping[str, Any]) -> Row:
        row = copy.deepcopy(dict(values))
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", datetime.now(UTC))
        return row

    def _publish(self, event: ChangeEvent) -> None:
        logger.debug("%s %s", event.type.value, event.table)
        self.change_feed.publish(event)


class InMemoryBlobStore:
    """Bucket/path keyed object store returning ``memory://`` URLs."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> str:
        key = (bucket, path)
        if key in self.objects and not upsert:
            raise BlobStoreError(f"Object {bucket}/{path} already exists")
        self.objects[key] = (bytes(data), content_type)
        return self.public_url(bucket, path)

    @staticmethod
    def public_url(bucket: str, path: str) -> str:
        return f"memory://{bucket}/{path}"
