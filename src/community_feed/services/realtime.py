"""Realtime change events and the in-process broker that fans them out.

A data store publishes one :class:`ChangeEvent` per row change; subscribers
register a callback per table with optional equality filters and get back a
:class:`Subscription` that must be released explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Any

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Row change kinds emitted by the realtime feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One row change. ``new`` is empty for deletes, ``old`` for inserts."""

    table: str
    type: ChangeType
    new: Mapping[str, Any] = field(default_factory=dict)
    old: Mapping[str, Any] = field(default_factory=dict)

    @property
    def record(self) -> Mapping[str, Any]:
        """Return the row image that identifies the changed record."""
        return self.old if self.type is ChangeType.DELETE else self.new

    def matches(self, filters: Mapping[str, Any] | None) -> bool:
        if not filters:
            return True
        record = self.record
        return all(str(record.get(column)) == str(value) for column, value in filters.items())


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription:
    """Handle for one realtime subscription; release it with :meth:`close`."""

    def __init__(self, release: Callable[[], None], *, table: str) -> None:
        self.table = table
        self._release: Callable[[], None] | None = release

    def close(self) -> None:
        if self._release is None:
            return
        release, self._release = self._release, None
        release()


@dataclass
class _Listener:
    table: str
    handler: ChangeHandler
    filters: Mapping[str, Any] | None


class ChangeFeed:
    """Process-local broker between a change source and its subscribers."""

    def __init__(self) -> None:
        self._listeners: dict[int, _Listener] = {}
        self._ids = count(1)

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filters: Mapping[str, Any] | None = None,
    ) -> Subscription:
        listener_id = next(self._ids)
        self._listeners[listener_id] = _Listener(table, handler, dict(filters or {}))
        logger.debug("Subscribed #%s to %s (filters=%s)", listener_id, table, filters)
        return Subscription(lambda: self._listeners.pop(listener_id, None), table=table)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to every matching subscriber, in subscription order."""
        for listener in list(self._listeners.values()):
            if listener.table == event.table and event.matches(listener.filters):
                listener.handler(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)
