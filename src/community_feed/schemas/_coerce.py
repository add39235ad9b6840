"""Shared coercion helpers for backend row decoding."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def stringify_id(value: Any) -> Any:
    """Return integer identifiers as strings; leave everything else alone."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so rows from any source compare cleanly."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
