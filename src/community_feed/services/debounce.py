"""Per-key trailing-edge debouncer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class KeyedDebouncer:
    """Coalesces bursts of triggers per key into one callback invocation.

    Each :meth:`trigger` restarts that key's timer; the callback runs once,
    ``delay`` seconds after the last trigger for the key.
    """

    def __init__(self, delay: float, callback: Callable[[str], Awaitable[None]]) -> None:
        self.delay = max(0.0, float(delay))
        self._callback = callback
        self._timers: dict[str, asyncio.Task[None]] = {}

    def trigger(self, key: str) -> None:
        timer = self._timers.get(key)
        if timer is not None and not timer.done():
            timer.cancel()
        self._timers[key] = asyncio.create_task(self._fire_later(key))

    def pending(self, key: str) -> bool:
        timer = self._timers.get(key)
        return timer is not None and not timer.done()

    async def flush(self) -> None:
        """Wait for every scheduled callback to finish."""
        while self._timers:
            await asyncio.gather(*self._timers.values(), return_exceptions=True)
            self._timers = {k: t for k, t in self._timers.items() if not t.done()}

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    async def _fire_later(self, key: str) -> None:
        await asyncio.sleep(self.delay)
        current = asyncio.current_task()
        if self._timers.get(key) is current:
            del self._timers[key]
        try:
            await self._callback(key)
        except Exception:
            logger.exception("Debounced callback for %s failed", key)
