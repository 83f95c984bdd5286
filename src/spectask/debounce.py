"""Per-key debounce timers on the asyncio event loop."""

from __future__ import annotations

import asyncio
from typing import Callable, Hashable


class KeyedDebouncer:
    """One restartable timer per key.

    ``schedule(key, fn)`` (re)starts the window for *key*; *fn* runs once
    the window elapses with no further ``schedule`` for that key. Keys are
    independent of each other.
    """

    def __init__(self, delay: float) -> None:
        self.delay = max(0.0, delay)
        self._handles: dict[Hashable, asyncio.TimerHandle] = {}
        self._closed = False

    def schedule(self, key: Hashable, fn: Callable[[], None]) -> None:
        if self._closed:
            return
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(self.delay, self._fire, key, fn)

    def _fire(self, key: Hashable, fn: Callable[[], None]) -> None:
        self._handles.pop(key, None)
        fn()

    def cancel(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        return count

    def close(self) -> None:
        """Cancel everything and refuse further scheduling."""
        self.cancel_all()
        self._closed = True

    def is_pending(self, key: Hashable) -> bool:
        return key in self._handles

    def pending_keys(self) -> list[Hashable]:
        return list(self._handles)
