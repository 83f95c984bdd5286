"""Ports (interfaces) the core depends on.

The store and watcher only see these Protocols, so the local file system
adapter can be swapped for an in-memory one in tests or another host.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol


class FileEventKind(str, Enum):
    CREATED = "created"
    CHANGED = "changed"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    kind: FileEventKind
    path: str


FileEventCallback = Callable[[FileEvent], None]


class WatchHandle(Protocol):
    def dispose(self) -> None: ...


class PersistencePort(Protocol):
    """Read/write/watch access to task documents.

    Paths are strings; relative paths resolve against the adapter's root.
    ``watch`` callbacks are invoked on the event loop thread.
    """

    async def exists(self, path: str) -> bool: ...

    async def read(self, path: str) -> str: ...

    async def write(self, path: str, text: str) -> None: ...

    def watch(self, pattern: str, callback: FileEventCallback) -> WatchHandle: ...
