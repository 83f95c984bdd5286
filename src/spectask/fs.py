"""Local file system adapter for the persistence port (asyncio + watchdog)."""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from spectask import log
from spectask.io_utils import read_text, write_text
from spectask.ports import FileEvent, FileEventCallback, FileEventKind

_GLOB_CHARS = set("*?[")


def _static_prefix(pattern: str) -> str:
    """Leading path segments of *pattern* that contain no glob characters."""
    parts: list[str] = []
    for part in PurePosixPath(pattern).parts:
        if _GLOB_CHARS & set(part):
            break
        parts.append(part)
    return "/".join(parts)


class _Handler(FileSystemEventHandler):
    """Filters watchdog events by pattern and hands them to the event loop."""

    def __init__(
        self,
        root: Path,
        pattern: str,
        callback: FileEventCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._root = root
        self._pattern = pattern
        self._callback = callback
        self._loop = loop
        self.disposed = False

    def _matches(self, path: str) -> str | None:
        try:
            rel = Path(path).resolve().relative_to(self._root)
        except ValueError:
            return None
        if PurePosixPath(rel.as_posix()).match(self._pattern):
            return str(Path(path))
        return None

    def _emit(self, kind: FileEventKind, path: str) -> None:
        if self.disposed:
            return
        matched = self._matches(path)
        if matched is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, FileEvent(kind, matched))
        except RuntimeError:
            # Loop already closed; nothing left to notify.
            self.disposed = True

    def _deliver(self, event: FileEvent) -> None:
        if not self.disposed:
            self._callback(event)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = str(event.src_path)
        match event.event_type:
            case "created":
                self._emit(FileEventKind.CREATED, src)
            case "modified":
                self._emit(FileEventKind.CHANGED, src)
            case "deleted":
                self._emit(FileEventKind.DELETED, src)
            case "moved":
                # Atomic writes land as a rename onto the target.
                self._emit(FileEventKind.DELETED, src)
                self._emit(FileEventKind.CHANGED, str(event.dest_path))
            case _:
                pass


class LocalWatch:
    """Watch handle owning one watchdog observer."""

    def __init__(self, observer: Observer, handler: _Handler) -> None:
        self._observer = observer
        self._handler = handler

    def dispose(self) -> None:
        if self._handler.disposed:
            return
        self._handler.disposed = True
        self._observer.stop()
        self._observer.join(timeout=2.0)


class LocalFileSystem:
    """PersistencePort backed by the local disk under *root*."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.resolve(path).is_file)

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(read_text, self.resolve(path))

    async def write(self, path: str, text: str) -> None:
        await asyncio.to_thread(write_text, self.resolve(path), text)

    def watch(self, pattern: str, callback: FileEventCallback) -> LocalWatch:
        """Watch files under root matching *pattern*; must be called inside the loop."""
        loop = asyncio.get_running_loop()
        base = self.root / _static_prefix(pattern)
        base.mkdir(parents=True, exist_ok=True)

        handler = _Handler(self.root, pattern, callback, loop)
        observer = Observer()
        observer.schedule(handler, str(base), recursive=True)
        observer.daemon = True
        observer.start()
        log.debug(f"Watching {base} for {pattern}")
        return LocalWatch(observer, handler)
