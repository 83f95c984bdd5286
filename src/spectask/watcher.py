"""Task file watcher: debounced change detection and typed change events.

Per spec id the watcher moves through ``idle -> debouncing -> processing ->
idle``. Raw file events restart the spec's debounce window; when the window
expires the document is re-parsed and its fingerprint (every ``id:status``
pair in document order) is compared with the last one seen. Only a changed
fingerprint reaches the event bus.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from spectask import log
from spectask.config import Config
from spectask.debounce import KeyedDebouncer
from spectask.events import ChangeType, EventBus, TaskChangeEvent
from spectask.ports import FileEvent, FileEventKind, PersistencePort, WatchHandle
from spectask.scheduler import next_task
from spectask.store import TaskStore
from spectask.tasks.model import Task, TaskFile, TaskStatus

FINGERPRINT_SEPARATOR = "|"

# Status cycle used by toggle; blocked/skipped restart at pending.
TOGGLE_CYCLE = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.DONE)

_KIND_TO_CHANGE = {
    FileEventKind.CREATED: ChangeType.CREATED,
    FileEventKind.CHANGED: ChangeType.UPDATED,
    FileEventKind.DELETED: ChangeType.DELETED,
}


class WatchState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    PROCESSING = "processing"


def fingerprint(tf: TaskFile) -> str:
    return FINGERPRINT_SEPARATOR.join(f"{t.id}:{t.status.value}" for t in tf.tasks)


class TaskFileWatcher:
    """Watches every spec's task document and publishes changes on *bus*.

    Usage::

        watcher = TaskFileWatcher(store, bus)
        watcher.start()                 # register with the persistence port
        ch = bus.channel("my-spec")     # or bus.subscribe(callback)
        async for event in ch: ...
        await watcher.aclose()
    """

    def __init__(
        self,
        store: TaskStore,
        bus: EventBus | None = None,
        cfg: Config | None = None,
        port: PersistencePort | None = None,
    ) -> None:
        self.store = store
        self.bus = bus if bus is not None else EventBus()
        self.config = cfg or store.config
        self.port = port or store.port

        self._debouncer = KeyedDebouncer(self.config.debounce_seconds)
        self._fingerprints: dict[str, str] = {}
        self._pending_change: dict[str, ChangeType] = {}
        self._processing: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._watch: WatchHandle | None = None
        self._disposed = False

    # ── lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """Register with the persistence port. Must run inside the event loop."""
        if self._disposed:
            raise RuntimeError("watcher has been disposed")
        if self._watch is None:
            self._watch = self.port.watch(self.config.watch_pattern, self.handle_file_event)
            log.debug(f"Watcher started on {self.config.watch_pattern}")

    def dispose(self) -> None:
        """Stop watching and cancel pending windows.

        A processing step already running finishes, but its event is dropped.
        """
        if self._disposed:
            return
        self._disposed = True
        if self._watch is not None:
            self._watch.dispose()
            self._watch = None
        cancelled = self._debouncer.cancel_all()
        self._debouncer.close()
        self._pending_change.clear()
        log.debug(f"Watcher disposed ({cancelled} pending windows cancelled)")

    async def aclose(self) -> None:
        """Dispose and wait for in-flight processing to finish."""
        self.dispose()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ── introspection ────────────────────────────────────────────────

    def state(self, spec_id: str) -> WatchState:
        if spec_id in self._processing:
            return WatchState.PROCESSING
        if self._debouncer.is_pending(spec_id):
            return WatchState.DEBOUNCING
        return WatchState.IDLE

    def last_fingerprint(self, spec_id: str) -> str | None:
        return self._fingerprints.get(spec_id)

    # ── raw events ───────────────────────────────────────────────────

    def handle_file_event(self, event: FileEvent) -> None:
        """Port callback: map a raw file event to its spec and debounce it."""
        if self._disposed:
            return
        spec_id = self.store.spec_id_for(event.path)
        if spec_id is None:
            return
        self.notify_change(spec_id, _KIND_TO_CHANGE[FileEventKind(event.kind)])

    def notify_change(self, spec_id: str, change: ChangeType) -> None:
        """(Re)start the debounce window for *spec_id*; the latest change kind wins."""
        if self._disposed:
            return
        self._pending_change[spec_id] = change
        self._debouncer.schedule(spec_id, lambda: self._window_expired(spec_id))

    def _window_expired(self, spec_id: str) -> None:
        change = self._pending_change.pop(spec_id, ChangeType.UPDATED)
        if self._disposed:
            return
        task = asyncio.get_running_loop().create_task(self._process(spec_id, change))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _lock(self, spec_id: str) -> asyncio.Lock:
        lock = self._locks.get(spec_id)
        if lock is None:
            lock = self._locks[spec_id] = asyncio.Lock()
        return lock

    async def _process(self, spec_id: str, change: ChangeType) -> None:
        async with self._lock(spec_id):
            self._processing.add(spec_id)
            try:
                await self._detect(spec_id, change)
            except Exception as exc:
                log.exception("Error processing task file change", exc, spec_id)
            finally:
                self._processing.discard(spec_id)

    async def _detect(self, spec_id: str, change: ChangeType) -> None:
        if change == ChangeType.DELETED:
            self._fingerprints.pop(spec_id, None)
            self.store.cache.invalidate(spec_id)
            self._emit(TaskChangeEvent(spec_id, ChangeType.DELETED))
            return

        tf = await self.store.reload(spec_id)
        if tf is None or not tf.tasks:
            # Missing or briefly empty mid-write; the next event will catch up.
            log.debug("Document empty or missing, skipping", spec_id)
            return

        current = fingerprint(tf)
        if self._fingerprints.get(spec_id) == current:
            log.debug("No status changes, event suppressed", spec_id)
            return
        self._fingerprints[spec_id] = current
        self._emit(TaskChangeEvent(spec_id, change, task_file=tf))

    def _emit(self, event: TaskChangeEvent) -> None:
        if self._disposed:
            log.debug(f"Dropping {event.type.value} event after dispose", event.spec_id)
            return
        self.bus.publish(event)

    # ── commands ─────────────────────────────────────────────────────

    async def update_task_status(self, spec_id: str, task_id: str, status: TaskStatus | str) -> bool:
        """Persist a status change and publish ``statusChanged``.

        Returns ``False`` when the task does not exist, the status is not
        part of the vocabulary, or the write fails. Runs under the same
        per-spec lock as change processing, so an in-flight pass finishes
        (and publishes) before the write starts.
        """
        async with self._lock(spec_id):
            return await self._apply_status(spec_id, task_id, status)

    async def _apply_status(self, spec_id: str, task_id: str, status: TaskStatus | str) -> bool:
        try:
            task = await self.store.update_task_status(spec_id, task_id, status)
        except OSError as exc:
            log.exception(f"Could not update task {task_id}", exc, spec_id)
            return False
        if task is None:
            return False

        tf = await self.store.get_task_file(spec_id)
        if tf is not None:
            # The write echoes back as a file event; matching fingerprint suppresses it.
            self._fingerprints[spec_id] = fingerprint(tf)
        self._emit(TaskChangeEvent(spec_id, ChangeType.STATUS_CHANGED, task_id=task_id, task_file=tf))
        return True

    async def toggle_task_status(self, spec_id: str, task_id: str) -> TaskStatus | None:
        """Advance a task along pending -> in-progress -> done -> pending."""
        async with self._lock(spec_id):
            task = await self.store.get_task(spec_id, task_id)
            if task is None:
                return None
            try:
                idx = TOGGLE_CYCLE.index(task.status)
            except ValueError:
                idx = -1
            new_status = TOGGLE_CYCLE[(idx + 1) % len(TOGGLE_CYCLE)]
            if not await self._apply_status(spec_id, task_id, new_status):
                return None
            return new_status

    async def refresh(self, spec_id: str) -> TaskFile | None:
        """Re-read *spec_id* and publish ``updated`` unconditionally."""
        async with self._lock(spec_id):
            tf = await self.store.reload(spec_id)
            if tf is not None:
                self._fingerprints[spec_id] = fingerprint(tf)
                self._emit(TaskChangeEvent(spec_id, ChangeType.UPDATED, task_file=tf))
            return tf

    async def get_task_file(self, spec_id: str) -> TaskFile | None:
        return await self.store.get_task_file(spec_id)

    async def get_next_task(self, spec_id: str) -> Task | None:
        tf = await self.store.get_task_file(spec_id)
        return next_task(tf) if tf else None
