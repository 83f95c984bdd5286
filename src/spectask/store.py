"""Task store: per-spec TaskFile cache backed by the persistence port."""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path, PurePosixPath

from spectask import log
from spectask.config import Config
from spectask.ports import PersistencePort
from spectask.scheduler import next_task, propagate_completion, set_status
from spectask.tasks.codec import parse_task_file, serialize_task_file
from spectask.tasks.model import Task, TaskFile, TaskStatus


class TaskFileCache:
    """Parsed TaskFiles keyed by spec id. Entries are replaced, never patched."""

    def __init__(self) -> None:
        self._files: dict[str, TaskFile] = {}

    def get(self, spec_id: str) -> TaskFile | None:
        return self._files.get(spec_id)

    def put(self, spec_id: str, tf: TaskFile) -> None:
        self._files[spec_id] = tf

    def invalidate(self, spec_id: str | None = None) -> None:
        """Drop one entry, or every entry when *spec_id* is ``None``."""
        if spec_id is None:
            self._files.clear()
        else:
            self._files.pop(spec_id, None)

    def spec_ids(self) -> list[str]:
        return list(self._files)

    def __contains__(self, spec_id: object) -> bool:
        return spec_id in self._files

    def __len__(self) -> int:
        return len(self._files)


class TaskStore:
    """Loads, queries, and mutates the task collections of every spec."""

    def __init__(
        self,
        port: PersistencePort,
        cfg: Config | None = None,
        cache: TaskFileCache | None = None,
    ) -> None:
        self.port = port
        self.config = cfg or Config()
        self.cache = cache if cache is not None else TaskFileCache()
        self._locks: dict[str, asyncio.Lock] = {}

    # ── location ─────────────────────────────────────────────────────

    def path_for(self, spec_id: str) -> str:
        """Document path for *spec_id*, relative to the port root."""
        return f"{self.config.specs_dir.rstrip('/')}/{spec_id}/{self.config.tasks_filename}"

    def spec_id_for(self, path: str) -> str | None:
        """Inverse of :meth:`path_for`; ``None`` for paths that are not task documents."""
        p = PurePosixPath(Path(path).as_posix())
        if p.name != self.config.tasks_filename:
            return None
        specs = PurePosixPath(self.config.specs_dir).parts
        above = p.parent.parent.parts
        if len(above) < len(specs) or tuple(above[len(above) - len(specs):]) != specs:
            return None
        return p.parent.name or None

    def _lock(self, spec_id: str) -> asyncio.Lock:
        lock = self._locks.get(spec_id)
        if lock is None:
            lock = self._locks[spec_id] = asyncio.Lock()
        return lock

    # ── loading ──────────────────────────────────────────────────────

    async def _load(self, spec_id: str) -> TaskFile | None:
        path = self.path_for(spec_id)
        if not await self.port.exists(path):
            return None
        text = await self.port.read(path)
        tf = parse_task_file(text, spec_id)
        log.debug(f"Parsed {len(tf.tasks)} tasks from {path}", spec_id)
        return tf

    def _carry_completion(self, spec_id: str, tf: TaskFile) -> None:
        """Keep completion timestamps known from the cached copy (they are not persisted)."""
        prev = self.cache.get(spec_id)
        if prev is None:
            return
        for t in tf.tasks:
            old = prev.get_task(t.id)
            if old is not None and old.status == t.status == TaskStatus.DONE:
                t.completed_at = old.completed_at

    async def get_task_file(self, spec_id: str) -> TaskFile | None:
        """Cached TaskFile for *spec_id*, parsing it on first use.

        Returns ``None`` when no document exists. Read errors propagate and
        leave the cache without an entry.
        """
        cached = self.cache.get(spec_id)
        if cached is not None:
            return cached
        async with self._lock(spec_id):
            # Another caller may have filled the entry while we waited.
            cached = self.cache.get(spec_id)
            if cached is not None:
                return cached
            tf = await self._load(spec_id)
            if tf is not None:
                self.cache.put(spec_id, tf)
            return tf

    async def reload(self, spec_id: str) -> TaskFile | None:
        """Re-parse *spec_id* from the port and replace the cached entry.

        Serialized with :meth:`update_task_status`, so a read taken before a
        status write can never replace the entry that write produced.
        """
        async with self._lock(spec_id):
            tf = await self._load(spec_id)
            if tf is None:
                self.cache.invalidate(spec_id)
                return None
            self._carry_completion(spec_id, tf)
            self.cache.put(spec_id, tf)
            return tf

    # ── queries ──────────────────────────────────────────────────────

    async def list_tasks(self, spec_id: str) -> list[Task]:
        tf = await self.get_task_file(spec_id)
        return list(tf.tasks) if tf else []

    async def get_task(self, spec_id: str, task_id: str) -> Task | None:
        tf = await self.get_task_file(spec_id)
        return tf.get_task(task_id) if tf else None

    async def get_next_task(self, spec_id: str) -> Task | None:
        tf = await self.get_task_file(spec_id)
        return next_task(tf) if tf else None

    # ── mutation ─────────────────────────────────────────────────────

    async def update_task_status(
        self,
        spec_id: str,
        task_id: str,
        status: TaskStatus | str,
    ) -> Task | None:
        """Set a task's status, propagate parent completion, and persist.

        The document is re-read first so edits made outside this process are
        not overwritten. Changes are applied to a copy that replaces the
        cached TaskFile only after the write succeeds.

        Returns the updated task, or ``None`` if the spec or task does not
        exist, or if *status* is not a known status string.
        """
        try:
            new_status = TaskStatus(status)
        except ValueError:
            log.warn(f"Unknown status {status!r} for task {task_id}", spec_id)
            return None

        async with self._lock(spec_id):
            current = await self._load(spec_id)
            if current is None:
                log.debug(f"No task document for {spec_id}", spec_id)
                self.cache.invalidate(spec_id)
                return None

            self._carry_completion(spec_id, current)
            draft = copy.deepcopy(current)
            task = draft.get_task(task_id)
            if task is None:
                log.debug(f"Task {task_id} not found", spec_id)
                self.cache.put(spec_id, current)
                return None

            set_status(task, new_status)
            promoted = propagate_completion(draft)

            try:
                await self.port.write(self.path_for(spec_id), serialize_task_file(draft))
            except OSError as exc:
                log.error(f"Failed to write {self.path_for(spec_id)}: {exc}", spec_id)
                raise

            self.cache.put(spec_id, draft)

        log.debug(f"Task {task_id} -> {new_status.value}", spec_id)
        for pid in promoted:
            log.info(f"Task {pid} completed (all subtasks done)", spec_id)
        return task
