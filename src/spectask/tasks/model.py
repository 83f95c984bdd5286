"""Task and TaskFile data models shared by the codec, store, and watcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_PRIORITY = 99


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class TaskType(str, Enum):
    IMPLEMENT = "implement"
    TEST = "test"
    REFACTOR = "refactor"
    DOCUMENT = "document"
    REVIEW = "review"


def parent_id(task_id: str) -> str:
    """Return the id formed by dropping the last segment (``""`` at top level)."""
    head, sep, _ = task_id.rpartition(".")
    return head if sep else ""


def depth(task_id: str) -> int:
    return len(task_id.split("."))


@dataclass
class Task:
    id: str
    spec_id: str = ""
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    type: TaskType = TaskType.IMPLEMENT
    priority: int = DEFAULT_PRIORITY
    estimate: str = ""
    target_files: list[str] = field(default_factory=list)
    implements: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    # Not persisted in tasks.md; excluded from equality so parse(serialize(t)) == t.
    completed_at: datetime | None = field(default=None, compare=False)

    @property
    def parent_id(self) -> str:
        return parent_id(self.id)

    @property
    def depth(self) -> int:
        return depth(self.id)


@dataclass
class TaskPhase:
    """A `## Phase N: name` section and the ids of the tasks listed under it."""

    id: int
    name: str = ""
    task_ids: list[str] = field(default_factory=list)


@dataclass
class TaskFile:
    spec_id: str = ""
    feature_name: str = ""
    tasks: list[Task] = field(default_factory=list)
    # Empty for documents without phase headings.
    phases: list[TaskPhase] = field(default_factory=list)

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def index_of(self, task_id: str) -> int:
        for i, t in enumerate(self.tasks):
            if t.id == task_id:
                return i
        return -1

    def children(self, task_id: str) -> list[Task]:
        """Direct children: tasks whose id is *task_id* plus exactly one segment."""
        return [t for t in self.tasks if t.id != task_id and parent_id(t.id) == task_id]

    def is_parent(self, task_id: str) -> bool:
        return any(parent_id(t.id) == task_id for t in self.tasks if t.id != task_id)

    def phase_of(self, task_id: str) -> TaskPhase | None:
        for phase in self.phases:
            if task_id in phase.task_ids:
                return phase
        return None

    def pending_ids(self) -> list[str]:
        return [t.id for t in self.tasks if t.status == TaskStatus.PENDING]

    def summary(self) -> TaskSummary:
        return TaskSummary(
            total=len(self.tasks),
            done=sum(1 for t in self.tasks if t.status == TaskStatus.DONE),
            in_progress=sum(1 for t in self.tasks if t.status == TaskStatus.IN_PROGRESS),
            blocked=sum(1 for t in self.tasks if t.status == TaskStatus.BLOCKED),
        )

    def is_complete(self) -> bool:
        """True when there is at least one task and every task is done or skipped."""
        return bool(self.tasks) and all(
            t.status in (TaskStatus.DONE, TaskStatus.SKIPPED) for t in self.tasks
        )


@dataclass(frozen=True)
class TaskSummary:
    total: int = 0
    done: int = 0
    in_progress: int = 0
    blocked: int = 0
