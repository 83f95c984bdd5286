"""Dependency-aware task selection and parent completion propagation."""

from __future__ import annotations

from datetime import datetime, timezone

from spectask import log
from spectask.tasks.model import Task, TaskFile, TaskStatus, depth, parent_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── dependency checks ────────────────────────────────────────────────


def unmet_dependencies(task: Task, tf: TaskFile) -> list[str]:
    """Dependency ids that do not resolve to a ``done`` task.

    An id that resolves to no task at all (absent or malformed) is unmet
    forever, which keeps the dependent task out of selection.
    """
    unmet: list[str] = []
    for dep in task.depends_on:
        other = tf.get_task(dep)
        if other is None or other.status != TaskStatus.DONE:
            unmet.append(dep)
    return unmet


def deps_satisfied(task: Task, tf: TaskFile) -> bool:
    return not unmet_dependencies(task, tf)


def is_actionable(task: Task, tf: TaskFile) -> bool:
    return task.status == TaskStatus.PENDING and deps_satisfied(task, tf)


# ── selection ────────────────────────────────────────────────────────


def actionable_tasks(tf: TaskFile) -> list[Task]:
    """Actionable tasks ordered by priority, then document order."""
    ready = [(t.priority, i, t) for i, t in enumerate(tf.tasks) if is_actionable(t, tf)]
    ready.sort(key=lambda item: (item[0], item[1]))
    return [t for _, _, t in ready]


def next_task(tf: TaskFile) -> Task | None:
    ready = actionable_tasks(tf)
    return ready[0] if ready else None


# ── transitions ──────────────────────────────────────────────────────


def set_status(task: Task, status: TaskStatus) -> None:
    """Apply *status*; ``completed_at`` is stamped on entering ``done`` and cleared otherwise."""
    if status == TaskStatus.DONE:
        if task.status != TaskStatus.DONE or task.completed_at is None:
            task.completed_at = _now()
    else:
        task.completed_at = None
    task.status = status


def propagate_completion(tf: TaskFile) -> list[str]:
    """Mark parents ``done`` when all of their direct children are done.

    Parents are visited deepest first, so a chain of nested parents
    converges in a single call. Parents are never moved out of ``done``.
    Returns the promoted ids in the order they were promoted.
    """
    parent_ids = {parent_id(t.id) for t in tf.tasks if parent_id(t.id)}
    parents = [t for t in tf.tasks if t.id in parent_ids]
    parents.sort(key=lambda t: depth(t.id), reverse=True)

    promoted: list[str] = []
    for parent in parents:
        if parent.status == TaskStatus.DONE:
            continue
        children = tf.children(parent.id)
        if children and all(c.status == TaskStatus.DONE for c in children):
            set_status(parent, TaskStatus.DONE)
            promoted.append(parent.id)
            log.debug(f"Task {parent.id}: all children done -> done", tf.spec_id)
    return promoted


# ── diagnostics ──────────────────────────────────────────────────────


def explain_block(task: Task, tf: TaskFile) -> str:
    """Human-readable explanation of why *task* is not actionable ("" if it is)."""
    reasons: list[str] = []
    if task.status != TaskStatus.PENDING:
        reasons.append(f"status: {task.status.value}")

    blocked_deps = []
    for dep in unmet_dependencies(task, tf):
        other = tf.get_task(dep)
        if other is None:
            blocked_deps.append(f"{dep} (missing)")
        else:
            blocked_deps.append(f"{dep} ({other.status.value})")
    if blocked_deps:
        reasons.append(f"dependsOn: {' '.join(blocked_deps)}")

    return " ".join(reasons)
