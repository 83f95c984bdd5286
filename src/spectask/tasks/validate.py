"""Structural validation and dependency-graph helpers for a TaskFile."""

from __future__ import annotations

from dataclasses import dataclass, field

from spectask import log
from spectask.tasks.codec import is_valid_task_id
from spectask.tasks.model import TaskFile


@dataclass
class DependencyGraph:
    nodes: list[tuple[str, str, str]] = field(default_factory=list)  # (id, label, status)
    edges: list[tuple[str, str]] = field(default_factory=list)  # (dependency, dependent)


def dependency_graph(tf: TaskFile) -> DependencyGraph:
    """Nodes in document order; one edge per ``depends_on`` entry."""
    graph = DependencyGraph()
    for t in tf.tasks:
        graph.nodes.append((t.id, f"{t.id}: {t.title}", t.status.value))
        for dep in t.depends_on:
            graph.edges.append((dep, t.id))
    return graph


def find_cycles(tf: TaskFile) -> list[list[str]]:
    """Return dependency cycles, each as a path that starts and ends on the same id."""
    deps = {t.id: t.depends_on for t in tf.tasks}
    cycles: list[list[str]] = []
    visited: set[str] = set()

    def dfs(tid: str, path: list[str], on_path: set[str]) -> None:
        visited.add(tid)
        on_path.add(tid)
        path.append(tid)
        for dep in deps.get(tid, []):
            if dep not in deps:
                continue
            if dep in on_path:
                start = path.index(dep)
                cycles.append(path[start:] + [dep])
            elif dep not in visited:
                dfs(dep, path, on_path)
        path.pop()
        on_path.discard(tid)

    for t in tf.tasks:
        if t.id not in visited:
            dfs(t.id, [], set())
    return cycles


def detect_cycles(tf: TaskFile) -> str:
    """Return a human-readable description of the first cycle, or ``""``."""
    cycles = find_cycles(tf)
    if not cycles:
        return ""
    return " -> ".join(cycles[0])


def validate(tf: TaskFile) -> list[str]:
    """Return a list of problems; an empty list means the file is well formed.

    Dangling and malformed ``Depends On`` entries are reported here even
    though selection tolerates them (the task just never becomes actionable).
    """
    errors: list[str] = []
    if not tf.tasks:
        errors.append("No tasks found")
        return errors

    ids = {t.id for t in tf.tasks}
    for t in tf.tasks:
        if not t.title:
            errors.append(f"Task {t.id}: missing title")
        for dep in t.depends_on:
            if not is_valid_task_id(dep):
                errors.append(f"Task {t.id}: malformed dependency id '{dep}'")
            elif dep not in ids:
                errors.append(f"Task {t.id}: depends on unknown task '{dep}'")
            elif dep == t.id:
                errors.append(f"Task {t.id}: depends on itself")

    cycle = detect_cycles(tf)
    if cycle:
        errors.append(f"Dependency cycle: {cycle}")
    return errors


def validate_and_report(tf: TaskFile) -> bool:
    """Validate and log each problem. Return ``True`` if the file is valid."""
    errors = validate(tf)
    for err in errors:
        log.error(err, tf.spec_id)
    if not errors:
        log.success(f"{len(tf.tasks)} tasks valid", tf.spec_id)
    return not errors
