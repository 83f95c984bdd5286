"""Shared fixtures for spectask tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Store/watcher tests run against the in-memory port in tests/fakes.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from spectask import log as glog
from spectask.config import Config
from spectask.events import EventBus, TaskChangeEvent
from spectask.store import TaskStore
from spectask.tasks.model import Task, TaskFile, TaskStatus, TaskType
from spectask.watcher import TaskFileWatcher

from .fakes import InMemoryFileSystem

SPEC = "user-auth"
SPEC_PATH = f".spec/specs/{SPEC}/tasks.md"

# Small window keeps the async tests fast; the burst test uses 300 ms.
TEST_DEBOUNCE_MS = 60


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for tests that drive a real watchdog observer."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _quiet_log():
    """``-v`` in a CLI test must not leak verbose output into later tests."""
    yield
    glog.set_verbose(False)


def _make_task(
    id: str,
    title: str = "",
    status: TaskStatus = TaskStatus.PENDING,
    priority: int = 99,
    depends_on: list[str] | None = None,
    type: TaskType = TaskType.IMPLEMENT,
    spec_id: str = SPEC,
) -> Task:
    return Task(
        id=id,
        spec_id=spec_id,
        title=title or f"Task {id}",
        status=status,
        type=type,
        priority=priority,
        depends_on=depends_on or [],
    )


def _make_task_file(tasks: list[Task], spec_id: str = SPEC) -> TaskFile:
    return TaskFile(spec_id=spec_id, feature_name=spec_id, tasks=tasks)


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_task_file():
    """Factory fixture that creates TaskFile instances."""
    return _make_task_file


@pytest.fixture
def cfg(tmp_path: Path) -> Config:
    return Config(root=str(tmp_path), debounce_ms=TEST_DEBOUNCE_MS)


@pytest.fixture
def port() -> InMemoryFileSystem:
    return InMemoryFileSystem()


@pytest.fixture
def store(port: InMemoryFileSystem, cfg: Config) -> TaskStore:
    return TaskStore(port, cfg)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> list[TaskChangeEvent]:
    """Every event published on ``bus``, in order."""
    seen: list[TaskChangeEvent] = []
    bus.subscribe(seen.append)
    return seen


@pytest.fixture
def watcher(store: TaskStore, bus: EventBus, cfg: Config):
    w = TaskFileWatcher(store, bus, cfg)
    w.start()
    yield w
    w.dispose()
