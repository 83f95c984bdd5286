"""Configuration defaults, env vars, and runtime options for spectask."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path


VERSION = "0.3.0"

DEFAULT_SPECS_DIR = ".spec/specs"
DEFAULT_TASKS_FILENAME = "tasks.md"
DEFAULT_DEBOUNCE_MS = 300


@dataclass
class Config:
    """Runtime configuration shared by the store, watcher, and CLI."""

    # Layout: <root>/<specs_dir>/<spec_id>/<tasks_filename>
    root: str = ""
    specs_dir: str = ""
    tasks_filename: str = DEFAULT_TASKS_FILENAME

    # Watcher
    debounce_ms: int = 0

    # Client
    notify: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.root:
            self.root = str(resolve_repo_root())
        if not self.specs_dir:
            self.specs_dir = os.environ.get("SPECTASK_SPECS_DIR") or DEFAULT_SPECS_DIR
        if not self.debounce_ms:
            raw = os.environ.get("SPECTASK_DEBOUNCE_MS", "")
            try:
                self.debounce_ms = int(raw) if raw else DEFAULT_DEBOUNCE_MS
            except ValueError:
                self.debounce_ms = DEFAULT_DEBOUNCE_MS
        if self.debounce_ms < 0:
            self.debounce_ms = 0

    @property
    def root_path(self) -> Path:
        return Path(self.root)

    @property
    def specs_path(self) -> Path:
        return self.root_path / self.specs_dir

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def watch_pattern(self) -> str:
        """Glob (relative to root) matching every spec's task document."""
        return f"{self.specs_dir.rstrip('/')}/*/{self.tasks_filename}"


def resolve_repo_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
