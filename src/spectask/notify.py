"""Desktop notifications (toast + sound), best-effort, and a bus subscriber using them."""

from __future__ import annotations

import subprocess
import sys

from spectask.events import ChangeType, EventBus, Subscription, TaskChangeEvent


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, OSError):
        pass


def send_toast(title: str, message: str) -> None:
    """Show a desktop notification on macOS, Linux, or Windows."""
    if sys.platform == "darwin":
        _run_quiet(
            "osascript", "-e",
            f'display notification "{message}" with title "{title}"',
        )
    elif sys.platform.startswith("linux"):
        _run_quiet("notify-send", title, message)
    elif sys.platform == "win32":
        _run_quiet(
            "powershell.exe", "-Command",
            "[System.Media.SystemSounds]::Asterisk.Play()",
        )


class DesktopNotifier:
    """Toasts once per spec when every task reaches done (or skipped).

    The flag resets when the spec falls back to incomplete, so finishing it
    again notifies again.
    """

    def __init__(self, toast=send_toast) -> None:
        self._toast = toast
        self._complete: set[str] = set()
        self._sub: Subscription | None = None

    def attach(self, bus: EventBus, spec_id: str | None = None) -> Subscription:
        self._sub = bus.subscribe(self, spec_id)
        return self._sub

    def detach(self) -> None:
        if self._sub is not None:
            self._sub.close()
            self._sub = None

    def __call__(self, event: TaskChangeEvent) -> None:
        if event.type == ChangeType.DELETED:
            self._complete.discard(event.spec_id)
            return
        tf = event.task_file
        if tf is None:
            return
        if tf.is_complete():
            if event.spec_id not in self._complete:
                self._complete.add(event.spec_id)
                self._toast("spectask", f"All {len(tf.tasks)} tasks of {event.spec_id} are done")
        else:
            self._complete.discard(event.spec_id)
