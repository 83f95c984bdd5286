"""Logging helpers with colored output via Rich.

Every helper accepts an optional ``spec`` so messages coming from the
per-spec watcher pipeline can be told apart.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.traceback import Traceback

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def _scoped(msg: str, spec: str | None) -> str:
    text = escape(msg)
    if spec:
        return f"[cyan]{escape(spec)}[/cyan] {text}"
    return text


def info(msg: str, spec: str | None = None) -> None:
    console.print(f"[blue]\\[INFO][/blue] {_scoped(msg, spec)}")


def success(msg: str, spec: str | None = None) -> None:
    console.print(f"[green]\\[OK][/green] {_scoped(msg, spec)}")


def warn(msg: str, spec: str | None = None) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {_scoped(msg, spec)}")


def error(msg: str, spec: str | None = None) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {_scoped(msg, spec)}")


def exception(msg: str, exc: BaseException, spec: str | None = None) -> None:
    """Report *exc* as an error; the traceback is shown only in verbose mode."""
    error(f"{msg}: {exc}", spec)
    if _verbose:
        _err_console.print(Traceback.from_exception(type(exc), exc, exc.__traceback__))


def debug(msg: str, spec: str | None = None) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {_scoped(msg, spec)}[/dim]")
