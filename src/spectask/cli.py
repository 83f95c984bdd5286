"""spectask CLI: inspect, update, and watch spec task files.

Installed as ``spectask`` console_script via pipx / pip.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click
from rich.table import Table

from spectask import __version__
from spectask import log as glog
from spectask.config import Config
from spectask.events import EventBus, TaskChangeEvent
from spectask.fs import LocalFileSystem
from spectask.scheduler import actionable_tasks, explain_block, next_task
from spectask.store import TaskStore
from spectask.tasks.model import Task, TaskFile, TaskStatus
from spectask.watcher import TaskFileWatcher

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

STATUS_CHOICES = [s.value for s in TaskStatus]

_STATUS_STYLE = {
    TaskStatus.PENDING: "white",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.DONE: "green",
    TaskStatus.BLOCKED: "red",
    TaskStatus.SKIPPED: "dim",
}


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--root", default="", help="Project root (default: git top-level or cwd)")
@click.option("--specs-dir", default="", help="Spec directory relative to root (default: .spec/specs)")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="spectask")
@click.pass_context
def main(ctx: click.Context, root: str, specs_dir: str, verbose: bool) -> None:
    """spectask — keep tasks.md in sync and pick the next task.

    \b
    EXAMPLES:
      spectask list user-auth                 # Show all tasks of a spec
      spectask next user-auth                 # Next actionable task
      spectask start user-auth 1.2            # Mark 1.2 in-progress
      spectask done user-auth 1.2             # Mark 1.2 done (parents may follow)
      spectask watch --notify                 # Stream changes from every spec
    """
    glog.set_verbose(verbose)
    ctx.obj = Config(root=root, specs_dir=specs_dir, verbose=verbose)


def _store(cfg: Config) -> TaskStore:
    return TaskStore(LocalFileSystem(cfg.root), cfg)


def _load_or_exit(store: TaskStore, spec_id: str) -> TaskFile:
    try:
        tf = asyncio.run(store.get_task_file(spec_id))
    except OSError as exc:
        glog.error(f"Could not read {store.path_for(spec_id)}: {exc}")
        sys.exit(1)
    if tf is None:
        glog.error(f"No task file for spec '{spec_id}' ({store.path_for(spec_id)})")
        sys.exit(1)
    return tf


def _status_markup(status: TaskStatus) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _describe(task: Task) -> str:
    return f"[bold]{task.id}[/bold] {task.title} (priority {task.priority}, {task.type.value})"


# ── Subcommand: list ─────────────────────────────────────────────────


@main.command(name="list")
@click.argument("spec_id")
@click.pass_obj
def list_tasks(cfg: Config, spec_id: str) -> None:
    """Show every task of SPEC_ID in document order."""
    tf = _load_or_exit(_store(cfg), spec_id)

    table = Table(title=tf.feature_name, show_lines=False)
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Status", no_wrap=True)
    table.add_column("Type", no_wrap=True)
    table.add_column("Pri", justify="right")
    table.add_column("Depends On")

    for t in tf.tasks:
        indent = "  " * (t.depth - 1)
        table.add_row(
            f"{indent}{t.id}",
            t.title,
            _status_markup(t.status),
            t.type.value,
            str(t.priority),
            ", ".join(t.depends_on),
        )
    glog.console.print(table)

    s = tf.summary()
    glog.console.print(
        f"Total: {s.total} | Done: {s.done} | In Progress: {s.in_progress} | Blocked: {s.blocked}"
    )


# ── Subcommand: next ─────────────────────────────────────────────────


@main.command(name="next")
@click.argument("spec_id")
@click.option("--all", "show_all", is_flag=True, help="List every actionable task in order")
@click.pass_obj
def next_cmd(cfg: Config, spec_id: str, show_all: bool) -> None:
    """Show the next actionable task of SPEC_ID."""
    tf = _load_or_exit(_store(cfg), spec_id)

    if show_all:
        ready = actionable_tasks(tf)
        if not ready:
            glog.info("No actionable tasks available.")
            return
        for t in ready:
            glog.console.print(f"  - {_describe(t)}")
        return

    task = next_task(tf)
    if task is None:
        glog.info("No actionable tasks available.")
        if glog.is_verbose():
            for t in tf.tasks:
                reason = explain_block(t, tf)
                if reason:
                    glog.debug(f"{t.id}: {reason}")
        return
    glog.console.print(f"Next task: {_describe(task)}")
    if task.description:
        glog.console.print(f"[dim]{task.description}[/dim]")


# ── Subcommands: status and shortcuts ────────────────────────────────


def _set_status(cfg: Config, spec_id: str, task_id: str, status: TaskStatus) -> None:
    store = _store(cfg)
    watcher = TaskFileWatcher(store, EventBus(), cfg)

    async def _run() -> tuple[str, Task | None]:
        tf = await store.get_task_file(spec_id)
        if tf is None:
            return "no-spec", None
        if tf.get_task(task_id) is None:
            return "no-task", None
        if not await watcher.update_task_status(spec_id, task_id, status):
            return "failed", None
        return "ok", await watcher.get_next_task(spec_id)

    try:
        outcome, upcoming = asyncio.run(_run())
    except OSError as exc:
        glog.error(f"Could not read {store.path_for(spec_id)}: {exc}")
        sys.exit(1)

    if outcome == "no-spec":
        glog.error(f"No task file for spec '{spec_id}' ({store.path_for(spec_id)})")
        sys.exit(1)
    if outcome == "no-task":
        glog.error(f"Task {task_id} not found in {spec_id}")
        sys.exit(1)
    if outcome == "failed":
        glog.error(f"Could not update task {task_id}")
        sys.exit(1)

    glog.success(f"Task {task_id} marked as {status.value}", spec_id)
    if upcoming is not None:
        glog.console.print(f"Next task: {_describe(upcoming)}")


@main.command()
@click.argument("spec_id")
@click.argument("task_id")
@click.argument("status", type=click.Choice(STATUS_CHOICES))
@click.pass_obj
def status(cfg: Config, spec_id: str, task_id: str, status: str) -> None:
    """Set the STATUS of TASK_ID in SPEC_ID."""
    _set_status(cfg, spec_id, task_id, TaskStatus(status))


@main.command()
@click.argument("spec_id")
@click.argument("task_id")
@click.pass_obj
def start(cfg: Config, spec_id: str, task_id: str) -> None:
    """Mark TASK_ID as in-progress."""
    _set_status(cfg, spec_id, task_id, TaskStatus.IN_PROGRESS)


@main.command()
@click.argument("spec_id")
@click.argument("task_id")
@click.pass_obj
def done(cfg: Config, spec_id: str, task_id: str) -> None:
    """Mark TASK_ID as done."""
    _set_status(cfg, spec_id, task_id, TaskStatus.DONE)


@main.command()
@click.argument("spec_id")
@click.argument("task_id")
@click.option("--reason", default="", help="Why the task is blocked")
@click.pass_obj
def block(cfg: Config, spec_id: str, task_id: str, reason: str) -> None:
    """Mark TASK_ID as blocked."""
    _set_status(cfg, spec_id, task_id, TaskStatus.BLOCKED)
    glog.warn(f"Task {task_id} blocked: {reason or 'No reason given'}", spec_id)


@main.command()
@click.argument("spec_id")
@click.argument("task_id")
@click.pass_obj
def toggle(cfg: Config, spec_id: str, task_id: str) -> None:
    """Cycle TASK_ID through pending -> in-progress -> done."""
    store = _store(cfg)
    watcher = TaskFileWatcher(store, EventBus(), cfg)
    try:
        new_status = asyncio.run(watcher.toggle_task_status(spec_id, task_id))
    except OSError as exc:
        glog.error(f"Could not read {store.path_for(spec_id)}: {exc}")
        sys.exit(1)
    if new_status is None:
        glog.error(f"Task {task_id} not found in {spec_id}")
        sys.exit(1)
    glog.success(f"Task {task_id} marked as {new_status.value}", spec_id)


# ── Subcommands: validate and graph ──────────────────────────────────


@main.command()
@click.argument("spec_id")
@click.pass_obj
def validate(cfg: Config, spec_id: str) -> None:
    """Check SPEC_ID for dangling dependencies, cycles, and missing titles."""
    from spectask.tasks.validate import validate_and_report

    tf = _load_or_exit(_store(cfg), spec_id)
    if not validate_and_report(tf):
        sys.exit(1)


@main.command()
@click.argument("spec_id")
@click.pass_obj
def graph(cfg: Config, spec_id: str) -> None:
    """Print the dependency edges of SPEC_ID."""
    from spectask.tasks.validate import dependency_graph, find_cycles

    tf = _load_or_exit(_store(cfg), spec_id)
    g = dependency_graph(tf)
    if not g.edges:
        glog.info("No dependencies.")
    for dep, tid in g.edges:
        marker = "" if tf.get_task(dep) else " [red](missing)[/red]"
        glog.console.print(f"  {dep}{marker} -> {tid}")
    for cycle in find_cycles(tf):
        glog.warn(f"Cycle: {' -> '.join(cycle)}", spec_id)


# ── Subcommand: watch ────────────────────────────────────────────────


def _print_event(event: TaskChangeEvent, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(event.to_dict()))
        return

    line = f"[bold]{event.type.value}[/bold] [cyan]{event.spec_id}[/cyan]"
    if event.task_id:
        line += f" task {event.task_id}"
    tf = event.task_file
    if tf is not None:
        s = tf.summary()
        line += f" {s.done}/{s.total} done"
        upcoming = next_task(tf)
        if upcoming is not None:
            line += f", next: {upcoming.id} {upcoming.title}"
    glog.console.print(line)


async def _watch(cfg: Config, spec_ids: tuple[str, ...], notify: bool, as_json: bool, duration: float) -> None:
    from spectask.notify import DesktopNotifier

    store = _store(cfg)
    bus = EventBus()
    watcher = TaskFileWatcher(store, bus, cfg)
    if notify:
        DesktopNotifier().attach(bus)

    wanted = set(spec_ids)
    channel = bus.channel()
    watcher.start()
    glog.info(f"Watching {cfg.specs_path} (debounce {cfg.debounce_ms} ms). Ctrl-C to stop.")

    async def consume() -> None:
        async for event in channel:
            if wanted and event.spec_id not in wanted:
                continue
            _print_event(event, as_json)

    try:
        if duration > 0:
            try:
                await asyncio.wait_for(consume(), duration)
            except asyncio.TimeoutError:
                pass
        else:
            await consume()
    finally:
        await watcher.aclose()
        bus.close()


@main.command()
@click.argument("spec_ids", nargs=-1)
@click.option("--notify", is_flag=True, help="Desktop notification when a spec is fully done")
@click.option("--json", "as_json", is_flag=True, help="Print events as JSON lines")
@click.option("--debounce-ms", type=int, default=0, help="Debounce window in milliseconds (default 300)")
@click.option("--duration", type=float, default=0.0, hidden=True)
@click.pass_obj
def watch(
    cfg: Config,
    spec_ids: tuple[str, ...],
    notify: bool,
    as_json: bool,
    debounce_ms: int,
    duration: float,
) -> None:
    """Stream task changes for SPEC_IDS (all specs if none given)."""
    if debounce_ms > 0:
        cfg.debounce_ms = debounce_ms
    cfg.notify = notify
    try:
        asyncio.run(_watch(cfg, spec_ids, notify, as_json, duration))
    except KeyboardInterrupt:
        glog.warn("Stopped.")
