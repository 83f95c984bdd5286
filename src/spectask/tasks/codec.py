"""Markdown codec for tasks.md: tokenizer, parser, and serializer.

Document shape::

    # Implementation Plan: User accounts

    ## Task 1.1: Create user model

    - **Status**: pending
    - **Type**: implement
    - **Priority**: 1
    - **Implements**: REQ-1.1, DES-2.1
    - **Files**: src/models/user.py

    Create the User domain entity with validation.

    ## Phase 2: Sessions

    ### Task 2.1: Session model
    ...

Tasks may be grouped under ``## Phase <n>: <name>`` headings, in which
case they are written one level down (``### Task``). A description runs
from the first prose paragraph after the metadata to the end of the
block; a heading line inside it ends the block. A description that starts
with ``-``, ``*`` or ``#`` is written with a leading backslash so it reads
back as prose.

Parsing never raises. Blocks without a valid ``## Task <id>: <title>``
header are skipped, unknown metadata is ignored, and invalid values fall
back to the model defaults. Text the grammar does not recognize is dropped
on re-serialization.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from spectask import log
from spectask.tasks.model import (
    DEFAULT_PRIORITY,
    Task,
    TaskFile,
    TaskPhase,
    TaskStatus,
    TaskType,
)

PLAN_TITLE_PREFIX = "Implementation Plan:"

# Serialization order. Status/Type/Priority are always written.
FIELD_ORDER = ("Status", "Type", "Priority", "Estimate", "Implements", "Depends On", "Files")
LIST_FIELDS = frozenset({"implements", "depends on", "files"})

# A description starting with one of these is written with a leading backslash.
DESCRIPTION_MARKERS = ("-", "*", "#")

TASK_ID_RE = re.compile(r"^\d+(?:\.\d+)*$")

_TASK_HEADER_RE = re.compile(r"^#{2,3}\s+Task\s+([^\s:]+)\s*(?::\s*(.*))?$")
_PHASE_RE = re.compile(r"^##\s+Phase\s+(\d+)\s*:\s*(.*)$")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$")
_FIELD_RE = re.compile(r"^[-*]\s+\*\*([^*]+?)\*\*\s*:\s*(.*)$")


class LineKind(str, Enum):
    TITLE = "title"
    TASK_HEADER = "task_header"
    PHASE = "phase"
    HEADING = "heading"
    FIELD = "field"
    BLANK = "blank"
    TEXT = "text"


@dataclass(frozen=True)
class Token:
    kind: LineKind
    lineno: int
    raw: str
    key: str = ""
    value: str = ""


def is_valid_task_id(task_id: str) -> bool:
    return bool(TASK_ID_RE.match(task_id))


# ── tokenizer ────────────────────────────────────────────────────────


def classify(line: str, lineno: int = 0) -> Token:
    """Classify one line of a tasks document."""
    stripped = line.strip()
    if not stripped:
        return Token(LineKind.BLANK, lineno, line)

    m = _TASK_HEADER_RE.match(stripped)
    if m:
        return Token(LineKind.TASK_HEADER, lineno, line, key=m.group(1), value=(m.group(2) or "").strip())

    m = _PHASE_RE.match(stripped)
    if m:
        return Token(LineKind.PHASE, lineno, line, key=m.group(1), value=m.group(2).strip())

    m = _HEADING_RE.match(stripped)
    if m:
        kind = LineKind.TITLE if len(m.group(1)) == 1 else LineKind.HEADING
        return Token(kind, lineno, line, value=m.group(2).strip())

    m = _FIELD_RE.match(stripped)
    if m:
        return Token(LineKind.FIELD, lineno, line, key=m.group(1).strip(), value=m.group(2).strip())

    return Token(LineKind.TEXT, lineno, line, value=stripped)


def tokenize(text: str) -> list[Token]:
    return [classify(line, i) for i, line in enumerate(text.splitlines(), start=1)]


# ── value coercion ───────────────────────────────────────────────────


def _normalize_word(value: str) -> str:
    return re.sub(r"[\s_]+", "-", value.strip().lower())


def parse_status(value: str, default: TaskStatus = TaskStatus.PENDING) -> TaskStatus:
    try:
        return TaskStatus(_normalize_word(value))
    except ValueError:
        return default


def parse_type(value: str, default: TaskType = TaskType.IMPLEMENT) -> TaskType:
    try:
        return TaskType(_normalize_word(value))
    except ValueError:
        return default


def split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ── parser ───────────────────────────────────────────────────────────


class _Block:
    """Accumulates the tokens of one task block while parsing."""

    def __init__(self, header: Token, phase: TaskPhase | None = None) -> None:
        self.header = header
        self.phase = phase
        self.fields: list[Token] = []
        self.paragraphs: list[list[Token]] = []
        self._in_metadata = True
        self._current: list[Token] | None = None

    def feed(self, tok: Token) -> None:
        if self._in_metadata:
            if tok.kind == LineKind.BLANK:
                return
            if tok.kind == LineKind.FIELD:
                self.fields.append(tok)
                return
            self._in_metadata = False

        if tok.kind == LineKind.BLANK:
            self._current = None
            return
        if self._current is None:
            self._current = []
            self.paragraphs.append(self._current)
        self._current.append(tok)

    def description(self) -> str:
        """Everything from the first prose paragraph to the end of the block."""
        for start, para in enumerate(self.paragraphs):
            if not para[0].raw.lstrip().startswith(DESCRIPTION_MARKERS):
                break
        else:
            return ""
        text = "\n\n".join(
            "\n".join(t.raw.rstrip() for t in para) for para in self.paragraphs[start:]
        ).strip()
        if text[:1] == "\\" and text[1:2] in DESCRIPTION_MARKERS:
            text = text[1:]
        return text

    def build(self, spec_id: str) -> Task:
        task = Task(id=self.header.key, spec_id=spec_id, title=self.header.value)
        for tok in self.fields:
            _apply_field(task, tok, spec_id)
        task.description = self.description()
        return task


def _apply_field(task: Task, tok: Token, spec_id: str) -> None:
    name = tok.key.lower()
    value = tok.value

    if name == "status":
        task.status = parse_status(value)
        if task.status.value != _normalize_word(value):
            log.debug(f"line {tok.lineno}: unknown status {value!r}, using {task.status.value}", spec_id)
    elif name == "type":
        task.type = parse_type(value)
        if task.type.value != _normalize_word(value):
            log.debug(f"line {tok.lineno}: unknown type {value!r}, using {task.type.value}", spec_id)
    elif name == "priority":
        try:
            task.priority = int(value)
        except ValueError:
            task.priority = DEFAULT_PRIORITY
            log.debug(f"line {tok.lineno}: invalid priority {value!r}", spec_id)
    elif name == "estimate":
        task.estimate = value
    elif name == "implements":
        task.implements = split_list(value)
    elif name == "depends on":
        task.depends_on = split_list(value)
    elif name == "files":
        task.target_files = split_list(value)
    else:
        log.debug(f"line {tok.lineno}: ignoring unknown field {tok.key!r}", spec_id)


def _feature_name(title: str) -> str:
    if title.startswith(PLAN_TITLE_PREFIX):
        return title[len(PLAN_TITLE_PREFIX):].strip()
    return title


def parse_task_file(text: str, spec_id: str) -> TaskFile:
    """Parse a tasks document into a :class:`TaskFile` (document order kept)."""
    feature_name = ""
    blocks: list[_Block] = []
    phases: list[TaskPhase] = []
    phase: TaskPhase | None = None
    current: _Block | None = None

    for tok in tokenize(text):
        if tok.kind == LineKind.TASK_HEADER:
            if is_valid_task_id(tok.key):
                current = _Block(tok, phase)
                blocks.append(current)
            else:
                log.debug(f"line {tok.lineno}: skipping task with malformed id {tok.key!r}", spec_id)
                current = None
            continue
        if tok.kind == LineKind.PHASE:
            phase = TaskPhase(id=int(tok.key), name=tok.value)
            phases.append(phase)
            current = None
            continue
        if tok.kind in (LineKind.TITLE, LineKind.HEADING):
            if tok.kind == LineKind.TITLE and not feature_name and not blocks:
                feature_name = _feature_name(tok.value)
            current = None
            continue
        if current is not None:
            current.feed(tok)

    tasks: list[Task] = []
    seen: set[str] = set()
    for block in blocks:
        task = block.build(spec_id)
        if task.id in seen:
            log.warn(f"line {block.header.lineno}: duplicate task id {task.id}, keeping the first", spec_id)
            continue
        seen.add(task.id)
        tasks.append(task)
        if block.phase is not None:
            block.phase.task_ids.append(task.id)

    return TaskFile(spec_id=spec_id, feature_name=feature_name or spec_id, tasks=tasks, phases=phases)


def parse_task(text: str, spec_id: str) -> Task | None:
    """Parse the first task block in *text*, or ``None`` if there is none."""
    tf = parse_task_file(text, spec_id)
    return tf.tasks[0] if tf.tasks else None


# ── serializer ───────────────────────────────────────────────────────


def _field_line(name: str, value: str) -> str:
    return f"- **{name}**: {value}"


def serialize_task(task: Task, level: int = 2) -> str:
    lines = [
        f"{'#' * level} Task {task.id}: {task.title}".rstrip(),
        "",
        _field_line("Status", task.status.value),
        _field_line("Type", task.type.value),
        _field_line("Priority", str(task.priority)),
    ]
    if task.estimate:
        lines.append(_field_line("Estimate", task.estimate))
    if task.implements:
        lines.append(_field_line("Implements", ", ".join(task.implements)))
    if task.depends_on:
        lines.append(_field_line("Depends On", ", ".join(task.depends_on)))
    if task.target_files:
        lines.append(_field_line("Files", ", ".join(task.target_files)))
    if task.description:
        description = task.description
        if description.startswith(DESCRIPTION_MARKERS):
            description = "\\" + description
        lines.extend(["", description])
    return "\n".join(lines)


def serialize_summary(tf: TaskFile) -> str:
    s = tf.summary()
    line = f"> Total: {s.total} tasks | Done: {s.done} | In Progress: {s.in_progress}"
    if s.blocked:
        line += f" | Blocked: {s.blocked}"
    return line


def serialize_task_file(tf: TaskFile) -> str:
    """Tasks outside any phase come first, then each phase with its tasks nested a level down."""
    parts = [
        f"# {PLAN_TITLE_PREFIX} {tf.feature_name or tf.spec_id}",
        serialize_summary(tf),
    ]
    phased = {task_id for phase in tf.phases for task_id in phase.task_ids}
    parts.extend(serialize_task(t) for t in tf.tasks if t.id not in phased)
    for phase in tf.phases:
        parts.append(f"## Phase {phase.id}: {phase.name}".rstrip())
        for task_id in phase.task_ids:
            task = tf.get_task(task_id)
            if task is not None:
                parts.append(serialize_task(task, level=3))
    return "\n\n".join(parts) + "\n"
