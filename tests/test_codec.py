"""Tests for spectask.tasks.codec — tokenizer, parser, serializer."""

from __future__ import annotations

import textwrap

from spectask.tasks.codec import (
    LineKind,
    classify,
    is_valid_task_id,
    parse_task,
    parse_task_file,
    serialize_task,
    serialize_task_file,
    split_list,
)
from spectask.tasks.model import Task, TaskFile, TaskStatus, TaskType


def _doc(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


FULL_DOC = _doc("""
    # Implementation Plan: User accounts

    > Total: 2 tasks | Done: 0 | In Progress: 1

    ## Task 1.1: Create user model

    - **Status**: in-progress
    - **Type**: implement
    - **Priority**: 1
    - **Estimate**: M
    - **Implements**: REQ-1.1, DES-2.1
    - **Files**: src/models/user.py, src/models/__init__.py

    Create the User domain entity with validation.

    ## Task 1.2: Test user model

    - **Type**: test
    - **Depends On**: 1.1

    Cover validation rules.
""")

PHASED_DOC = _doc("""
    # Implementation Plan: Sessions

    > Total: 3 tasks | Done: 1 | In Progress: 0

    ## Task 0.1: Spike

    - **Status**: pending
    - **Type**: implement
    - **Priority**: 99

    ## Phase 1: Foundation

    ### Task 1.1: Session model

    - **Status**: done
    - **Type**: implement
    - **Priority**: 1

    Store sessions by token.

    Expire them after a day.

    ## Phase 2: API

    ### Task 2.1: Login endpoint

    - **Status**: pending
    - **Type**: implement
    - **Priority**: 2
    - **Depends On**: 1.1
""")


# ═══════════════════════════════════════════════════════════════════
#  Tokenizer
# ═══════════════════════════════════════════════════════════════════


class TestClassify:
    def test_task_header(self):
        tok = classify("## Task 1.2.3: Wire the API")
        assert tok.kind == LineKind.TASK_HEADER
        assert tok.key == "1.2.3"
        assert tok.value == "Wire the API"

    def test_task_header_without_title(self):
        tok = classify("## Task 1.1")
        assert tok.kind == LineKind.TASK_HEADER
        assert tok.key == "1.1"
        assert tok.value == ""

    def test_field(self):
        tok = classify("- **Depends On**: 1.1, 1.2")
        assert tok.kind == LineKind.FIELD
        assert tok.key == "Depends On"
        assert tok.value == "1.1, 1.2"

    def test_title_heading_blank_text(self):
        assert classify("# Implementation Plan: X").kind == LineKind.TITLE
        assert classify("## Notes").kind == LineKind.HEADING
        assert classify("   ").kind == LineKind.BLANK
        assert classify("plain words").kind == LineKind.TEXT

    def test_tasks_word_is_not_a_header(self):
        assert classify("## Tasks overview").kind == LineKind.HEADING

    def test_phase_heading(self):
        tok = classify("## Phase 2: Sessions and tokens")
        assert tok.kind == LineKind.PHASE
        assert (tok.key, tok.value) == ("2", "Sessions and tokens")
        assert classify("## Phase two: Later").kind == LineKind.HEADING


def test_is_valid_task_id():
    assert is_valid_task_id("1")
    assert is_valid_task_id("1.2.3")
    assert not is_valid_task_id("1.")
    assert not is_valid_task_id("a.b")
    assert not is_valid_task_id("")


def test_split_list_trims_and_drops_empty():
    assert split_list(" a, b ,, c ") == ["a", "b", "c"]
    assert split_list("") == []


# ═══════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════


class TestParse:
    def test_full_document(self):
        tf = parse_task_file(FULL_DOC, "accounts")
        assert tf.spec_id == "accounts"
        assert tf.feature_name == "User accounts"
        assert [t.id for t in tf.tasks] == ["1.1", "1.2"]

        t1 = tf.tasks[0]
        assert t1.spec_id == "accounts"
        assert t1.title == "Create user model"
        assert t1.status == TaskStatus.IN_PROGRESS
        assert t1.type == TaskType.IMPLEMENT
        assert t1.priority == 1
        assert t1.estimate == "M"
        assert t1.implements == ["REQ-1.1", "DES-2.1"]
        assert t1.target_files == ["src/models/user.py", "src/models/__init__.py"]
        assert t1.description == "Create the User domain entity with validation."

        t2 = tf.tasks[1]
        assert t2.type == TaskType.TEST
        assert t2.depends_on == ["1.1"]
        assert t2.description == "Cover validation rules."
        assert tf.phases == []

    def test_phases_group_tasks(self):
        tf = parse_task_file(PHASED_DOC, "sessions")
        assert [t.id for t in tf.tasks] == ["0.1", "1.1", "2.1"]
        assert [(p.id, p.name, p.task_ids) for p in tf.phases] == [
            (1, "Foundation", ["1.1"]),
            (2, "API", ["2.1"]),
        ]
        assert tf.phase_of("2.1").name == "API"
        assert tf.phase_of("0.1") is None
        assert tf.get_task("1.1").description == "Store sessions by token.\n\nExpire them after a day."

    def test_duplicate_id_is_not_listed_twice_in_phase(self):
        doc = "## Phase 1: A\n\n### Task 1.1: First\n\n### Task 1.1: Again\n"
        assert parse_task_file(doc, "s").phases[0].task_ids == ["1.1"]

    def test_defaults_when_metadata_missing(self):
        tf = parse_task_file("## Task 1.1: Bare\n", "s")
        t = tf.tasks[0]
        assert t.status == TaskStatus.PENDING
        assert t.type == TaskType.IMPLEMENT
        assert t.priority == 99
        assert t.estimate == ""
        assert t.depends_on == []
        assert t.description == ""

    def test_invalid_values_fall_back_to_defaults(self):
        doc = _doc("""
            ## Task 1: Odd values

            - **Status**: finished
            - **Type**: chore
            - **Priority**: high
        """)
        t = parse_task_file(doc, "s").tasks[0]
        assert t.status == TaskStatus.PENDING
        assert t.type == TaskType.IMPLEMENT
        assert t.priority == 99

    def test_status_spelling_variants_are_normalized(self):
        doc = "## Task 1: A\n\n- **Status**: In Progress\n"
        assert parse_task_file(doc, "s").tasks[0].status == TaskStatus.IN_PROGRESS
        doc = "## Task 1: A\n\n- **Status**: IN_PROGRESS\n"
        assert parse_task_file(doc, "s").tasks[0].status == TaskStatus.IN_PROGRESS

    def test_unknown_fields_are_ignored(self):
        doc = "## Task 1: A\n\n- **Owner**: sam\n- **Priority**: 3\n"
        t = parse_task_file(doc, "s").tasks[0]
        assert t.priority == 3

    def test_fields_in_any_order(self):
        doc = "## Task 1: A\n- **Priority**: 2\n- **Status**: done\n- **Depends On**: 3\n"
        t = parse_task_file(doc, "s").tasks[0]
        assert (t.priority, t.status, t.depends_on) == (2, TaskStatus.DONE, ["3"])

    def test_field_names_are_case_insensitive(self):
        doc = "## Task 1: A\n\n- **depends on**: 2\n- **STATUS**: blocked\n"
        t = parse_task_file(doc, "s").tasks[0]
        assert t.depends_on == ["2"]
        assert t.status == TaskStatus.BLOCKED

    def test_malformed_header_block_is_skipped(self):
        doc = _doc("""
            ## Task one: Not numeric

            - **Status**: done

            ## Task 2: Good
        """)
        tf = parse_task_file(doc, "s")
        assert [t.id for t in tf.tasks] == ["2"]

    def test_text_outside_blocks_is_skipped(self):
        doc = "Intro text\n\n- stray item\n\n## Task 1: A\n"
        tf = parse_task_file(doc, "s")
        assert [t.id for t in tf.tasks] == ["1"]

    def test_description_runs_to_end_of_block(self):
        doc = _doc("""
            ## Task 1: A

            - **Status**: pending

            - a checklist item
            - another

            The real description
            spans two lines.

            A second paragraph belongs to it too.

            - as does a trailing list
        """)
        t = parse_task_file(doc, "s").tasks[0]
        assert t.description == (
            "The real description\nspans two lines.\n\n"
            "A second paragraph belongs to it too.\n\n"
            "- as does a trailing list"
        )

    def test_heading_closes_block(self):
        doc = _doc("""
            ## Task 1: A

            - **Status**: done

            ## Phase 2: Later

            Not a description of task 1.
        """)
        t = parse_task_file(doc, "s").tasks[0]
        assert t.description == ""

    def test_third_level_task_headers_are_accepted(self):
        doc = "## Phase 1: Setup\n\n### Task 1.1: Nested header\n\n- **Priority**: 4\n"
        t = parse_task_file(doc, "s").tasks[0]
        assert (t.id, t.priority) == ("1.1", 4)

    def test_duplicate_ids_keep_first(self):
        doc = "## Task 1: First\n\n## Task 1: Second\n"
        tf = parse_task_file(doc, "s")
        assert [t.title for t in tf.tasks] == ["First"]

    def test_empty_document(self):
        tf = parse_task_file("", "s")
        assert tf.tasks == []
        assert tf.feature_name == "s"

    def test_parse_task_single_block(self):
        assert parse_task("## Task 3: X\n", "s").id == "3"
        assert parse_task("nothing here", "s") is None


# ═══════════════════════════════════════════════════════════════════
#  Serialization
# ═══════════════════════════════════════════════════════════════════


class TestSerialize:
    def test_field_order_and_optional_fields(self):
        t = Task(
            id="2.1",
            title="Add login",
            status=TaskStatus.DONE,
            type=TaskType.REFACTOR,
            priority=5,
            estimate="S",
            implements=["REQ-2"],
            depends_on=["1.1", "1.2"],
            target_files=["a.py"],
            description="Do it.",
        )
        assert serialize_task(t) == "\n".join([
            "## Task 2.1: Add login",
            "",
            "- **Status**: done",
            "- **Type**: refactor",
            "- **Priority**: 5",
            "- **Estimate**: S",
            "- **Implements**: REQ-2",
            "- **Depends On**: 1.1, 1.2",
            "- **Files**: a.py",
            "",
            "Do it.",
        ])

    def test_empty_optional_fields_are_omitted(self):
        text = serialize_task(Task(id="1", title="Bare"))
        assert "Estimate" not in text
        assert "Depends On" not in text
        assert "Files" not in text
        assert "Implements" not in text
        assert text.endswith("- **Priority**: 99")

    def test_task_file_has_title_and_summary(self):
        tf = TaskFile(spec_id="s", feature_name="Accounts", tasks=[
            Task(id="1", title="A", status=TaskStatus.DONE),
            Task(id="2", title="B", status=TaskStatus.BLOCKED),
        ])
        text = serialize_task_file(tf)
        lines = text.splitlines()
        assert lines[0] == "# Implementation Plan: Accounts"
        assert lines[2] == "> Total: 2 tasks | Done: 1 | In Progress: 0 | Blocked: 1"
        assert text.endswith("\n")


# ═══════════════════════════════════════════════════════════════════
#  Round trip
# ═══════════════════════════════════════════════════════════════════


class TestRoundTrip:
    def test_task_round_trip(self):
        t = Task(
            id="3.2.1",
            spec_id="s",
            title="Handle: colons in titles",
            description="Multi-line\ndescription text.",
            status=TaskStatus.SKIPPED,
            type=TaskType.DOCUMENT,
            priority=-1,
            estimate="XL",
            target_files=["docs/a.md"],
            implements=["REQ-9"],
            depends_on=["1", "2.1"],
        )
        assert parse_task(serialize_task(t), "s") == t

    def test_minimal_task_round_trip(self):
        t = Task(id="1", spec_id="s", title="Only a title")
        assert parse_task(serialize_task(t), "s") == t

    def test_document_round_trip_is_stable(self):
        tf = parse_task_file(FULL_DOC, "accounts")
        text = serialize_task_file(tf)
        again = parse_task_file(text, "accounts")
        assert again == tf
        assert serialize_task_file(again) == text

    def test_unrecognized_text_is_dropped(self):
        doc = "Preamble\n\n## Task 1: A\n\n- **Owner**: sam\n\nDesc.\n"
        text = serialize_task_file(parse_task_file(doc, "s"))
        assert "Preamble" not in text
        assert "Owner" not in text
        assert "Desc." in text

    def test_phased_document_round_trip(self):
        """Phase headings survive a rewrite and tasks stay nested under them."""
        tf = parse_task_file(PHASED_DOC, "sessions")
        text = serialize_task_file(tf)
        assert text == PHASED_DOC
        assert parse_task_file(text, "sessions") == tf

    def test_multi_paragraph_description_round_trip(self):
        t = Task(
            id="1",
            spec_id="s",
            title="Docs",
            description="First paragraph\nwraps here.\n\nSecond paragraph.\n\n- a closing list",
        )
        assert parse_task(serialize_task(t), "s") == t

    def test_description_starting_with_marker_round_trip(self):
        for description in ("- not a field", "* starred", "#hashtag first"):
            t = Task(id="1", spec_id="s", title="Edge", description=description)
            text = serialize_task(t)
            assert text.endswith("\n\n\\" + description)
            assert parse_task(text, "s") == t
