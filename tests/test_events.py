"""Tests for spectask.events — change events, bus fan-out, and channels."""

from __future__ import annotations

import json

import pytest

from spectask.events import ChangeType, EventBus, TaskChangeEvent
from spectask.tasks.model import TaskPhase, TaskStatus


def _ev(spec_id: str = "a", type: ChangeType = ChangeType.UPDATED, **kw) -> TaskChangeEvent:
    return TaskChangeEvent(spec_id, type, **kw)


# ── Wire shape ──────────────────────────────────────────────────────


class TestToDict:
    def test_minimal(self):
        assert _ev("a", ChangeType.DELETED).to_dict() == {"specId": "a", "type": "deleted"}

    def test_status_changed_wire_name(self):
        assert ChangeType.STATUS_CHANGED.value == "statusChanged"

    def test_with_task_file(self, make_task, make_task_file):
        tf = make_task_file([
            make_task("1", title="Model", status=TaskStatus.DONE, priority=1),
            make_task("2", title="API", depends_on=["1"]),
        ], spec_id="a")
        out = _ev("a", ChangeType.STATUS_CHANGED, task_id="1", task_file=tf).to_dict()
        assert out["taskId"] == "1"
        assert out["taskFile"]["specId"] == "a"
        assert out["taskFile"]["tasks"][0] == {
            "id": "1",
            "title": "Model",
            "status": "done",
            "type": "implement",
            "priority": 1,
            "dependsOn": [],
        }
        assert out["taskFile"]["tasks"][1]["dependsOn"] == ["1"]
        json.dumps(out)
        assert "phases" not in out["taskFile"]

    def test_phases_are_listed(self, make_task, make_task_file):
        tf = make_task_file([make_task("1.1"), make_task("1.2")], spec_id="a")
        tf.phases = [TaskPhase(id=1, name="Setup", task_ids=["1.1", "1.2"])]
        out = _ev("a", task_file=tf).to_dict()
        assert out["taskFile"]["phases"] == [{"id": 1, "name": "Setup", "taskIds": ["1.1", "1.2"]}]


# ── Bus ─────────────────────────────────────────────────────────────


class TestEventBus:
    def test_fan_out_to_all_subscribers(self):
        bus = EventBus()
        a: list[TaskChangeEvent] = []
        b: list[TaskChangeEvent] = []
        bus.subscribe(a.append)
        bus.subscribe(b.append)
        ev = _ev()
        assert bus.publish(ev) == 2
        assert a == [ev]
        assert b == [ev]

    def test_spec_filter(self):
        bus = EventBus()
        only_a: list[TaskChangeEvent] = []
        bus.subscribe(only_a.append, spec_id="a")
        bus.publish(_ev("b"))
        bus.publish(_ev("a"))
        assert [e.spec_id for e in only_a] == ["a"]

    def test_failing_subscriber_does_not_stop_delivery(self):
        bus = EventBus()
        seen: list[TaskChangeEvent] = []

        def boom(event: TaskChangeEvent) -> None:
            raise RuntimeError("subscriber bug")

        bus.subscribe(boom)
        bus.subscribe(seen.append)
        assert bus.publish(_ev()) == 1
        assert len(seen) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        seen: list[TaskChangeEvent] = []
        sub = bus.subscribe(seen.append)
        assert bus.subscriber_count == 1
        sub.close()
        sub.close()
        assert bus.subscriber_count == 0
        assert bus.publish(_ev()) == 0
        assert seen == []

    def test_delivery_order_matches_publish_order(self):
        bus = EventBus()
        seen: list[str] = []
        bus.subscribe(lambda e: seen.append(e.spec_id))
        for spec in ("a", "b", "c"):
            bus.publish(_ev(spec))
        assert seen == ["a", "b", "c"]


# ── Channels ────────────────────────────────────────────────────────


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_channel_receives_in_order(self):
        bus = EventBus()
        ch = bus.channel()
        bus.publish(_ev("a"))
        bus.publish(_ev("b"))
        assert ch.pending() == 2
        assert (await ch.get()).spec_id == "a"
        assert (await ch.get()).spec_id == "b"
        assert await ch.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_channel_spec_filter(self):
        bus = EventBus()
        ch = bus.channel("b")
        bus.publish(_ev("a"))
        bus.publish(_ev("b"))
        assert ch.pending() == 1

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        bus = EventBus()
        ch = bus.channel()
        bus.publish(_ev("a"))
        ch.close()
        bus.publish(_ev("b"))

        got = [e.spec_id async for e in ch]
        assert got == ["a"]

    @pytest.mark.asyncio
    async def test_bus_close_closes_channels(self):
        bus = EventBus()
        ch = bus.channel()
        bus.subscribe(lambda e: None)
        bus.close()
        assert bus.subscriber_count == 0
        assert await ch.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_closed_channel_is_released(self):
        bus = EventBus()
        keep = bus.channel()
        gone = bus.channel()
        gone.close()
        gone.close()
        assert bus._channels == [keep]
        assert bus.subscriber_count == 1

        bus.publish(_ev("a"))
        assert keep.pending() == 1
        assert gone.pending() == 1  # only the close marker
