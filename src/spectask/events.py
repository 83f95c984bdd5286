"""Typed change events and the fan-out bus that delivers them to clients."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from spectask import log
from spectask.tasks.model import TaskFile


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STATUS_CHANGED = "statusChanged"


@dataclass(frozen=True)
class TaskChangeEvent:
    spec_id: str
    type: ChangeType
    task_id: str | None = None
    task_file: TaskFile | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape: ``{specId, type, taskId?, taskFile?}``."""
        out: dict[str, Any] = {"specId": self.spec_id, "type": self.type.value}
        if self.task_id is not None:
            out["taskId"] = self.task_id
        if self.task_file is not None:
            out["taskFile"] = {
                "specId": self.task_file.spec_id,
                "featureName": self.task_file.feature_name,
                "tasks": [
                    {
                        "id": t.id,
                        "title": t.title,
                        "status": t.status.value,
                        "type": t.type.value,
                        "priority": t.priority,
                        "dependsOn": list(t.depends_on),
                    }
                    for t in self.task_file.tasks
                ],
            }
            if self.task_file.phases:
                out["taskFile"]["phases"] = [
                    {"id": p.id, "name": p.name, "taskIds": list(p.task_ids)}
                    for p in self.task_file.phases
                ]
        return out


EventCallback = Callable[[TaskChangeEvent], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; ``close()`` unsubscribes."""

    def __init__(self, bus: EventBus, callback: EventCallback, spec_id: str | None) -> None:
        self._bus = bus
        self.callback = callback
        self.spec_id = spec_id
        self.active = True

    def wants(self, event: TaskChangeEvent) -> bool:
        return self.active and (self.spec_id is None or self.spec_id == event.spec_id)

    def close(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class EventChannel:
    """Async iterator over the events published for one subscriber.

    Each channel owns a queue, so delivery order matches publish order
    and no event is handed out twice.
    """

    _CLOSED = object()

    def __init__(self, bus: EventBus, spec_id: str | None) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._sub = bus.subscribe(self._queue.put_nowait, spec_id)

    def __aiter__(self) -> EventChannel:
        return self

    async def __anext__(self) -> TaskChangeEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    async def get(self, timeout: float | None = None) -> TaskChangeEvent | None:
        """Next event, or ``None`` on timeout or once the channel is closed."""
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is self._CLOSED:
            return None
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self._sub.active:
            self._sub.close()
            self._queue.put_nowait(self._CLOSED)
        self._bus._discard_channel(self)


class EventBus:
    """Observer registry. ``publish`` is synchronous and fire-and-forget."""

    def __init__(self) -> None:
        self._subs: list[Subscription] = []
        self._channels: list[EventChannel] = []

    def subscribe(self, callback: EventCallback, spec_id: str | None = None) -> Subscription:
        sub = Subscription(self, callback, spec_id)
        self._subs.append(sub)
        return sub

    def channel(self, spec_id: str | None = None) -> EventChannel:
        ch = EventChannel(self, spec_id)
        self._channels.append(ch)
        return ch

    def _discard_channel(self, ch: EventChannel) -> None:
        if ch in self._channels:
            self._channels.remove(ch)

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event: TaskChangeEvent) -> int:
        """Deliver *event* to every matching subscriber; return the delivery count."""
        delivered = 0
        for sub in list(self._subs):
            if not sub.wants(event):
                continue
            try:
                sub.callback(event)
                delivered += 1
            except Exception as exc:
                log.exception(f"Subscriber failed on {event.type.value} event", exc, event.spec_id)
        return delivered

    def close(self) -> None:
        for ch in list(self._channels):
            ch.close()
        for sub in list(self._subs):
            sub.close()
