"""
Notifier: one broadcast topic per (group, lift).

Delivery is fan-out, at-most-once and fire-and-forget: a subscriber whose
queue is full simply misses events and must resynchronize by pulling the
current attempt. Any transport (WebSocket hub, message queue) can stand in
for ``InProcessHub`` by implementing ``Broadcaster.publish``.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol, cast

from .types import EventPayload, EventType

logger = logging.getLogger(__name__)

Topic = tuple[str, str]


@dataclass(frozen=True)
class Event:
    type: EventType
    group_id: str
    lift_id: str
    data: dict = field(default_factory=dict)
    seq: int = 0
    timestamp_ms: int = 0

    @property
    def topic(self) -> Topic:
        return (self.group_id, self.lift_id)

    def to_dict(self) -> EventPayload:
        common = {
            "type": self.type,
            "groupId": self.group_id,
            "liftId": self.lift_id,
            "seq": self.seq,
            "timestampMs": self.timestamp_ms,
        }
        return cast(EventPayload, {**common, **self.data})


class Broadcaster(Protocol):
    def publish(self, event: Event) -> None:
        ...


_CLOSED = object()


class Subscription:
    """Bounded per-client queue of events for one topic."""

    def __init__(self, hub: "InProcessHub", topic: Topic, maxsize: int) -> None:
        self.topic = topic
        self.dropped = 0
        self.closed = False
        self._hub = hub
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)

    def offer(self, event: Event) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None on timeout or once closed."""
        try:
            item = self._queue.get(timeout=timeout) if timeout != 0 else self._queue.get_nowait()
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[Event]:
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is not _CLOSED:
                events.append(item)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub._remove(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            pass

    def __iter__(self) -> Iterator[Event]:
        while True:
            if self.closed and self._queue.empty():
                return
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            if item is _CLOSED:
                return
            yield item

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class InProcessHub:
    """Broadcaster backed by in-memory queues, one per subscriber."""

    def __init__(self, queue_size: int = 256) -> None:
        self.queue_size = queue_size
        self._lock = threading.Lock()
        self._topics: dict[Topic, set[Subscription]] = {}

    def subscribe(self, group_id: str, lift_id: str, maxsize: Optional[int] = None) -> Subscription:
        sub = Subscription(self, (group_id, lift_id), maxsize or self.queue_size)
        with self._lock:
            self._topics.setdefault(sub.topic, set()).add(sub)
            count = len(self._topics[sub.topic])
        logger.debug("Subscriber joined %s/%s, total: %d", group_id, lift_id, count)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._topics.get(sub.topic)
            if subs is not None:
                subs.discard(sub)
                if not subs:
                    del self._topics[sub.topic]
        logger.debug("Subscriber left %s/%s", *sub.topic)

    def publish(self, event: Event) -> None:
        # Snapshot so a slow or closing subscriber never holds the lock.
        with self._lock:
            subs = list(self._topics.get(event.topic, ()))
        for sub in subs:
            if not sub.offer(event):
                logger.warning(
                    "Dropped %s for slow subscriber on %s/%s", event.type, *event.topic
                )

    def subscriber_count(self, group_id: str, lift_id: str) -> int:
        with self._lock:
            return len(self._topics.get((group_id, lift_id), ()))
