"""In-process change feed.

Observers subscribe to a channel (``tasks``, ``matches`` or
``messages:<match_id>``) and receive an Event after each committed mutation.
The feed only tells observers to refetch; the database stays the source of
truth, and nothing in the write path waits on a subscriber.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

logger = logging.getLogger("swaami.events")

TASKS = "tasks"
MATCHES = "matches"
QUEUE_SIZE = 100


def messages_channel(match_id: str) -> str:
    return f"messages:{match_id}"


@dataclass
class Event:
    type: str
    entity_id: str
    data: dict = field(default_factory=dict)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._subscribers.setdefault(channel, set()).add(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[channel]

    def publish(self, channel: str, event: Event) -> int:
        """Fan out to current subscribers. Returns how many received it."""
        delivered = 0
        for queue in list(self._subscribers.get(channel, ())):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber on %s", event.type, channel)
        return delivered

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def close(self) -> None:
        for queues in self._subscribers.values():
            for queue in queues:
                try:
                    queue.put_nowait(None)
                except asyncio.QueueFull:
                    continue
        self._subscribers.clear()


event_bus = EventBus()
