"""In-memory fan-out of pipeline events to live subscribers (SSE clients).

Each subscriber gets its own bounded queue. Publishing never blocks a
timer tick: when a subscriber falls behind, its queue fills and further
events for it are dropped with a warning.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from src.recap.meetings.schemas import MeetingEvent, MeetingEventType

logger = structlog.get_logger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


class EventBroadcaster:
    """Publishes MeetingEvents to per-meeting subscriber queues."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, list[asyncio.Queue[MeetingEvent]]] = {}

    def subscriber_count(self, meeting_id: str) -> int:
        return len(self._subscribers.get(meeting_id, ()))

    @asynccontextmanager
    async def subscribe(self, meeting_id: str) -> AsyncIterator[asyncio.Queue[MeetingEvent]]:
        """Register a queue for ``meeting_id`` for the lifetime of the context."""
        queue: asyncio.Queue[MeetingEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(meeting_id, []).append(queue)
        try:
            yield queue
        finally:
            queues = self._subscribers.get(meeting_id)
            if queues is not None:
                if queue in queues:
                    queues.remove(queue)
                if not queues:
                    del self._subscribers[meeting_id]

    def publish(
        self,
        meeting_id: str,
        event_type: MeetingEventType,
        data: str | dict[str, Any],
    ) -> int:
        """Deliver an event to every subscriber of ``meeting_id``.

        Returns:
            Number of subscribers that received the event.
        """
        queues = self._subscribers.get(meeting_id)
        if not queues:
            return 0

        event = MeetingEvent(type=event_type, data=data)
        delivered = 0
        for queue in list(queues):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(
                    "events.subscriber_queue_full",
                    meeting_id=meeting_id,
                    event_type=event_type.value,
                )
        return delivered
