"""Tests for EventBroadcaster fan-out."""

from __future__ import annotations

from src.recap.meetings.events import EventBroadcaster
from src.recap.meetings.schemas import MeetingEventType


class TestEventBroadcaster:

    async def test_publish_reaches_every_subscriber(self):
        broadcaster = EventBroadcaster()

        async with broadcaster.subscribe("M1") as first, broadcaster.subscribe("M1") as second:
            delivered = broadcaster.publish("M1", MeetingEventType.TRANSCRIPT, "hello")

            assert delivered == 2
            assert (await first.get()).data == "hello"
            event = await second.get()
            assert event.type == MeetingEventType.TRANSCRIPT
            assert event.timestamp is not None

    async def test_publish_without_subscribers(self):
        broadcaster = EventBroadcaster()

        assert broadcaster.publish("M1", MeetingEventType.STATUS, "Started") == 0

    async def test_meetings_are_isolated(self):
        broadcaster = EventBroadcaster()

        async with broadcaster.subscribe("M1") as queue:
            broadcaster.publish("M2", MeetingEventType.SUMMARY, "other meeting")
            assert queue.empty()

    async def test_unsubscribe_on_exit(self):
        broadcaster = EventBroadcaster()

        async with broadcaster.subscribe("M1"):
            assert broadcaster.subscriber_count("M1") == 1

        assert broadcaster.subscriber_count("M1") == 0

    async def test_full_queue_drops_events(self):
        broadcaster = EventBroadcaster(queue_size=1)

        async with broadcaster.subscribe("M1") as queue:
            assert broadcaster.publish("M1", MeetingEventType.TRANSCRIPT, "one") == 1
            assert broadcaster.publish("M1", MeetingEventType.TRANSCRIPT, "two") == 0
            assert queue.qsize() == 1
            assert (await queue.get()).data == "one"
