"""Tests for MeetingManager -- session lifecycle, tick handlers, and timers.

Remote stages are AsyncMock stand-ins; the audio buffer store and transcript
log are the real implementations so drain semantics are exercised end to end.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from src.recap.meetings.audio_buffer import AudioBufferStore
from src.recap.meetings.events import EventBroadcaster
from src.recap.meetings.lifecycle import MeetingManager
from src.recap.meetings.schemas import ChatDestination, MeetingEventType
from src.recap.meetings.transcript_log import TranscriptLog
from src.recap.services.summarization import SummarizationError

DESTINATION = ChatDestination(space_name="spaces/AAA", thread_key="M1")


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def transcriber():
    stage = MagicMock()
    stage.transcribe = AsyncMock(return_value="hello world")
    return stage


@pytest.fixture
def summarizer():
    stage = MagicMock()
    stage.summarize = AsyncMock(return_value="- Summary bullet")
    return stage


@pytest.fixture
def poster():
    sink = MagicMock()
    sink.post = AsyncMock(return_value=True)
    return sink


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


def _build_manager(
    audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
    **kwargs,
) -> MeetingManager:
    return MeetingManager(
        audio_buffers=audio_store,
        transcript_log=transcript_log,
        transcriber=transcriber,
        summarizer=summarizer,
        poster=poster,
        broadcaster=broadcaster,
        **kwargs,
    )


@pytest_asyncio.fixture
async def manager(audio_store, transcript_log, transcriber, summarizer, poster, broadcaster):
    """Manager with default intervals so timers never fire during a test."""
    mgr = _build_manager(
        audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
    )
    yield mgr
    await mgr.shutdown()


# ── Lifecycle ────────────────────────────────────────────────────────────────


class TestStartStop:

    async def test_start_registers_session(self, manager):
        view = manager.start("M1", "call-1", DESTINATION)

        assert manager.list_active() == {"M1"}
        assert manager.active_count == 1
        assert view.meeting_id == "M1"
        assert view.audio_source_key == "call-1"
        assert view.transcription_interval_seconds == 30.0
        assert view.summary_interval_seconds == 300.0
        assert manager.get_session("M1") == view

    async def test_duplicate_start_replaces_session(self, manager, audio_store):
        manager.start("M1", "call-1", DESTINATION)
        old_tasks = list(manager._sessions["M1"].tasks)
        audio_store.append("call-1", b"\x01" * 100)

        manager.start("M1", "call-1", DESTINATION)
        await asyncio.sleep(0.01)

        assert manager.list_active() == {"M1"}
        assert all(task.cancelled() or task.done() for task in old_tasks)
        assert not audio_store.has_data("call-1")
        assert audio_store.append("call-1", b"\x02") is True

    async def test_stop_removes_session_and_state(self, manager, audio_store, transcript_log):
        manager.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x01" * 100)
        transcript_log.append("M1", "pending")
        tasks = list(manager._sessions["M1"].tasks)

        assert manager.stop("M1") is True
        await asyncio.sleep(0.01)

        assert manager.list_active() == set()
        assert all(task.done() for task in tasks)
        assert manager.current_transcript("M1") == ""
        assert audio_store.drain_all("call-1") == b""

    async def test_stop_unknown_meeting_is_noop(self, manager):
        assert manager.stop("does-not-exist") is False

    async def test_late_audio_after_stop_is_dropped(self, manager, audio_store):
        manager.start("M1", "call-1", DESTINATION)
        manager.stop("M1")

        assert audio_store.append("call-1", b"\x01" * 100) is False
        assert not audio_store.has_data("call-1")

    async def test_stop_all(self, manager):
        manager.start("M1", "call-1", DESTINATION)
        manager.start("M2", "call-2", DESTINATION)

        assert manager.stop_all() == 2
        assert manager.list_active() == set()

    async def test_status_events_published(self, manager, broadcaster):
        async with broadcaster.subscribe("M1") as queue:
            manager.start("M1", "call-1", DESTINATION)
            manager.stop("M1")

            started = await queue.get()
            stopped = await queue.get()

        assert (started.type, started.data) == (MeetingEventType.STATUS, "Started")
        assert (stopped.type, stopped.data) == (MeetingEventType.STATUS, "Stopped")


# ── Transcription Tick ───────────────────────────────────────────────────────


class TestTranscriptionTick:

    async def test_drains_audio_and_appends_text(self, manager, audio_store, transcriber):
        manager.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x01" * 20000)
        audio_store.append("call-1", b"\x02" * 20000)

        result = await manager.run_transcription_tick("M1")

        assert result == "hello world"
        transcriber.transcribe.assert_awaited_once_with(b"\x01" * 20000 + b"\x02" * 20000)
        assert manager.current_transcript("M1") == "hello world"
        assert not audio_store.has_data("call-1")

    async def test_no_audio_skips_transcriber(self, manager, transcriber):
        manager.start("M1", "call-1", DESTINATION)

        assert await manager.run_transcription_tick("M1") == ""
        transcriber.transcribe.assert_not_awaited()

    async def test_empty_transcription_not_appended(self, manager, audio_store, transcriber):
        transcriber.transcribe.return_value = ""
        manager.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x01" * 40000)

        await manager.run_transcription_tick("M1")

        assert manager.current_transcript("M1") == ""

    async def test_transcriber_exception_contained(self, manager, audio_store, transcriber):
        transcriber.transcribe.side_effect = RuntimeError("boom")
        manager.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x01" * 40000)

        assert await manager.run_transcription_tick("M1") == ""
        assert manager.list_active() == {"M1"}

    async def test_unknown_meeting(self, manager, transcriber):
        assert await manager.run_transcription_tick("nope") == ""
        transcriber.transcribe.assert_not_awaited()


# ── Summary Tick ─────────────────────────────────────────────────────────────


class TestSummaryTick:

    async def test_no_transcript_skips_summarizer(self, manager, summarizer, poster):
        manager.start("M1", "call-1", DESTINATION)

        assert await manager.run_summary_tick("M1") is None
        summarizer.summarize.assert_not_awaited()
        poster.post.assert_not_awaited()

    async def test_summarizes_drained_transcript(
        self, manager, transcript_log, summarizer, poster
    ):
        manager.start("M1", "call-1", DESTINATION)
        transcript_log.append("M1", "first part")
        transcript_log.append("M1", "second part")

        result = await manager.run_summary_tick("M1")

        assert result == "- Summary bullet"
        summarizer.summarize.assert_awaited_once_with("first part second part")
        poster.post.assert_awaited_once_with(DESTINATION, "- Summary bullet", 5)
        assert manager.current_transcript("M1") == ""

    async def test_summarization_failure_not_posted(
        self, manager, transcript_log, summarizer, poster, broadcaster
    ):
        summarizer.summarize.side_effect = SummarizationError("Failed to summarize transcript: 503")
        manager.start("M1", "call-1", DESTINATION)
        transcript_log.append("M1", "some words that were spoken")

        async with broadcaster.subscribe("M1") as queue:
            assert await manager.run_summary_tick("M1") is None
            event = await queue.get()

        poster.post.assert_not_awaited()
        assert event.type == MeetingEventType.ERROR
        assert manager.list_active() == {"M1"}

    async def test_delivery_exception_contained(self, manager, transcript_log, poster):
        poster.post.side_effect = RuntimeError("chat down")
        manager.start("M1", "call-1", DESTINATION)
        transcript_log.append("M1", "some words that were spoken")

        assert await manager.run_summary_tick("M1") is None
        assert manager.list_active() == {"M1"}

    async def test_configured_interval_passed_to_delivery(
        self, audio_store, transcript_log, transcriber, summarizer, poster, broadcaster
    ):
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            summary_interval_minutes=10,
        )
        view = mgr.start("M1", "call-1", DESTINATION)
        transcript_log.append("M1", "some words that were spoken")

        await mgr.run_summary_tick("M1")
        await mgr.shutdown()

        assert view.summary_interval_seconds == 600.0
        poster.post.assert_awaited_once_with(DESTINATION, "- Summary bullet", 10)


# ── End to End ───────────────────────────────────────────────────────────────


class TestPipeline:

    async def test_one_transcription_then_one_summary_posts_once(
        self, manager, audio_store, transcriber, summarizer, poster
    ):
        manager.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 40000)

        await manager.run_transcription_tick("M1")
        await manager.run_summary_tick("M1")

        summarizer.summarize.assert_awaited_once_with("hello world")
        poster.post.assert_awaited_once()
        assert poster.post.call_args.args[1] == "- Summary bullet"

    async def test_meetings_do_not_share_transcripts(
        self, manager, audio_store, transcriber, summarizer
    ):
        manager.start("M1", "call-1", DESTINATION)
        manager.start("M2", "call-2", DESTINATION)
        transcriber.transcribe.side_effect = ["from meeting one", "from meeting two"]
        audio_store.append("call-1", b"\x00" * 40000)
        audio_store.append("call-2", b"\x00" * 40000)

        await manager.run_transcription_tick("M1")
        await manager.run_transcription_tick("M2")

        assert manager.current_transcript("M1") == "from meeting one"
        assert manager.current_transcript("M2") == "from meeting two"


# ── Timers ───────────────────────────────────────────────────────────────────


class TestTimers:

    async def test_transcription_timer_fires(
        self, audio_store, transcript_log, transcriber, summarizer, poster, broadcaster
    ):
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.01,
        )
        mgr.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 40000)

        await asyncio.sleep(0.1)
        await mgr.shutdown()

        transcriber.transcribe.assert_awaited_once()

    async def test_no_tick_after_stop(
        self, audio_store, transcript_log, transcriber, summarizer, poster, broadcaster
    ):
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.01,
        )
        mgr.start("M1", "call-1", DESTINATION)
        mgr.stop("M1")

        # Even with audio available again, no timer remains to consume it
        audio_store.open("call-1")
        audio_store.append("call-1", b"\x00" * 40000)
        await asyncio.sleep(0.1)

        transcriber.transcribe.assert_not_awaited()
        assert audio_store.has_data("call-1")

    async def test_in_flight_tick_finishes_after_stop(
        self, audio_store, transcript_log, summarizer, poster, broadcaster
    ):
        started = asyncio.Event()
        release = asyncio.Event()
        finished: list[str] = []

        async def slow_transcribe(pcm: bytes) -> str:
            started.set()
            await release.wait()
            finished.append("done")
            return "late words"

        transcriber = MagicMock()
        transcriber.transcribe = slow_transcribe
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.01,
        )
        mgr.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 40000)

        await asyncio.wait_for(started.wait(), timeout=1.0)
        mgr.stop("M1")
        release.set()
        await asyncio.sleep(0.05)

        assert finished == ["done"]
        # The session's log was closed by stop, so the late text is discarded
        assert transcript_log.peek("M1") == ""
        assert not mgr._inflight


# ── Bookkeeping ──────────────────────────────────────────────────────────────


class TestBookkeeping:

    async def test_many_meetings_leave_bounded_state(
        self, transcriber, summarizer, poster, broadcaster
    ):
        audio_store = AudioBufferStore(closed_key_limit=16)
        transcript_log = TranscriptLog(closed_key_limit=16)
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
        )

        for i in range(1000):
            mgr.start(f"M{i}", f"call-{i}", DESTINATION)
            audio_store.append(f"call-{i}", b"\x01" * 10)
            transcript_log.append(f"M{i}", "words")
            mgr.stop(f"M{i}")
        await mgr.shutdown()

        assert mgr.active_count == 0
        assert len(audio_store._closed) == 16
        assert len(transcript_log._closed) == 16
        assert audio_store._chunks == {}
        assert transcript_log._fragments == {}


# ── Schedule ─────────────────────────────────────────────────────────────────


class TestSchedule:

    async def test_slow_ticks_do_not_stretch_the_period(
        self, audio_store, transcript_log, summarizer, poster, broadcaster
    ):
        loop = asyncio.get_running_loop()
        starts: list[float] = []

        async def slow_transcribe(pcm: bytes) -> str:
            starts.append(loop.time())
            # Keep audio available so the next tick transcribes too
            audio_store.append("call-1", b"\x00" * 10)
            await asyncio.sleep(0.12)
            return "words"

        transcriber = MagicMock()
        transcriber.transcribe = slow_transcribe
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.05,
        )
        mgr.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 10)

        await asyncio.sleep(0.6)
        await mgr.shutdown()

        gaps = [later - earlier for earlier, later in zip(starts, starts[1:])]
        assert len(starts) >= 8
        assert max(gaps) < 0.1

    async def test_stop_does_not_cancel_running_tick(
        self, audio_store, transcript_log, summarizer, poster, broadcaster
    ):
        release = asyncio.Event()
        started = asyncio.Event()

        async def blocked_transcribe(pcm: bytes) -> str:
            started.set()
            await release.wait()
            return "words"

        transcriber = MagicMock()
        transcriber.transcribe = blocked_transcribe
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.01,
        )
        mgr.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 10)
        await asyncio.wait_for(started.wait(), timeout=1.0)

        mgr.stop("M1")
        await asyncio.sleep(0.02)

        running = list(mgr._inflight)
        assert len(running) == 1
        assert not running[0].done()
        release.set()
        await mgr.shutdown()


# ── Shutdown ─────────────────────────────────────────────────────────────────


class TestShutdown:

    async def _manager_with_blocked_tick(
        self, audio_store, transcript_log, summarizer, poster, broadcaster, release
    ):
        started = asyncio.Event()
        finished: list[str] = []
        blocked: list[asyncio.Task] = []

        async def blocked_transcribe(pcm: bytes) -> str:
            blocked.append(asyncio.current_task())
            started.set()
            await release.wait()
            finished.append("done")
            return "words"

        transcriber = MagicMock()
        transcriber.transcribe = blocked_transcribe
        mgr = _build_manager(
            audio_store, transcript_log, transcriber, summarizer, poster, broadcaster,
            transcription_interval_seconds=0.01,
        )
        mgr.start("M1", "call-1", DESTINATION)
        audio_store.append("call-1", b"\x00" * 10)
        await asyncio.wait_for(started.wait(), timeout=1.0)
        return mgr, finished, blocked[0]

    async def test_waits_for_running_tick(
        self, audio_store, transcript_log, summarizer, poster, broadcaster
    ):
        release = asyncio.Event()
        mgr, finished, _ = await self._manager_with_blocked_tick(
            audio_store, transcript_log, summarizer, poster, broadcaster, release
        )
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, release.set)

        await mgr.shutdown(grace_seconds=1.0)

        assert finished == ["done"]
        assert not mgr._inflight

    async def test_cancels_tick_past_grace_period(
        self, audio_store, transcript_log, summarizer, poster, broadcaster
    ):
        release = asyncio.Event()
        mgr, finished, blocked_tick = await self._manager_with_blocked_tick(
            audio_store, transcript_log, summarizer, poster, broadcaster, release
        )

        await mgr.shutdown(grace_seconds=0.05)

        assert finished == []
        assert blocked_tick.cancelled()
        assert not mgr._inflight
