"""MeetingManager -- per-meeting transcription and summary timers.

Each active meeting owns two asyncio background loops:

- Transcription (every 30s): drain the audio buffer for the meeting's audio
  source key, transcribe it, append the text to the meeting's transcript log.
- Summary (every SUMMARY_INTERVAL_MINUTES): drain the transcript log,
  summarize it, post the summary to the meeting's chat destination.

Both loops fire on a fixed schedule and start each tick as a separate task,
so ticks of either stage may overlap. Every tick catches its own failures, so
a bad tick never ends its loop. ``stop`` flips the session's stopped flag and
cancels both loops synchronously, so no new tick starts once it returns; a
tick already in flight is not cancelled and runs to completion.

Exports:
    MeetingManager: Owns the meeting_id -> session mapping.
    MeetingSession: Internal per-meeting state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from src.recap.core.monitoring import active_meetings, record_tick
from src.recap.meetings.schemas import ChatDestination, MeetingEventType, MeetingSessionView
from src.recap.services.summarization import SummarizationError

if TYPE_CHECKING:
    from src.recap.meetings.audio_buffer import AudioBufferStore
    from src.recap.meetings.delivery import SummaryPoster
    from src.recap.meetings.events import EventBroadcaster
    from src.recap.meetings.transcript_log import TranscriptLog
    from src.recap.services.speech import WhisperTranscriber
    from src.recap.services.summarization import TranscriptSummarizer

logger = structlog.get_logger(__name__)

TRANSCRIPTION_INTERVAL_SECONDS = 30.0
DEFAULT_SUMMARY_INTERVAL_MINUTES = 5
SHUTDOWN_GRACE_SECONDS = 10.0


@dataclass
class MeetingSession:
    """State for one active meeting pipeline."""

    meeting_id: str
    audio_source_key: str
    destination: ChatDestination
    transcription_interval_seconds: float
    summary_interval_minutes: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stopped: bool = False
    tasks: list[asyncio.Task] = field(default_factory=list)

    @property
    def summary_interval_seconds(self) -> float:
        return self.summary_interval_minutes * 60.0

    def view(self) -> MeetingSessionView:
        return MeetingSessionView(
            meeting_id=self.meeting_id,
            audio_source_key=self.audio_source_key,
            destination=self.destination,
            transcription_interval_seconds=self.transcription_interval_seconds,
            summary_interval_seconds=self.summary_interval_seconds,
            started_at=self.started_at,
        )


class MeetingManager:
    """Coordinates the audio -> transcript -> summary pipeline per meeting.

    Args:
        audio_buffers: Shared store written by the ingestion feed.
        transcript_log: Shared per-meeting transcript accumulator.
        transcriber: Speech stage (``async transcribe(bytes) -> str``).
        summarizer: Summary stage (``async summarize(str) -> str``).
        poster: Delivery sink (``async post(destination, text, minutes)``).
        summary_interval_minutes: Period of the summary timer.
        transcription_interval_seconds: Period of the transcription timer.
        broadcaster: Optional EventBroadcaster for live subscribers.
    """

    def __init__(
        self,
        audio_buffers: AudioBufferStore,
        transcript_log: TranscriptLog,
        transcriber: WhisperTranscriber,
        summarizer: TranscriptSummarizer,
        poster: SummaryPoster,
        summary_interval_minutes: int = DEFAULT_SUMMARY_INTERVAL_MINUTES,
        transcription_interval_seconds: float = TRANSCRIPTION_INTERVAL_SECONDS,
        broadcaster: EventBroadcaster | None = None,
    ) -> None:
        self._audio = audio_buffers
        self._transcripts = transcript_log
        self._transcriber = transcriber
        self._summarizer = summarizer
        self._poster = poster
        self._summary_interval_minutes = summary_interval_minutes
        self._transcription_interval_seconds = transcription_interval_seconds
        self._broadcaster = broadcaster
        self._sessions: dict[str, MeetingSession] = {}
        # Strong references to running tick tasks
        self._inflight: set[asyncio.Task] = set()

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(
        self,
        meeting_id: str,
        audio_source_key: str,
        destination: ChatDestination,
    ) -> MeetingSessionView:
        """Arm both timers for a meeting, replacing any existing session.

        Must be called from inside the running event loop.
        """
        if meeting_id in self._sessions:
            logger.warning("meeting.already_active_restarting", meeting_id=meeting_id)
            self.stop(meeting_id)

        self._audio.open(audio_source_key)
        self._transcripts.open(meeting_id)

        session = MeetingSession(
            meeting_id=meeting_id,
            audio_source_key=audio_source_key,
            destination=destination,
            transcription_interval_seconds=self._transcription_interval_seconds,
            summary_interval_minutes=self._summary_interval_minutes,
        )
        session.tasks = [
            asyncio.create_task(
                self._interval_loop(
                    session,
                    "transcription",
                    session.transcription_interval_seconds,
                    self._transcription_tick,
                ),
                name=f"transcription_timer_{meeting_id}",
            ),
            asyncio.create_task(
                self._interval_loop(
                    session,
                    "summary",
                    session.summary_interval_seconds,
                    self._summary_tick,
                ),
                name=f"summary_timer_{meeting_id}",
            ),
        ]
        self._sessions[meeting_id] = session
        active_meetings.set(len(self._sessions))

        logger.info(
            "meeting.started",
            meeting_id=meeting_id,
            audio_source_key=audio_source_key,
            summary_interval_minutes=session.summary_interval_minutes,
        )
        self._publish(meeting_id, MeetingEventType.STATUS, "Started")
        return session.view()

    def stop(self, meeting_id: str) -> bool:
        """Cancel a meeting's timers and discard its buffered audio and text.

        Returns:
            True if a session was stopped, False if none was active.
        """
        session = self._sessions.pop(meeting_id, None)
        if session is None:
            logger.warning("meeting.stop_unknown", meeting_id=meeting_id)
            return False

        session.stopped = True
        for task in session.tasks:
            task.cancel()

        self._audio.remove(session.audio_source_key)
        self._transcripts.remove(meeting_id)
        active_meetings.set(len(self._sessions))

        logger.info("meeting.stopped", meeting_id=meeting_id)
        self._publish(meeting_id, MeetingEventType.STATUS, "Stopped")
        return True

    def stop_all(self) -> int:
        """Stop every active meeting. Returns the number stopped."""
        meeting_ids = list(self._sessions)
        logger.info("meeting.stopping_all", count=len(meeting_ids))
        for meeting_id in meeting_ids:
            self.stop(meeting_id)
        return len(meeting_ids)

    async def shutdown(self, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Stop all meetings, then wait for running ticks.

        Ticks still running after ``grace_seconds`` are cancelled, so nothing
        is left pending when the event loop closes.
        """
        loops = [task for session in self._sessions.values() for task in session.tasks]
        self.stop_all()
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)

        ticks = set(self._inflight)
        if not ticks:
            return
        _, pending = await asyncio.wait(ticks, timeout=grace_seconds)
        if pending:
            logger.warning("meeting.ticks_cancelled_at_shutdown", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Introspection ────────────────────────────────────────────────────

    def list_active(self) -> set[str]:
        return set(self._sessions)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get_session(self, meeting_id: str) -> MeetingSessionView | None:
        session = self._sessions.get(meeting_id)
        return session.view() if session is not None else None

    def current_transcript(self, meeting_id: str) -> str:
        """Undrained transcript text for a meeting."""
        return self._transcripts.peek(meeting_id)

    # ── Tick Handlers ────────────────────────────────────────────────────

    async def run_transcription_tick(self, meeting_id: str) -> str:
        """Run one transcription tick for an active meeting immediately."""
        session = self._sessions.get(meeting_id)
        if session is None:
            logger.warning("transcription.tick_unknown_meeting", meeting_id=meeting_id)
            return ""
        return await self._transcription_tick(session)

    async def run_summary_tick(self, meeting_id: str) -> str | None:
        """Run one summary tick for an active meeting immediately."""
        session = self._sessions.get(meeting_id)
        if session is None:
            logger.warning("summary.tick_unknown_meeting", meeting_id=meeting_id)
            return None
        return await self._summary_tick(session)

    async def _transcription_tick(self, session: MeetingSession) -> str:
        meeting_id = session.meeting_id
        try:
            if not self._audio.has_data(session.audio_source_key):
                logger.debug("transcription.no_audio", meeting_id=meeting_id)
                record_tick("transcription", "no_audio")
                return ""

            audio = self._audio.drain_all(session.audio_source_key)
            if not audio:
                record_tick("transcription", "no_audio")
                return ""

            logger.info("transcription.processing", meeting_id=meeting_id, bytes=len(audio))
            text = await self._transcriber.transcribe(audio)
            if not text:
                record_tick("transcription", "empty")
                return ""

            if self._transcripts.append(meeting_id, text):
                self._publish(meeting_id, MeetingEventType.TRANSCRIPT, text)
            logger.info("transcription.appended", meeting_id=meeting_id, chars=len(text))
            record_tick("transcription", "ok")
            return text
        except Exception:
            logger.exception("transcription.tick_failed", meeting_id=meeting_id)
            record_tick("transcription", "error")
            return ""

    async def _summary_tick(self, session: MeetingSession) -> str | None:
        meeting_id = session.meeting_id
        try:
            transcript = self._transcripts.drain_and_join(meeting_id)
            if not transcript:
                logger.info("summary.no_transcript", meeting_id=meeting_id)
                record_tick("summary", "no_transcript")
                return None

            logger.info("summary.summarizing", meeting_id=meeting_id, chars=len(transcript))
            summary = await self._summarizer.summarize(transcript)
            await self._poster.post(
                session.destination,
                summary,
                session.summary_interval_minutes,
            )
            self._publish(meeting_id, MeetingEventType.SUMMARY, summary)
            logger.info("summary.posted", meeting_id=meeting_id)
            record_tick("summary", "ok")
            return summary
        except SummarizationError as exc:
            logger.error("summary.failed", meeting_id=meeting_id, error=str(exc))
            self._publish(meeting_id, MeetingEventType.ERROR, str(exc))
            record_tick("summary", "failed")
            return None
        except Exception:
            logger.exception("summary.tick_failed", meeting_id=meeting_id)
            record_tick("summary", "error")
            return None

    # ── Scheduling ───────────────────────────────────────────────────────

    async def _interval_loop(
        self,
        session: MeetingSession,
        stage: str,
        period: float,
        tick: Callable[[MeetingSession], Coroutine[object, object, object]],
    ) -> None:
        """Start ``tick`` every ``period`` seconds until stopped.

        Due times advance by exactly ``period`` and ticks run as their own
        tasks, so a slow tick neither delays the next one nor is cancelled
        with the loop. Due times missed entirely (a blocked event loop) are
        skipped rather than fired in a burst.
        """
        loop = asyncio.get_running_loop()
        next_due = loop.time() + period
        try:
            while not session.stopped:
                await asyncio.sleep(max(0.0, next_due - loop.time()))
                if session.stopped:
                    break
                self._spawn_tick(session, stage, tick)

                next_due += period
                now = loop.time()
                if next_due <= now:
                    logger.warning(
                        "meeting.timer_fell_behind",
                        meeting_id=session.meeting_id,
                        stage=stage,
                        late_seconds=round(now - next_due, 3),
                    )
                    next_due = now + period
        except asyncio.CancelledError:
            logger.debug("meeting.timer_cancelled", meeting_id=session.meeting_id, stage=stage)

    def _spawn_tick(
        self,
        session: MeetingSession,
        stage: str,
        tick: Callable[[MeetingSession], Coroutine[object, object, object]],
    ) -> None:
        tick_task = asyncio.create_task(
            tick(session), name=f"{stage}_tick_{session.meeting_id}"
        )
        self._inflight.add(tick_task)
        tick_task.add_done_callback(self._inflight.discard)

    def _publish(self, meeting_id: str, event_type: MeetingEventType, data: str) -> None:
        if self._broadcaster is not None:
            self._broadcaster.publish(meeting_id, event_type, data)
