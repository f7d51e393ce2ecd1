"""REST and Server-Sent Events endpoints for meeting pipelines.

The call controller starts a meeting pipeline when the bot joins a call and
stops it when the call ends. Dashboards can peek at the undrained transcript
or follow live pipeline events over SSE.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from src.recap.api.deps import get_broadcaster, get_meeting_manager
from src.recap.config import get_settings
from src.recap.meetings.events import EventBroadcaster
from src.recap.meetings.lifecycle import MeetingManager
from src.recap.meetings.schemas import ChatDestination, MeetingEvent, MeetingSessionView

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])

SSE_PING_SECONDS = 15
SSE_POLL_SECONDS = 1.0


# ── Request / Response Schemas ───────────────────────────────────────────────


class StartMeetingRequest(BaseModel):
    """Body for POST /meetings."""

    meeting_id: str = Field(min_length=1)
    audio_source_key: str = Field(min_length=1)
    destination: ChatDestination | None = None


class ActiveMeetingsResponse(BaseModel):
    meeting_ids: list[str]
    count: int


class TranscriptResponse(BaseModel):
    meeting_id: str
    transcript: str


# ── Lifecycle ────────────────────────────────────────────────────────────────


@router.post("", status_code=status.HTTP_201_CREATED, response_model=MeetingSessionView)
async def start_meeting(
    body: StartMeetingRequest,
    manager: MeetingManager = Depends(get_meeting_manager),
) -> MeetingSessionView:
    """Arm the transcription and summary timers for a meeting.

    Starting a meeting that is already active restarts it with fresh state.
    When no destination is given the configured default chat space is used.
    """
    destination = body.destination
    if destination is None:
        space_id = get_settings().GOOGLE_CHAT_SPACE_ID
        if not space_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="No destination given and no default chat space configured",
            )
        destination = ChatDestination(space_name=space_id)

    return manager.start(body.meeting_id, body.audio_source_key, destination)


@router.delete("/{meeting_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_meeting(
    meeting_id: str,
    manager: MeetingManager = Depends(get_meeting_manager),
) -> Response:
    """Stop a meeting's timers and discard its buffered state. Idempotent."""
    manager.stop(meeting_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("", response_model=ActiveMeetingsResponse)
async def list_meetings(
    manager: MeetingManager = Depends(get_meeting_manager),
) -> ActiveMeetingsResponse:
    meeting_ids = sorted(manager.list_active())
    return ActiveMeetingsResponse(meeting_ids=meeting_ids, count=len(meeting_ids))


@router.get("/{meeting_id}", response_model=MeetingSessionView)
async def get_meeting(
    meeting_id: str,
    manager: MeetingManager = Depends(get_meeting_manager),
) -> MeetingSessionView:
    session = manager.get_session(meeting_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not active")
    return session


@router.get("/{meeting_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    meeting_id: str,
    manager: MeetingManager = Depends(get_meeting_manager),
) -> TranscriptResponse:
    """Transcript text accumulated since the last summary, without draining it."""
    if meeting_id not in manager.list_active():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not active")
    return TranscriptResponse(
        meeting_id=meeting_id,
        transcript=manager.current_transcript(meeting_id),
    )


# ── Live Events (SSE) ────────────────────────────────────────────────────────


def to_sse(event: MeetingEvent) -> dict[str, str]:
    """Render one MeetingEvent as an EventSourceResponse item."""
    return {
        "event": event.type.value,
        "data": json.dumps(event.model_dump(mode="json")),
    }


async def _event_stream(
    request: Request,
    broadcaster: EventBroadcaster,
    meeting_id: str,
) -> AsyncIterator[dict[str, str]]:
    async with broadcaster.subscribe(meeting_id) as queue:
        logger.info("events.subscribed", meeting_id=meeting_id)
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
                yield to_sse(event)
        finally:
            logger.info("events.unsubscribed", meeting_id=meeting_id)


@router.get("/{meeting_id}/events")
async def stream_events(
    meeting_id: str,
    request: Request,
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> EventSourceResponse:
    """Server-Sent Events stream of status, transcript, summary and error events."""
    return EventSourceResponse(
        _event_stream(request, broadcaster, meeting_id),
        ping=SSE_PING_SECONDS,
    )
