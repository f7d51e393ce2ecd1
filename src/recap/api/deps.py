"""FastAPI dependencies for the pipeline components held on app.state.

The lifespan in main.py builds one MeetingManager, EventBroadcaster and
AudioFrameHandler per process and stores them on ``app.state``. Endpoints
pull them through these dependencies and answer 503 while they are absent
(before startup completes, or in a test app that did not install them).
"""

from __future__ import annotations

from fastapi import HTTPException, Request, WebSocket, status

from src.recap.meetings.events import EventBroadcaster
from src.recap.meetings.ingest import AudioFrameHandler
from src.recap.meetings.lifecycle import MeetingManager


def _require(state: object, name: str) -> object:
    component = getattr(state, name, None)
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available",
        )
    return component


async def get_meeting_manager(request: Request) -> MeetingManager:
    """Retrieve the MeetingManager from app.state, 503 if not available."""
    return _require(request.app.state, "meeting_manager")


async def get_broadcaster(request: Request) -> EventBroadcaster:
    """Retrieve the EventBroadcaster from app.state, 503 if not available."""
    return _require(request.app.state, "event_broadcaster")


def get_frame_handler(websocket: WebSocket) -> AudioFrameHandler | None:
    """AudioFrameHandler for the ingestion socket, or None before startup."""
    return getattr(websocket.app.state, "frame_handler", None)
