"""Pydantic v2 schemas for the meeting pipeline domain.

Defines the data contracts shared by the lifecycle manager, delivery sink,
event broadcaster, and API layer: chat destinations, session views, and
pipeline events.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingEventType(str, Enum):
    """Kinds of pipeline events published to live subscribers."""

    STATUS = "status"
    TRANSCRIPT = "transcript"
    SUMMARY = "summary"
    ERROR = "error"


# ── Delivery ─────────────────────────────────────────────────────────────────


class ChatDestination(BaseModel):
    """Where a meeting's summaries are posted (a chat space, optionally a thread)."""

    space_name: str
    thread_key: str | None = None


# ── Session ──────────────────────────────────────────────────────────────────


class MeetingSessionView(BaseModel):
    """Read-only view of an active meeting pipeline."""

    meeting_id: str
    audio_source_key: str
    destination: ChatDestination
    transcription_interval_seconds: float
    summary_interval_seconds: float
    started_at: datetime


# ── Events ───────────────────────────────────────────────────────────────────


class MeetingEvent(BaseModel):
    """A single pipeline event for one meeting."""

    type: MeetingEventType
    data: str | dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
