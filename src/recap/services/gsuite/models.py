"""Pydantic schemas for Google Chat message models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """Plain-text chat message to send via Google Chat API."""

    space_name: str
    text: str
    thread_key: str | None = None


class CardMessage(BaseModel):
    """Rich card message (cardsV2) to send via Google Chat API."""

    space_name: str
    card_id: str
    card: dict[str, Any] = Field(default_factory=dict)
    thread_key: str | None = None


class SentChatResult(BaseModel):
    """Result from sending a chat message via Google Chat API."""

    message_name: str
    create_time: str
