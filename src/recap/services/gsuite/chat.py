"""Async Google Chat API service for sending messages to spaces.

All Google API calls are wrapped in asyncio.to_thread() to avoid
blocking the event loop while other meetings' timers are due.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from src.recap.services.gsuite.auth import GSuiteAuthManager
from src.recap.services.gsuite.models import CardMessage, ChatMessage, SentChatResult

logger = structlog.get_logger(__name__)

THREAD_REPLY_OPTION = "REPLY_MESSAGE_FALLBACK_TO_NEW_THREAD"


class ChatService:
    """Async wrapper around Google Chat API for sending messages to spaces."""

    def __init__(self, auth_manager: GSuiteAuthManager) -> None:
        self._auth = auth_manager

    async def send_message(self, message: ChatMessage) -> SentChatResult:
        """Send a plain-text message to a Google Chat space.

        When thread_key is provided, replies to that thread or creates it.
        """
        logger.info(
            "sending_chat_message",
            space=message.space_name,
            thread_key=message.thread_key,
        )
        return await self._create(
            message.space_name, {"text": message.text}, message.thread_key
        )

    async def send_card(self, message: CardMessage) -> SentChatResult:
        """Send a cardsV2 message to a Google Chat space."""
        body = {
            "cardsV2": [
                {"cardId": message.card_id, "card": message.card},
            ],
        }
        logger.info(
            "sending_chat_card",
            space=message.space_name,
            card_id=message.card_id,
            thread_key=message.thread_key,
        )
        return await self._create(message.space_name, body, message.thread_key)

    async def _create(
        self,
        space_name: str,
        message_body: dict[str, Any],
        thread_key: str | None,
    ) -> SentChatResult:
        service = self._auth.get_chat_service()

        kwargs: dict[str, Any] = {
            "parent": space_name,
            "body": message_body,
        }

        if thread_key:
            kwargs["messageReplyOption"] = THREAD_REPLY_OPTION
            message_body["thread"] = {"threadKey": thread_key}

        def _send() -> dict:
            return (
                service.spaces()
                .messages()
                .create(**kwargs)
                .execute()
            )

        result = await asyncio.to_thread(_send)

        return SentChatResult(
            message_name=result.get("name", ""),
            create_time=result.get("createTime", ""),
        )
