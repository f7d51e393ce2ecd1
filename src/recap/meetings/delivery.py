"""SummaryPoster -- delivers interval summaries to the meeting's chat space.

Delivery flow:
1. Render a card (title, interval label, summary body, generation time)
2. Send it through the chat gateway
3. If the card send fails, send the same content as plain text
4. If that fails too, log and drop -- never raise into the timer tick

Exports:
    SummaryPoster: Delivery sink used by the lifecycle manager.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.recap.meetings.schemas import ChatDestination
from src.recap.services.gsuite.models import CardMessage, ChatMessage

logger = structlog.get_logger(__name__)

SUMMARY_TITLE = "Meeting Summary"


class SummaryPoster:
    """Posts summaries through a chat gateway with a plain-text fallback.

    Args:
        chat_service: Gateway exposing ``send_card(CardMessage)`` and
            ``send_message(ChatMessage)`` coroutines (ChatService in
            production). If None, summaries are only logged.
        clock: Returns the current time for the "Generated at" line.
    """

    def __init__(
        self,
        chat_service: Any | None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._chat_service = chat_service
        self._clock = clock

    async def post(
        self,
        destination: ChatDestination,
        summary_text: str,
        interval_minutes: int,
    ) -> bool:
        """Post one summary. Returns True if either format was delivered."""
        generated_at = self._clock()

        if self._chat_service is None:
            logger.info(
                "summary.delivery_logged",
                space=destination.space_name,
                summary_preview=summary_text[:200],
            )
            return False

        card = CardMessage(
            space_name=destination.space_name,
            card_id=f"summary-{uuid.uuid4().hex[:12]}",
            card=_build_summary_card(summary_text, interval_minutes, generated_at),
            thread_key=destination.thread_key,
        )
        try:
            await self._chat_service.send_card(card)
            logger.info("summary.card_posted", space=destination.space_name)
            return True
        except Exception:
            logger.error(
                "summary.card_failed_falling_back",
                space=destination.space_name,
                exc_info=True,
            )

        message = ChatMessage(
            space_name=destination.space_name,
            text=_build_plain_text(summary_text, interval_minutes, generated_at),
            thread_key=destination.thread_key,
        )
        try:
            await self._chat_service.send_message(message)
            logger.info("summary.text_posted", space=destination.space_name)
            return True
        except Exception:
            logger.error(
                "summary.post_failed",
                space=destination.space_name,
                exc_info=True,
            )
            return False


# ── Rendering ────────────────────────────────────────────────────────────────


def _interval_label(interval_minutes: int) -> str:
    return f"Last {interval_minutes} minutes"


def _format_timestamp(generated_at: datetime) -> str:
    return generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def _build_summary_card(
    summary: str,
    interval_minutes: int,
    generated_at: datetime,
) -> dict[str, Any]:
    """Google Chat cardsV2 card body for a summary."""
    return {
        "header": {
            "title": SUMMARY_TITLE,
            "subtitle": _interval_label(interval_minutes),
        },
        "sections": [
            {
                "widgets": [
                    {"textParagraph": {"text": summary}},
                ],
            },
            {
                "widgets": [
                    {
                        "textParagraph": {
                            "text": f"<i>Generated at {_format_timestamp(generated_at)}</i>",
                        },
                    },
                ],
            },
        ],
    }


def _build_plain_text(
    summary: str,
    interval_minutes: int,
    generated_at: datetime,
) -> str:
    return (
        f"*{SUMMARY_TITLE}* ({_interval_label(interval_minutes)})\n\n"
        f"{summary}\n\n"
        f"_Generated at {_format_timestamp(generated_at)}_"
    )
