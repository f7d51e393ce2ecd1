"""Google Workspace chat delivery.

Provides an async-wrapped Google Chat service for posting plain-text and
card messages using service account authentication.
"""

from src.recap.services.gsuite.auth import GSuiteAuthManager
from src.recap.services.gsuite.chat import ChatService
from src.recap.services.gsuite.models import (
    CardMessage,
    ChatMessage,
    SentChatResult,
)

__all__ = [
    "CardMessage",
    "ChatMessage",
    "ChatService",
    "GSuiteAuthManager",
    "SentChatResult",
]
