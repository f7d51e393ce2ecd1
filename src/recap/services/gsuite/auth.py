"""Service-account credentials and client construction for Google Chat.

Summaries are posted as the Chat app itself, so there is no domain-wide
delegation: the key file is loaded with the bot scope and the discovery
client is built once, lazily, on the first post.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

logger = structlog.get_logger(__name__)

CHAT_SCOPES = ["https://www.googleapis.com/auth/chat.bot"]


class GSuiteAuthManager:
    """Owns the Chat app's service-account key and its API client.

    A bad key file surfaces on the first summary post (where SummaryPoster
    logs it) instead of preventing startup.
    """

    def __init__(
        self,
        service_account_file: str,
        scopes: Sequence[str] = CHAT_SCOPES,
    ) -> None:
        self._key_file = service_account_file
        self._scopes = list(scopes)
        self._chat_client: Any | None = None

    def load_credentials(self) -> service_account.Credentials:
        return service_account.Credentials.from_service_account_file(
            self._key_file,
            scopes=self._scopes,
        )

    def get_chat_service(self) -> Any:
        """Chat API v1 resource, built on first call and reused afterwards."""
        if self._chat_client is None:
            logger.info("chat.building_client", scopes=self._scopes)
            self._chat_client = build(
                "chat",
                "v1",
                credentials=self.load_credentials(),
                cache_discovery=False,
            )
        return self._chat_client
