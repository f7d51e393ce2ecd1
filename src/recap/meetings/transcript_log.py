"""Per-meeting transcript accumulation between the transcription and summary timers."""

from __future__ import annotations

import threading

import structlog

from src.recap.meetings.audio_buffer import CLOSED_KEY_LIMIT, RecentlyClosedKeys

logger = structlog.get_logger(__name__)


class TranscriptLog:
    """Ordered transcript fragments per meeting with atomic drain-and-join.

    Same contract as AudioBufferStore: ``remove`` closes the key to late
    appends until ``open`` is called again, and only the most recent
    ``closed_key_limit`` closures are remembered.
    """

    SEPARATOR = " "

    def __init__(self, closed_key_limit: int = CLOSED_KEY_LIMIT) -> None:
        self._lock = threading.Lock()
        self._fragments: dict[str, list[str]] = {}
        self._closed = RecentlyClosedKeys(closed_key_limit)

    def open(self, key: str) -> None:
        with self._lock:
            self._closed.discard(key)

    def append(self, key: str, text: str) -> bool:
        """Append a fragment for ``key``. Returns False if the key is closed."""
        with self._lock:
            if key in self._closed:
                accepted = False
            else:
                self._fragments.setdefault(key, []).append(text)
                accepted = True
        if not accepted:
            logger.debug("transcript_log.append_after_close", meeting_id=key, chars=len(text))
        return accepted

    def drain_and_join(self, key: str) -> str:
        """Atomically join all fragments with single spaces and clear them."""
        with self._lock:
            fragments = self._fragments.get(key)
            if not fragments:
                return ""
            self._fragments[key] = []
        return self.SEPARATOR.join(fragments)

    def peek(self, key: str) -> str:
        """Joined fragments without clearing (introspection only)."""
        with self._lock:
            fragments = list(self._fragments.get(key, ()))
        return self.SEPARATOR.join(fragments)

    def remove(self, key: str) -> None:
        with self._lock:
            self._fragments.pop(key, None)
            self._closed.add(key)
        logger.info("transcript_log.removed", meeting_id=key)
