"""Per-source raw audio buffering between the ingestion feed and the transcription timer.

The ingestion feed appends PCM chunks as they arrive over the media stream;
the transcription tick drains everything buffered so far. Both sides hit the
same key concurrently, so every mutating operation runs under one lock and
never suspends while holding it.

Exports:
    AudioBufferStore: Keyed, lock-guarded chunk store with atomic drain.
    RecentlyClosedKeys: Bounded late-append guard shared with TranscriptLog.
"""

from __future__ import annotations

import threading
from collections import OrderedDict

import structlog

logger = structlog.get_logger(__name__)


# Closed keys remembered per store; older closures are forgotten first.
CLOSED_KEY_LIMIT = 1024


class RecentlyClosedKeys:
    """Bounded, insertion-ordered record of keys closed to late appends.

    Only the most recent ``limit`` closures are kept. A key that has aged out
    accepts appends again, the same as a key never seen. Callers hold their
    store lock around every method.
    """

    def __init__(self, limit: int = CLOSED_KEY_LIMIT) -> None:
        self._limit = limit
        self._keys: OrderedDict[str, None] = OrderedDict()

    def add(self, key: str) -> None:
        self._keys[key] = None
        self._keys.move_to_end(key)
        while len(self._keys) > self._limit:
            self._keys.popitem(last=False)

    def discard(self, key: str) -> None:
        self._keys.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class AudioBufferStore:
    """Holds ordered PCM chunks per audio source key.

    ``drain_all`` returns exactly the bytes appended since the previous drain
    and leaves the buffer empty. A key that has been ``remove``d is closed:
    late chunks for it are dropped until ``open`` is called again, or until
    ``closed_key_limit`` newer keys have been closed after it. Keys that
    were never seen accept appends, so audio that arrives before the meeting
    is started is kept.
    """

    def __init__(self, closed_key_limit: int = CLOSED_KEY_LIMIT) -> None:
        self._lock = threading.Lock()
        self._chunks: dict[str, list[bytes]] = {}
        self._closed = RecentlyClosedKeys(closed_key_limit)

    def open(self, key: str) -> None:
        """Re-enable appends for a key previously closed by ``remove``."""
        with self._lock:
            self._closed.discard(key)

    def append(self, key: str, chunk: bytes) -> bool:
        """Add a chunk to the tail of the buffer for ``key``.

        Returns:
            True if the chunk was stored, False if it was dropped because the
            key is closed or the chunk is empty.
        """
        if not chunk:
            return False
        with self._lock:
            if key in self._closed:
                dropped = True
            else:
                dropped = False
                chunks = self._chunks.setdefault(key, [])
                chunks.append(bytes(chunk))
                count = len(chunks)
        if dropped:
            logger.debug("audio_buffer.append_after_close", source_key=key, bytes=len(chunk))
            return False
        if count % 100 == 0:
            logger.info("audio_buffer.progress", source_key=key, chunks=count)
        return True

    def drain_all(self, key: str) -> bytes:
        """Atomically concatenate and clear all chunks for ``key``.

        Returns ``b""`` when nothing is buffered.
        """
        with self._lock:
            chunks = self._chunks.get(key)
            if not chunks:
                return b""
            self._chunks[key] = []
        combined = b"".join(chunks)
        logger.debug("audio_buffer.drained", source_key=key, bytes=len(combined))
        return combined

    def has_data(self, key: str) -> bool:
        with self._lock:
            return bool(self._chunks.get(key))

    def buffered_bytes(self, key: str) -> int:
        with self._lock:
            return sum(len(chunk) for chunk in self._chunks.get(key, ()))

    def remove(self, key: str) -> None:
        """Discard everything buffered for ``key`` and close it to late appends."""
        with self._lock:
            self._chunks.pop(key, None)
            self._closed.add(key)
        logger.info("audio_buffer.removed", source_key=key)
