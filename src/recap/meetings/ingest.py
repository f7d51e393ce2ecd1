"""Media-streaming frame handler feeding the audio buffer store.

Frames arrive as JSON text over the ingestion WebSocket:

    {"kind": "AudioMetadata", "audioMetadata": {"encoding": "PCM",
     "sampleRate": 16000, "channels": 1, "length": 640}}
    {"kind": "AudioData", "audioData": {"data": "<base64 PCM>",
     "timestamp": "...", "participantRawID": "...", "silent": false}}

Metadata frames are logged. Silent audio frames are dropped. Everything
else is decoded and appended under the connection's audio source key.
Malformed frames are logged and skipped so one bad frame never closes
the connection.
"""

from __future__ import annotations

import base64
import binascii
import json
from enum import Enum
from typing import Any

import structlog

from src.recap.meetings.audio_buffer import AudioBufferStore

logger = structlog.get_logger(__name__)


class FrameOutcome(str, Enum):
    """What happened to one incoming frame."""

    BUFFERED = "buffered"
    SILENT = "silent"
    METADATA = "metadata"
    DROPPED = "dropped"
    MALFORMED = "malformed"
    UNKNOWN = "unknown"


class AudioFrameHandler:
    """Parses media-streaming frames and appends PCM to an AudioBufferStore."""

    def __init__(self, audio_buffers: AudioBufferStore) -> None:
        self._audio = audio_buffers

    def handle_message(self, source_key: str, raw: str | bytes) -> FrameOutcome:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("ingest.invalid_json", source_key=source_key)
            return FrameOutcome.MALFORMED

        if not isinstance(frame, dict):
            logger.warning("ingest.unexpected_frame", source_key=source_key)
            return FrameOutcome.MALFORMED

        kind = frame.get("kind", "")
        if kind == "AudioMetadata":
            return self._handle_metadata(source_key, frame.get("audioMetadata") or {})
        if kind == "AudioData":
            return self._handle_audio(source_key, frame.get("audioData"))

        logger.debug("ingest.unknown_kind", source_key=source_key, kind=kind)
        return FrameOutcome.UNKNOWN

    def _handle_metadata(self, source_key: str, metadata: dict[str, Any]) -> FrameOutcome:
        logger.info(
            "ingest.audio_metadata",
            source_key=source_key,
            encoding=metadata.get("encoding"),
            sample_rate=metadata.get("sampleRate"),
            channels=metadata.get("channels"),
            length=metadata.get("length"),
        )
        return FrameOutcome.METADATA

    def _handle_audio(self, source_key: str, audio_data: Any) -> FrameOutcome:
        if not isinstance(audio_data, dict) or not isinstance(audio_data.get("data"), str):
            logger.warning("ingest.missing_audio_data", source_key=source_key)
            return FrameOutcome.MALFORMED

        if audio_data.get("silent", False):
            return FrameOutcome.SILENT

        try:
            chunk = base64.b64decode(audio_data["data"], validate=True)
        except (binascii.Error, ValueError):
            logger.warning("ingest.invalid_base64", source_key=source_key)
            return FrameOutcome.MALFORMED

        if self._audio.append(source_key, chunk):
            return FrameOutcome.BUFFERED
        return FrameOutcome.DROPPED
