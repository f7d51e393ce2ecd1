"""Batch speech-to-text against an Azure OpenAI Whisper deployment.

Provides WhisperTranscriber, which wraps drained PCM in a WAV container and
uploads it as multipart form data requesting plain-text output. Transient
failures (429, 5xx, transport errors) are retried with a fixed delay via
tenacity. Every failure ends in an empty transcript rather than an exception:
a missed transcription window is acceptable loss, the next tick carries on.

Exports:
    WhisperTranscriber: Async transcription client.
    build_wav: 44-byte RIFF/WAVE header + PCM payload.
"""

from __future__ import annotations

import struct
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.recap.core.monitoring import track_remote_call

logger = structlog.get_logger(__name__)

# Fixed input format from the media stream: 16 kHz mono 16-bit signed PCM
SAMPLE_RATE = 16000
CHANNELS = 1
BITS_PER_SAMPLE = 16

# One second of audio at the fixed format
MIN_AUDIO_BYTES = 32000

MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0


class TransientSpeechError(Exception):
    """Rate-limit or server-side failure from the speech endpoint."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"Speech endpoint returned {status_code}: {detail}")
        self.status_code = status_code


class PermanentSpeechError(Exception):
    """Client-side failure that will not succeed on retry."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"Speech endpoint returned {status_code}: {detail}")
        self.status_code = status_code


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def build_wav(
    pcm: bytes,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
    bits_per_sample: int = BITS_PER_SAMPLE,
) -> bytes:
    """Prefix raw little-endian PCM with a canonical 44-byte WAV header."""
    byte_rate = sample_rate * channels * bits_per_sample // 8
    block_align = channels * bits_per_sample // 8
    data_size = len(pcm)

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + pcm


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "transcription.transient_error_retrying",
        attempt=retry_state.attempt_number,
        status_code=getattr(exc, "status_code", None),
        error=str(exc),
    )


class WhisperTranscriber:
    """Async client for the Whisper transcription endpoint.

    Authenticates with an ``api-key`` header when ``api_key`` is given,
    otherwise with a bearer token from ``token_provider``.

    Args:
        endpoint: Full transcription URL including deployment and api-version.
        api_key: Static API key (api-key auth mode).
        token_provider: Object with ``async get_token() -> str`` (Entra mode).
        timeout: HTTP timeout per attempt.
        retry_delay: Fixed delay between attempts in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        token_provider: Any = None,
        timeout: float = 30.0,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self._endpoint = endpoint
        self._api_key = api_key
        self._token_provider = token_provider
        self._timeout = timeout
        self._retry_delay = retry_delay

    async def transcribe(self, pcm: bytes) -> str:
        """Transcribe 16 kHz mono PCM16 audio.

        Returns:
            Trimmed transcript text, or ``""`` for short audio and for any
            failure (after retries for transient ones).
        """
        if len(pcm) < MIN_AUDIO_BYTES:
            logger.info("transcription.skipped_short_audio", bytes=len(pcm))
            return ""

        wav = build_wav(pcm)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(MAX_RETRIES + 1),
                wait=wait_fixed(self._retry_delay),
                retry=retry_if_exception_type((TransientSpeechError, httpx.TransportError)),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    text = await self._post_once(wav)
        except (TransientSpeechError, httpx.TransportError) as exc:
            logger.error("transcription.retries_exhausted", error=str(exc))
            return ""
        except PermanentSpeechError as exc:
            logger.error(
                "transcription.request_rejected",
                status_code=exc.status_code,
                error=str(exc),
            )
            return ""
        except Exception:
            logger.exception("transcription.failed_unexpectedly")
            return ""

        return text

    async def _auth_headers(self) -> dict[str, str]:
        if self._api_key:
            return {"api-key": self._api_key}
        token = await self._token_provider.get_token()
        return {"Authorization": f"Bearer {token}"}

    async def _post_once(self, wav: bytes) -> str:
        headers = await self._auth_headers()
        async with track_remote_call("speech") as tracker:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._endpoint,
                    headers=headers,
                    files={"file": ("audio.wav", wav, "audio/wav")},
                    data={"response_format": "text"},
                )
            tracker["status"] = str(response.status_code)

        if response.status_code >= 400:
            if is_transient_status(response.status_code):
                raise TransientSpeechError(response.status_code, response.text)
            raise PermanentSpeechError(response.status_code, response.text)

        return response.text.strip()
