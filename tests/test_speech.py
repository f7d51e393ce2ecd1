"""Tests for the Whisper transcription stage.

All HTTP calls are mocked at httpx.AsyncClient.post -- no network needed.
Validates the WAV framing, the short-audio threshold, retry behavior for
transient failures, and that every failure degrades to an empty string.
"""

from __future__ import annotations

import struct
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.recap.services.entra import CredentialError
from src.recap.services.speech import (
    MIN_AUDIO_BYTES,
    WhisperTranscriber,
    build_wav,
    is_transient_status,
)


ENDPOINT = "https://speech.example.com/openai/deployments/whisper/audio/transcriptions"


def _pcm(num_bytes: int) -> bytes:
    return b"\x00" * num_bytes


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_post():
    with patch.object(httpx.AsyncClient, "post", new_callable=AsyncMock) as post:
        post.return_value = httpx.Response(200, text="  hello world \n")
        yield post


@pytest.fixture
def transcriber():
    return WhisperTranscriber(endpoint=ENDPOINT, api_key="key-123", retry_delay=0)


def _sent_wav(mock_post) -> bytes:
    files = mock_post.call_args.kwargs["files"]
    filename, payload, content_type = files["file"]
    assert filename == "audio.wav"
    assert content_type == "audio/wav"
    return payload


# ── WAV Framing ──────────────────────────────────────────────────────────────


class TestBuildWav:

    def test_header_fields_for_forty_thousand_bytes(self):
        pcm = _pcm(40000)
        wav = build_wav(pcm)

        assert len(wav) == 44 + 40000
        (
            riff, riff_size, wave, fmt, fmt_size, audio_format, channels,
            sample_rate, byte_rate, block_align, bits, data, data_size,
        ) = struct.unpack("<4sI4s4sIHHIIHH4sI", wav[:44])

        assert riff == b"RIFF"
        assert riff_size == 36 + 40000
        assert wave == b"WAVE"
        assert fmt == b"fmt "
        assert fmt_size == 16
        assert audio_format == 1
        assert channels == 1
        assert sample_rate == 16000
        assert byte_rate == 32000
        assert block_align == 2
        assert bits == 16
        assert data == b"data"
        assert data_size == 40000
        assert wav[44:] == pcm


class TestTransientStatus:

    @pytest.mark.parametrize("code", [429, 500, 502, 503])
    def test_transient(self, code):
        assert is_transient_status(code)

    @pytest.mark.parametrize("code", [400, 401, 403, 404])
    def test_permanent(self, code):
        assert not is_transient_status(code)


# ── Transcribe ───────────────────────────────────────────────────────────────


class TestTranscribe:

    async def test_uploads_wav_and_returns_trimmed_text(self, transcriber, mock_post):
        result = await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES))

        assert result == "hello world"
        mock_post.assert_awaited_once()
        assert mock_post.call_args.args[0] == ENDPOINT
        assert mock_post.call_args.kwargs["data"] == {"response_format": "text"}
        assert mock_post.call_args.kwargs["headers"] == {"api-key": "key-123"}

        wav = _sent_wav(mock_post)
        assert wav[:4] == b"RIFF"
        assert struct.unpack("<I", wav[4:8])[0] == 36 + MIN_AUDIO_BYTES
        assert struct.unpack("<I", wav[24:28])[0] == 16000

    async def test_short_audio_makes_no_remote_call(self, transcriber, mock_post):
        result = await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES - 1))

        assert result == ""
        mock_post.assert_not_awaited()

    async def test_bearer_token_when_no_api_key(self, mock_post):
        provider = AsyncMock()
        provider.get_token.return_value = "tok-abc"
        transcriber = WhisperTranscriber(
            endpoint=ENDPOINT, token_provider=provider, retry_delay=0
        )

        await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES))

        assert mock_post.call_args.kwargs["headers"] == {"Authorization": "Bearer tok-abc"}

    async def test_credential_failure_returns_empty(self, mock_post):
        provider = AsyncMock()
        provider.get_token.side_effect = CredentialError("denied")
        transcriber = WhisperTranscriber(
            endpoint=ENDPOINT, token_provider=provider, retry_delay=0
        )

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == ""
        mock_post.assert_not_awaited()


class TestRetries:
    """Transient failures are retried twice; everything else fails fast."""

    async def test_transient_then_success(self, transcriber, mock_post):
        mock_post.side_effect = [
            httpx.Response(503, text="busy"),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, text="recovered"),
        ]

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == "recovered"
        assert mock_post.await_count == 3

    async def test_retries_exhausted_returns_empty(self, transcriber, mock_post):
        mock_post.side_effect = [httpx.Response(500, text="down")] * 3

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == ""
        assert mock_post.await_count == 3

    async def test_client_error_not_retried(self, transcriber, mock_post):
        mock_post.return_value = httpx.Response(400, text="bad audio")

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == ""
        assert mock_post.await_count == 1

    async def test_network_error_retried(self, transcriber, mock_post):
        mock_post.side_effect = [
            httpx.ConnectError("connection refused"),
            httpx.Response(200, text="after reconnect"),
        ]

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == "after reconnect"
        assert mock_post.await_count == 2

    async def test_persistent_network_error_returns_empty(self, transcriber, mock_post):
        mock_post.side_effect = httpx.ReadTimeout("timed out")

        assert await transcriber.transcribe(_pcm(MIN_AUDIO_BYTES)) == ""
        assert mock_post.await_count == 3
