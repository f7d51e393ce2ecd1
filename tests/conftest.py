"""Shared test fixtures for the meeting recap service.

Provides:
- Fresh AudioBufferStore and TranscriptLog instances
- Settings cache reset around tests that change the environment
"""

from __future__ import annotations

import pytest

from src.recap.config import get_settings
from src.recap.meetings.audio_buffer import AudioBufferStore
from src.recap.meetings.transcript_log import TranscriptLog


@pytest.fixture
def audio_store() -> AudioBufferStore:
    return AudioBufferStore()


@pytest.fixture
def transcript_log() -> TranscriptLog:
    return TranscriptLog()


@pytest.fixture
def clear_settings_cache():
    """Drop the cached Settings before and after the test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

