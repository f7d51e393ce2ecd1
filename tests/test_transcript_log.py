"""Tests for TranscriptLog accumulation and drain semantics."""

from __future__ import annotations

from src.recap.meetings.transcript_log import TranscriptLog


class TestTranscriptLog:

    def test_fragments_joined_with_single_space(self, transcript_log):
        transcript_log.append("M1", "hello")
        transcript_log.append("M1", "world")

        assert transcript_log.drain_and_join("M1") == "hello world"
        assert transcript_log.drain_and_join("M1") == ""

    def test_drain_unknown_meeting_returns_empty(self, transcript_log):
        assert transcript_log.drain_and_join("nope") == ""

    def test_each_fragment_summarized_once(self, transcript_log):
        transcript_log.append("M1", "first interval")
        assert transcript_log.drain_and_join("M1") == "first interval"

        transcript_log.append("M1", "second interval")
        assert transcript_log.drain_and_join("M1") == "second interval"

    def test_peek_does_not_clear(self, transcript_log):
        transcript_log.append("M1", "a")
        transcript_log.append("M1", "b")

        assert transcript_log.peek("M1") == "a b"
        assert transcript_log.drain_and_join("M1") == "a b"

    def test_meetings_are_isolated(self, transcript_log):
        transcript_log.append("M1", "one")
        transcript_log.append("M2", "two")

        assert transcript_log.drain_and_join("M2") == "two"
        assert transcript_log.peek("M1") == "one"

    def test_remove_discards_and_closes(self, transcript_log):
        transcript_log.append("M1", "pending")
        transcript_log.remove("M1")

        assert transcript_log.drain_and_join("M1") == ""
        assert transcript_log.append("M1", "late") is False
        assert transcript_log.peek("M1") == ""

    def test_open_after_remove_accepts_again(self, transcript_log):
        transcript_log.remove("M1")
        transcript_log.open("M1")

        assert transcript_log.append("M1", "back") is True
        assert transcript_log.drain_and_join("M1") == "back"

    def test_separator_is_single_space(self):
        assert TranscriptLog.SEPARATOR == " "

    def test_closed_meetings_stay_bounded(self):
        log = TranscriptLog(closed_key_limit=5)

        for i in range(200):
            log.append(f"M{i}", "words")
            log.remove(f"M{i}")

        assert len(log._closed) == 5
        assert log._fragments == {}
        assert log.append("M199", "late") is False
