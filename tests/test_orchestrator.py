"""
Tests for the assessment orchestrator.

Providers are fakes that return canned recognition results, and the
microphone is a FakeSource that never delivers audio.
"""

import pytest

from reading_assessor.errors import (
    error_handler, MicrophonePermissionDeniedError, NoSpeechDetectedError, RecognitionCancelledError,
    SessionAlreadyCompletedError, SessionStateError
)
from reading_assessor.models import AggregateResult
from reading_assessor.orchestrator import AssessmentOrchestrator
from reading_assessor.providers.base import TranscriptionProvider, no_speech_error, provider_unavailable
from reading_assessor.session import SessionState, SessionTracker, build_lock_key
from reading_assessor.session.tracker import SCORE_REQUIRED_MESSAGE


class FakeProvider(TranscriptionProvider):
    def __init__(self, name, transcript="the cat sat on the mat", available=True, error=None, on_recognize=None):
        self.name = name
        self.transcript = transcript
        self.available = available
        self.error = error
        self.on_recognize = on_recognize
        self.calls = 0

    def is_available(self):
        return self.available

    def recognize(self, sentence, token, recording):
        self.calls += 1
        assert recording.is_active
        if self.on_recognize is not None:
            self.on_recognize()
        if self.error is not None:
            raise self.error
        return AggregateResult(
            transcript=self.transcript,
            duration_ms=2000.0,
            word_count=len(self.transcript.split()),
            provider=self.name,
            confidence=0.8,
        )


class FakeSpeaker:
    def __init__(self):
        self.spoken = []

    def speak(self, sentence):
        self.spoken.append(sentence)
        return "local"


@pytest.fixture
def tracker(cards, context, lock_store, json_sink):
    return SessionTracker(cards, context, lock_store=lock_store, sink=json_sink)


@pytest.fixture
def build(tracker, fake_source):
    def _build(fallback=None, primary=None, source=None, speaker=None):
        orchestrator = AssessmentOrchestrator(
            tracker,
            fallback or FakeProvider("whisper"),
            primary=primary,
            source_factory=lambda: source or fake_source,
            speaker=speaker,
        )
        orchestrator.select_student("s1")
        return orchestrator
    return _build


class TestRecordAttempt:
    """Test one listen/record/score cycle."""

    def test_fallback_only(self, build, tracker, fake_source):
        orchestrator = build()
        result = orchestrator.record_attempt()

        assert result.provider == "whisper"
        assert result.correctness == 100
        assert result.wpm == 180
        assert tracker.state is SessionState.SCORED
        assert tracker.scores[0].pron_score == result.pron_score
        assert orchestrator.status_message == "Pronunciation assessment complete."
        assert not orchestrator.is_recording
        assert fake_source.started
        assert fake_source.stop_calls == 1

    def test_primary_preferred(self, build):
        primary = FakeProvider("azure")
        fallback = FakeProvider("whisper")
        result = build(fallback=fallback, primary=primary).record_attempt()
        assert result.provider == "azure"
        assert fallback.calls == 0

    def test_primary_failure_falls_back(self, build):
        primary = FakeProvider("azure", error=provider_unavailable(RuntimeError("connection refused"), "azure"))
        fallback = FakeProvider("whisper")
        result = build(fallback=fallback, primary=primary).record_attempt()
        assert primary.calls == 1
        assert fallback.calls == 1
        assert result.provider == "whisper"

    def test_unavailable_primary_skipped(self, build):
        primary = FakeProvider("azure", available=False)
        build(primary=primary).record_attempt()
        assert primary.calls == 0

    def test_no_speech_records_nothing(self, build, tracker, fake_source):
        orchestrator = build(fallback=FakeProvider("whisper", error=no_speech_error("whisper")))
        with pytest.raises(NoSpeechDetectedError):
            orchestrator.record_attempt()
        assert tracker.scores == []
        assert orchestrator.status_message == "No speech detected. Please try again."
        assert fake_source.stop_calls == 1
        assert not orchestrator.is_recording

    def test_superseded_attempt_is_discarded(self, build, tracker):
        holder = {}
        fallback = FakeProvider("whisper", on_recognize=lambda: holder['orchestrator'].attempts.begin())
        orchestrator = build(fallback=fallback)
        holder['orchestrator'] = orchestrator
        with pytest.raises(RecognitionCancelledError):
            orchestrator.record_attempt()
        assert tracker.scores == []

    def test_cancelled_during_recognition_records_nothing(self, build, tracker, fake_source):
        holder = {}
        fallback = FakeProvider("whisper", on_recognize=lambda: holder['orchestrator'].cancel_recording())
        orchestrator = build(fallback=fallback)
        holder['orchestrator'] = orchestrator
        with pytest.raises(RecognitionCancelledError):
            orchestrator.record_attempt()
        assert tracker.scores == []
        assert tracker.lock_store.read(tracker.lock_key) is None
        assert fake_source.stop_calls == 1

    def test_score_for_moved_card_rejected(self, build, tracker):
        def _move_cursor():
            tracker.current_index = 1

        orchestrator = build(fallback=FakeProvider("whisper", on_recognize=_move_cursor))
        with pytest.raises(SessionStateError):
            orchestrator.record_attempt()
        assert tracker.scores == []


    def test_rerecord_replaces_score(self, build, tracker):
        orchestrator = build(fallback=FakeProvider("whisper", transcript="the cat"))
        orchestrator.record_attempt()
        first = tracker.scores[0].correctness
        orchestrator.fallback = FakeProvider("whisper")
        orchestrator.record_attempt()
        assert len(tracker.scores) == 1
        assert tracker.scores[0].correctness > first

    def test_microphone_denied(self, build, make_source, tracker):
        source = make_source(fail_with=PermissionError("Permission denied"))
        orchestrator = build(source=source)
        with pytest.raises(MicrophonePermissionDeniedError):
            orchestrator.record_attempt()
        assert not orchestrator.is_recording
        assert tracker.scores == []

    def test_unwritable_audio_dir_is_a_warning(self, tracker, fake_source, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")
        orchestrator = AssessmentOrchestrator(tracker, FakeProvider("whisper"), source_factory=lambda: fake_source,
                                              audio_dir=blocker / "wav")
        orchestrator.select_student("s1")

        result = orchestrator.record_attempt()

        assert tracker.scores[0].pron_score == result.pron_score
        assert not error_handler.has_errors()
        assert [w['code'] for w in error_handler.get_error_summary()['warnings']] == ["AUDIO_004"]

    def test_blocked_session(self, tracker, lock_store, context, fake_source):
        lock_store.update(build_lock_key(context.subject, context.activity, "s1"), 2, completed=True)
        orchestrator = AssessmentOrchestrator(tracker, FakeProvider("whisper"), source_factory=lambda: fake_source)
        assert orchestrator.select_student("s1") is SessionState.BLOCKED
        assert orchestrator.status_message
        with pytest.raises(SessionAlreadyCompletedError):
            orchestrator.record_attempt()
        assert not fake_source.started


class TestNavigation:
    """Test card navigation and finishing through the orchestrator."""

    def test_next_card_requires_score(self, build):
        orchestrator = build()
        assert orchestrator.next_card() is False
        assert orchestrator.status_message == SCORE_REQUIRED_MESSAGE

    def test_full_session(self, build, tracker):
        orchestrator = build()
        for _ in tracker.cards:
            orchestrator.record_attempt()
            assert orchestrator.next_card()
        assert tracker.state is SessionState.SUMMARY
        assert orchestrator.finish_session("Reads well.") is True
        assert tracker.state is SessionState.SAVED

    def test_previous_card_locked(self, build):
        orchestrator = build()
        orchestrator.record_attempt()
        orchestrator.next_card()
        assert orchestrator.previous_card() is False

    def test_speak_current(self, build):
        speaker = FakeSpeaker()
        orchestrator = build(speaker=speaker)
        assert orchestrator.speak_current() == "local"
        assert speaker.spoken == ["The cat sat on the mat."]

    def test_speak_without_speaker(self, build):
        assert build().speak_current() is None

    def test_stop(self, build, tracker):
        orchestrator = build()
        orchestrator.record_attempt()
        orchestrator.stop()
        assert tracker.state is SessionState.IDLE
        assert orchestrator.last_result is None
