"""
Pytest configuration and shared fixtures.

Provides fake audio sources and recordings so capture, providers and the
orchestrator can be exercised without a microphone or speech service.
"""

import numpy as np
import pytest
from hypothesis import settings, Verbosity

from reading_assessor.audio.capture import AudioSource
from reading_assessor.errors import error_handler
from reading_assessor.models import ExpectedCard, SessionContext, SlideScore
from reading_assessor.providers.base import RecognitionAttempts
from reading_assessor.session import JsonFilePersistenceSink, SessionLockStore


settings.register_profile(
    "assessor",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None
)
settings.load_profile("assessor")


class FakeSource(AudioSource):
    """Audio source driven by the test instead of a device."""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.callback = None
        self.started = False
        self.stop_calls = 0

    def start(self, callback):
        if self.fail_with is not None:
            raise self.fail_with
        self.callback = callback
        self.started = True

    def stop(self):
        self.stop_calls += 1

    def push(self, samples):
        self.callback(np.asarray(samples, dtype=np.float32))


class FakeVad:
    """Speech flags and end marking of a VoiceActivityDetector without the signal path."""

    def __init__(self, speech_detected=True, last_speech_ms=None):
        self.speech_detected = speech_detected
        self.last_speech_ms = last_speech_ms
        self.speech_end_ms = None

    def mark_speech_end(self, now_ms):
        if self.speech_end_ms is None:
            self.speech_end_ms = now_ms


class FakeRecording:
    """Stands in for a RecordingSession inside provider tests."""

    def __init__(self, audio=None, speech_detected=True, sample_rate=16000, last_speech_ms=None):
        self._audio = np.zeros(0, dtype=np.float32) if audio is None else np.asarray(audio, dtype=np.float32)
        self.vad = FakeVad(speech_detected, last_speech_ms)
        self.sample_rate = sample_rate
        self.now_ms = 0.0
        self.listeners = []
        self.wait_calls = []

    def clock(self):
        return self.now_ms

    def wait_for_utterance(self, max_seconds, trailing_silence_ms, should_continue=lambda: True,
                           poll_interval=0.05):
        self.wait_calls.append((max_seconds, trailing_silence_ms))
        return self._audio

    def end_capture(self):
        self.vad.mark_speech_end(self.clock())

    def end_capture_at_last_voice(self):
        last = self.vad.last_speech_ms
        self.vad.mark_speech_end(self.clock() if last is None else last)

    def add_listener(self, listener):
        self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)


@pytest.fixture(autouse=True)
def clear_global_errors():
    """Keep the global error handler from leaking state between tests."""
    error_handler.clear_errors()
    yield
    error_handler.clear_errors()


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def fake_recording():
    """Factory for fake recordings: fake_recording(audio, speech_detected=True)."""
    return FakeRecording


@pytest.fixture
def attempts():
    return RecognitionAttempts()


@pytest.fixture
def cards():
    return [
        ExpectedCard("The cat sat on the mat.", ("cat", "mat")),
        ExpectedCard("A big dog ran in the park.", ("dog",)),
        ExpectedCard("We go to the store for milk.", ("milk",)),
    ]


@pytest.fixture
def context():
    return SessionContext(subject="english", activity="week-1", approved_schedule_id="sched-1")


@pytest.fixture
def lock_store(tmp_path):
    return SessionLockStore(tmp_path / "locks")


@pytest.fixture
def json_sink(tmp_path):
    return JsonFilePersistenceSink(tmp_path / "results")


@pytest.fixture
def make_slide():
    """Factory for slides with a uniform score."""
    def _make(card_index, score=80, sentence="The cat sat on the mat.", wpm=60):
        return SlideScore(
            card_index=card_index,
            sentence=sentence,
            pron_score=score,
            correctness=score,
            fluency_score=score,
            completeness_score=100,
            reading_speed_wpm=wpm,
            reading_speed_score=90,
            average_score=score,
            transcription=sentence.lower(),
        )
    return _make


@pytest.fixture
def make_source():
    """Factory for fake sources: make_source(fail_with=OSError(...))."""
    return FakeSource
