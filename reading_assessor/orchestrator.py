"""
Assessment orchestrator: listen, record, score and advance.

Wires the microphone, the two transcription providers, the scoring engine
and the session tracker into the operations a front end calls. Only one
recording attempt is alive at a time; starting or cancelling an attempt
tears the previous one down first.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from .audio.capture import AudioSource, RecordingSession, SoundDeviceSource
from .config import AssessmentSettings
from .errors import error_handler, NoSpeechDetectedError, ProviderUnavailableError
from .models import AggregateResult, SpeechTiming
from .providers.base import CancellationToken, RecognitionAttempts, TranscriptionProvider, cancelled_error
from .scoring.engine import ScoreResult, ScoringEngine
from .session.tracker import SessionState, SessionTracker
from .speech_output import SentenceSpeaker


logger = logging.getLogger(__name__)


class AssessmentOrchestrator:
    """Runs recording attempts for the current card of a session."""

    def __init__(self,
                 tracker: SessionTracker,
                 fallback: TranscriptionProvider,
                 primary: Optional[TranscriptionProvider] = None,
                 engine: Optional[ScoringEngine] = None,
                 source_factory: Optional[Callable[[], AudioSource]] = None,
                 settings: Optional[AssessmentSettings] = None,
                 speaker: Optional[SentenceSpeaker] = None,
                 audio_dir: Optional[Path] = None):
        """
        Initialize the orchestrator.

        Args:
            tracker: Session state machine for the student being assessed
            fallback: Local provider, always available
            primary: Cloud provider tried first when available
            engine: Scoring engine; built for the tracker's language if None
            source_factory: Creates a fresh microphone source per attempt
            settings: Sample rate, VAD and timeout settings
            speaker: Sentence playback, optional
            audio_dir: If set, each scored attempt is also written there as WAV
        """
        self.tracker = tracker
        self.fallback = fallback
        self.primary = primary
        self.engine = engine or ScoringEngine(tracker.profile)
        self.settings = settings or AssessmentSettings()
        self.source_factory = source_factory or (
            lambda: SoundDeviceSource(sample_rate=self.settings.sample_rate, blocksize=self.settings.vad.window_size)
        )
        self.speaker = speaker
        self.audio_dir = Path(audio_dir) if audio_dir is not None else None

        self.attempts = RecognitionAttempts()
        self.status_message = ""
        self.last_result: Optional[ScoreResult] = None
        self._lock = threading.Lock()
        self._recording: Optional[RecordingSession] = None

    @property
    def is_recording(self) -> bool:
        return self._recording is not None

    def select_student(self, student_id: str, student_level: Optional[str] = None) -> SessionState:
        state = self.tracker.select_student(student_id, student_level)
        self.status_message = self.tracker.message or ""
        return state

    def record_attempt(self) -> ScoreResult:
        """
        Record and score one attempt at the current card.

        Raises:
            SessionAlreadyCompletedError: If the session is blocked
            NoSpeechDetectedError: If nothing was recognized; no score is recorded
            RecognitionCancelledError: If the attempt was cancelled or superseded
            MicrophonePermissionDeniedError, AudioDeviceError: If capture failed
        """
        card_index = self.tracker.begin_recording()
        card = self.tracker.cards[card_index]

        self._teardown()
        recording = RecordingSession(
            self.source_factory(),
            sample_rate=self.settings.sample_rate,
            settings=self.settings.vad,
        )
        with self._lock:
            token = self.attempts.begin()
            self._recording = recording
        self.status_message = "Listening..."
        logger.info(f"Attempt {token.attempt_id}: recording card {card_index}")

        try:
            with recording:
                aggregate = self._recognize(card.sentence, token, recording)
                timing = recording.finish()
        except NoSpeechDetectedError as e:
            self.status_message = e.processing_error.message
            raise
        finally:
            with self._lock:
                if self._recording is recording:
                    self._recording = None

        if timing.speech_start_ms is None:
            # VAD heard nothing above threshold; trust the provider's duration
            timing = SpeechTiming(speech_start_ms=0.0, speech_end_ms=aggregate.duration_ms)

        result = self.engine.score(
            card.sentence,
            aggregate.transcript,
            timing,
            provider_scores=aggregate.scores,
            confidence=aggregate.confidence,
            provider_words=aggregate.words,
            provider=aggregate.provider,
        )
        # Cancellation takes the same lock, so a cancelled attempt never records
        with self._lock:
            if not token.is_active():
                raise cancelled_error(token.attempt_id)
            self.tracker.record_score(result.to_slide(card_index, card.sentence), result)
            token.close()
        if self.audio_dir is not None:
            self._save_audio(recording, card_index, token.attempt_id)
        self.last_result = result
        self.status_message = "Pronunciation assessment complete."
        return result

    def _recognize(self, sentence: str, token: CancellationToken, recording: RecordingSession) -> AggregateResult:
        if self.primary is not None and self.primary.is_available():
            try:
                return self.primary.recognize(sentence, token, recording)
            except ProviderUnavailableError as e:
                logger.warning(f"Primary provider failed, falling back to {self.fallback.name}: {e}")
                self.status_message = "Speech service failed. Switching to local speech recognition."
        token.raise_if_cancelled()
        return self.fallback.recognize(sentence, token, recording)

    def _save_audio(self, recording: RecordingSession, card_index: int, attempt_id: int) -> Optional[Path]:
        path = self.audio_dir / f"{self.tracker.student_id}_card{card_index + 1}_attempt{attempt_id}.wav"
        try:
            recording.save_wav(path)
        except OSError as e:
            error_handler.add_error(error_handler.handle_audio_save_error(e, {'path': str(path)}))
            return None
        logger.info(f"Saved attempt audio to {path}")
        return path

    def cancel_recording(self) -> None:
        """Cancel the running attempt, if any, and release the microphone."""
        with self._lock:
            self.attempts.cancel_current()
        self._teardown()

    def _teardown(self) -> None:
        with self._lock:
            recording, self._recording = self._recording, None
        if recording is not None:
            recording.stop()

    def next_card(self) -> bool:
        self.cancel_recording()
        moved = self.tracker.advance()
        self.status_message = self.tracker.message or ""
        if moved:
            self.last_result = None
        return moved

    def previous_card(self) -> bool:
        self.cancel_recording()
        moved = self.tracker.previous()
        if moved:
            self.last_result = None
        return moved

    def speak_current(self) -> Optional[str]:
        """Play the current sentence. Returns the voice used, or None without a speaker."""
        if self.speaker is None:
            return None
        return self.speaker.speak(self.tracker.current_card.sentence)

    def finish_session(self, teacher_feedback: Optional[str] = None) -> bool:
        self.cancel_recording()
        completed = self.tracker.save_session(teacher_feedback)
        self.status_message = ""
        self.last_result = None
        return completed

    def stop(self) -> None:
        """Leave the session without saving and release all audio resources."""
        self.cancel_recording()
        self.tracker.stop()
        self.status_message = ""
        self.last_result = None
