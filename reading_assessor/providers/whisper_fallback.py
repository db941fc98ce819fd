"""
Fallback provider: single-shot local transcription with Whisper.

Used when the cloud service is unavailable. Audio is captured from the
active recording until the reader stops speaking or the capture window
elapses, then transcribed once. The result carries a confidence scalar
but no native sub-scores and no per-word breakdown.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
import librosa

from ..alignment.languages import LanguageProfile, ENGLISH
from ..alignment.normalizer import normalize
from ..config import Config, RecognitionTimeouts
from ..models import AggregateResult
from .base import (
    CancellationToken, TranscriptionProvider, cancelled_error, no_speech_error, provider_unavailable
)

try:
    import whisper
    WHISPER_AVAILABLE = True
except ImportError:
    WHISPER_AVAILABLE = False


logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16000


def calculate_confidence(whisper_result: Dict[str, Any]) -> Optional[float]:
    """
    Estimate a 0-1 confidence from Whisper segment log probabilities.

    Returns None when Whisper produced no segments.
    """
    segments = whisper_result.get('segments', [])
    if not segments:
        return None

    confidences = []
    for segment in segments:
        if 'avg_logprob' in segment:
            # Rough mapping of log probability onto [0, 1]
            confidences.append(max(0.0, min(1.0, segment['avg_logprob'] + 1.0)))
        else:
            confidences.append(0.7)
    return sum(confidences) / len(confidences)


class WhisperFallbackProvider(TranscriptionProvider):
    """Local recognizer used when the primary provider is unavailable."""

    name = "whisper"

    def __init__(self,
                 model=None,
                 model_size: str = Config.WHISPER_MODEL_SIZE,
                 profile: LanguageProfile = ENGLISH,
                 timeouts: Optional[RecognitionTimeouts] = None):
        """
        Initialize the fallback provider.

        Args:
            model: Preloaded Whisper model; loaded lazily from ``model_size`` if None
            model_size: Whisper model size ("tiny", "base", "small", ...)
            profile: Language profile selecting the transcription language
            timeouts: Capture window and trailing-silence settings
        """
        self.model = model
        self.model_size = model_size
        self.profile = profile
        self.timeouts = timeouts or RecognitionTimeouts()

    def is_available(self) -> bool:
        return self.model is not None or WHISPER_AVAILABLE

    def _ensure_model(self):
        if self.model is not None:
            return self.model
        if not WHISPER_AVAILABLE:
            raise provider_unavailable(
                RuntimeError("Whisper not available. Install with: pip install openai-whisper"), self.name
            )
        try:
            logger.info(f"Loading Whisper {self.model_size} model...")
            self.model = whisper.load_model(self.model_size)
            logger.info(f"Whisper {self.model_size} model loaded successfully")
        except Exception as e:
            raise provider_unavailable(e, self.name) from e
        return self.model

    def recognize(self, sentence: str, token: CancellationToken, recording) -> AggregateResult:
        model = self._ensure_model()

        audio = recording.wait_for_utterance(
            max_seconds=self.timeouts.fallback_window,
            trailing_silence_ms=self.timeouts.fallback_trailing_silence_ms,
            should_continue=token.is_active,
        )
        recording.end_capture()
        token.raise_if_cancelled()

        if audio.size == 0 or not recording.vad.speech_detected:
            raise no_speech_error(self.name)

        transcription = self.transcribe(model, audio, recording.sample_rate)
        if not token.is_active():
            raise cancelled_error(token.attempt_id)

        text = transcription['text']
        count = len(normalize(text, self.profile))
        if count == 0:
            raise no_speech_error(self.name)

        logger.info(f"Whisper transcribed {count} words (confidence {transcription['confidence']})")
        return AggregateResult(
            transcript=text,
            duration_ms=audio.size / recording.sample_rate * 1000.0,
            word_count=count,
            provider=self.name,
            confidence=transcription['confidence'],
        )

    def transcribe(self, model, audio: np.ndarray, sample_rate: int) -> Dict[str, Any]:
        """
        Transcribe a mono float buffer.

        Returns:
            Dictionary with 'text' and 'confidence'
        """
        samples = np.asarray(audio, dtype=np.float32)
        if sample_rate != WHISPER_SAMPLE_RATE:
            samples = librosa.resample(samples, orig_sr=sample_rate, target_sr=WHISPER_SAMPLE_RATE)

        try:
            result = model.transcribe(
                samples.astype(np.float32),
                language=self.profile.whisper_language,
                task='transcribe',
                fp16=False,
                verbose=False
            )
        except Exception as e:
            raise provider_unavailable(e, self.name) from e

        return {
            'text': (result.get('text') or '').strip(),
            'confidence': calculate_confidence(result),
        }
