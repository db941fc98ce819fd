"""
Primary provider: streaming pronunciation assessment on Azure Speech.

Microphone blocks from the active RecordingSession are pushed into the
recognizer through a push stream, so the attempt keeps a single handle on
the device. Recognized segments carry native sub-scores and a per-word
breakdown; they are merged by StreamingAttempt.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from ..alignment.languages import LanguageProfile, ENGLISH
from ..config import Config, RecognitionTimeouts
from ..models import AggregateResult, PronunciationScores, SpeechSegment
from .aggregation import parse_word_feedback
from .base import CancellationToken, TranscriptionProvider, cancelled_error, provider_unavailable
from .streaming import StreamingAttempt
from .token import SpeechTokenService

try:
    import azure.cognitiveservices.speech as speechsdk
    AZURE_SPEECH_AVAILABLE = True
except ImportError:
    AZURE_SPEECH_AVAILABLE = False
    speechsdk = None


logger = logging.getLogger(__name__)

# SDK offsets and durations are in 100-nanosecond ticks
TICKS_PER_MS = 10_000


def to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian 16-bit PCM bytes."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767).astype('<i2').tobytes()


def segment_from_result(result) -> SpeechSegment:
    """Build a SpeechSegment from an SDK recognition result."""
    assessment = speechsdk.PronunciationAssessmentResult(result)
    scores = PronunciationScores(
        pronunciation=float(assessment.pronunciation_score or 0),
        accuracy=float(assessment.accuracy_score or 0),
        fluency=float(assessment.fluency_score or 0),
        completeness=float(assessment.completeness_score or 0),
    )
    json_result = result.properties.get(speechsdk.PropertyId.SpeechServiceResponse_JsonResult)
    start_ms = (result.offset or 0) / TICKS_PER_MS
    return SpeechSegment(
        start_ms=start_ms,
        end_ms=start_ms + (result.duration or 0) / TICKS_PER_MS,
        raw_text=result.text or "",
        scores=scores,
        words=parse_word_feedback(json_result),
    )


class AzureSpeechProvider(TranscriptionProvider):
    """Cloud recognizer with native pronunciation assessment."""

    name = "azure"

    def __init__(self,
                 token_service: SpeechTokenService,
                 profile: LanguageProfile = ENGLISH,
                 timeouts: Optional[RecognitionTimeouts] = None,
                 sample_rate: int = Config.SAMPLE_RATE):
        self.token_service = token_service
        self.profile = profile
        self.timeouts = timeouts or RecognitionTimeouts()
        self.sample_rate = sample_rate

    def is_available(self) -> bool:
        return AZURE_SPEECH_AVAILABLE and self.token_service.configured

    def recognize(self, sentence: str, token: CancellationToken, recording) -> AggregateResult:
        if not AZURE_SPEECH_AVAILABLE:
            raise provider_unavailable(
                RuntimeError("azure-cognitiveservices-speech is not installed"), self.name
            )
        speech_token = self.token_service.get_token()
        token.raise_if_cancelled()

        try:
            recognizer, push_stream = self._create_recognizer(sentence, speech_token.token, speech_token.region)
        except Exception as e:
            raise provider_unavailable(e, self.name) from e

        attempt = StreamingAttempt(token, self.name, self.timeouts, self.profile)
        self._connect(recognizer, attempt)

        def _push(samples: np.ndarray) -> None:
            if token.is_active():
                push_stream.write(to_pcm16(samples))

        recording.add_listener(_push)
        started = False
        try:
            try:
                recognizer.start_continuous_recognition_async().get()
                started = True
            except Exception as e:
                if not token.is_active():
                    raise cancelled_error(token.attempt_id) from e
                raise provider_unavailable(e, self.name) from e

            attempt.start()
            result = attempt.wait()
            recording.end_capture_at_last_voice()
        finally:
            recording.remove_listener(_push)
            attempt.finish()
            stop_error = self._release(recognizer, push_stream, started)

        if stop_error is not None and token.is_active():
            raise provider_unavailable(stop_error, self.name) from stop_error
        logger.info(f"Azure recognized {result.word_count} words in {result.duration_ms:.0f}ms")
        return result

    def _create_recognizer(self, sentence: str, auth_token: str, region: str) -> Tuple[object, object]:
        speech_config = speechsdk.SpeechConfig(auth_token=auth_token, region=region)
        speech_config.speech_recognition_language = self.profile.locale

        stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=self.sample_rate, bits_per_sample=16, channels=1
        )
        push_stream = speechsdk.audio.PushAudioInputStream(stream_format=stream_format)
        audio_config = speechsdk.audio.AudioConfig(stream=push_stream)
        recognizer = speechsdk.SpeechRecognizer(speech_config=speech_config, audio_config=audio_config)

        assessment_config = speechsdk.PronunciationAssessmentConfig(
            reference_text=sentence,
            grading_system=speechsdk.PronunciationAssessmentGradingSystem.HundredMark,
            granularity=speechsdk.PronunciationAssessmentGranularity.Word,
            enable_miscue=True,
        )
        assessment_config.apply_to(recognizer)
        return recognizer, push_stream

    def _connect(self, recognizer, attempt: StreamingAttempt) -> None:
        def _on_recognized(evt):
            if evt.result.reason != speechsdk.ResultReason.RecognizedSpeech:
                return
            try:
                segment = segment_from_result(evt.result)
            except Exception as e:
                attempt.handle_error(e)
                return
            attempt.handle_recognized(segment)

        def _on_recognizing(evt):
            attempt.handle_recognizing(evt.result.text)

        def _on_canceled(evt):
            details = evt.cancellation_details
            error_details = None
            if details is not None and details.reason == speechsdk.CancellationReason.Error:
                error_details = details.error_details or "Recognition canceled with an error"
            attempt.handle_canceled(error_details)

        recognizer.recognized.connect(_on_recognized)
        recognizer.recognizing.connect(_on_recognizing)
        recognizer.canceled.connect(_on_canceled)
        recognizer.session_stopped.connect(lambda evt: attempt.finish())

    def _release(self, recognizer, push_stream, started: bool) -> Optional[Exception]:
        """Detach handlers, end the audio stream and stop recognition once."""
        for signal in (recognizer.recognized, recognizer.recognizing,
                       recognizer.canceled, recognizer.session_stopped):
            signal.disconnect_all()
        push_stream.close()
        if not started:
            return None
        try:
            recognizer.stop_continuous_recognition_async().get()
        except Exception as e:
            logger.debug(f"Stopping recognition failed: {e}")
            return e
        return None
