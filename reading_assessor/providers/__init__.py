"""
Transcription providers: the cloud primary, the local fallback and their shared plumbing.
"""

from .base import TranscriptionProvider, CancellationToken, RecognitionAttempts
from .aggregation import SegmentAggregator, parse_word_feedback, apply_omissions
from .streaming import StreamingAttempt
from .token import SpeechToken, SpeechTokenService, SpeechTokenMonitor
from .azure_speech import AzureSpeechProvider
from .whisper_fallback import WhisperFallbackProvider

__all__ = [
    'TranscriptionProvider',
    'CancellationToken',
    'RecognitionAttempts',
    'SegmentAggregator',
    'parse_word_feedback',
    'apply_omissions',
    'StreamingAttempt',
    'SpeechToken',
    'SpeechTokenService',
    'SpeechTokenMonitor',
    'AzureSpeechProvider',
    'WhisperFallbackProvider'
]
