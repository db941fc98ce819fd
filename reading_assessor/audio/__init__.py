"""
Audio module for microphone capture and voice activity detection.
"""

from .vad import VoiceActivityDetector, window_db
from .capture import AudioSource, SoundDeviceSource, RecordingSession

__all__ = [
    'VoiceActivityDetector',
    'window_db',
    'AudioSource',
    'SoundDeviceSource',
    'RecordingSession'
]
