"""
Voice Activity Detection (VAD) for live reading attempts.

Classifies fixed-size windows of the microphone signal as voiced or silent
from their RMS energy in dBFS, and tracks when speech started, when the
caller ended capture, and how much silence accumulated in between.
"""

import logging
import threading
from typing import Optional

import numpy as np
import librosa

from ..config import VadSettings
from ..models import SpeechTiming


logger = logging.getLogger(__name__)


def window_db(window: np.ndarray, epsilon: float = 1e-12) -> float:
    """
    Energy of a window in decibels, ``20*log10(rms + epsilon)``.

    Args:
        window: Mono float samples in [-1, 1]
        epsilon: Floor added to the RMS so silence maps to a finite value

    Returns:
        Level in dBFS
    """
    samples = np.asarray(window, dtype=np.float32).reshape(-1)
    if samples.size == 0:
        rms = 0.0
    else:
        rms = float(librosa.feature.rms(
            y=samples,
            frame_length=samples.size,
            hop_length=samples.size,
            center=False
        )[0, 0])
    return 20.0 * np.log10(rms + epsilon)


class VoiceActivityDetector:
    """
    Energy-threshold state machine over successive analysis windows.

    A window louder than the threshold is voiced: it refreshes the last-voice
    timestamp, sets the speech start once, and clears the silence timer.
    A quiet window starts the silence timer; once silence outlasts the
    debounce window after a voiced frame, that silence is added to the
    cumulative total and the last-voice timestamp is cleared so the same
    pause is counted only once.
    """

    def __init__(self, settings: Optional[VadSettings] = None):
        """
        Initialize the detector.

        Args:
            settings: Threshold, debounce and window settings
        """
        self.settings = settings or VadSettings()
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        """Clear all timing state before a new attempt."""
        with self._lock:
            self.speech_start_ms: Optional[float] = None
            self.speech_end_ms: Optional[float] = None
            self.last_voice_ms: Optional[float] = None
            self.last_speech_ms: Optional[float] = None
            self.silence_start_ms: Optional[float] = None
            self.cumulative_silent_ms = 0.0
            self.last_db: Optional[float] = None

    def process_window(self, window: np.ndarray, now_ms: float) -> bool:
        """
        Feed one analysis window observed at ``now_ms``.

        Returns:
            True if the window was classified as voiced
        """
        db = window_db(window, self.settings.epsilon)
        return self.process_level(db, now_ms)

    def process_level(self, db: float, now_ms: float) -> bool:
        """Advance the state machine with a precomputed level in dBFS."""
        with self._lock:
            self.last_db = db
            if db > self.settings.threshold_db:
                self.last_voice_ms = now_ms
                self.last_speech_ms = now_ms
                if self.speech_start_ms is None:
                    self.speech_start_ms = now_ms
                    logger.debug(f"Speech started at {now_ms:.0f}ms ({db:.1f} dBFS)")
                self.silence_start_ms = None
                return True

            if self.silence_start_ms is None:
                self.silence_start_ms = now_ms
            else:
                silence_ms = now_ms - self.silence_start_ms
                if silence_ms > self.settings.silence_debounce_ms and self.last_voice_ms is not None:
                    self.cumulative_silent_ms += silence_ms
                    self.last_voice_ms = None
            return False

    def mark_speech_end(self, now_ms: float) -> None:
        """Record the moment the caller ended capture. Later calls are ignored."""
        with self._lock:
            if self.speech_end_ms is None:
                self.speech_end_ms = now_ms

    def trailing_silence_ms(self, now_ms: float) -> float:
        """Silence since the last voiced window, or 0 while voiced or before speech."""
        with self._lock:
            if self.speech_start_ms is None or self.silence_start_ms is None:
                return 0.0
            return now_ms - self.silence_start_ms

    @property
    def speech_detected(self) -> bool:
        return self.speech_start_ms is not None

    def timing(self) -> SpeechTiming:
        """Snapshot of speech start/end and cumulative silence."""
        with self._lock:
            return SpeechTiming(
                speech_start_ms=self.speech_start_ms,
                speech_end_ms=self.speech_end_ms,
                cumulative_silent_ms=self.cumulative_silent_ms,
            )
