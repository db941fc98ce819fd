"""
Microphone capture and live VAD monitoring for a recording attempt.

A RecordingSession exclusively owns the microphone for one attempt. It
buffers captured blocks, forwards them to listeners (such as a streaming
recognizer), and samples the most recent window on a fixed-interval
thread to drive the voice activity detector. Stopping is idempotent and
always releases the device.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
from scipy.io import wavfile

from ..config import Config, VadSettings
from ..errors import (
    error_handler, AudioDeviceError, MicrophonePermissionDeniedError, ReadingAssessmentError
)
from ..models import SpeechTiming
from .vad import VoiceActivityDetector

# sounddevice needs the PortAudio shared library, which may be missing on CI hosts
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDDEVICE_AVAILABLE = False
    sd = None


logger = logging.getLogger(__name__)

BlockCallback = Callable[[np.ndarray], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def raise_device_error(error: Exception, context: dict = None) -> None:
    """Translate a low-level capture failure into the assessment error taxonomy."""
    processing_error = error_handler.handle_audio_device_error(error, context)
    error_handler.add_error(processing_error)
    if processing_error.error_code == "AUDIO_001":
        raise MicrophonePermissionDeniedError(processing_error) from error
    raise AudioDeviceError(processing_error) from error


class AudioSource(ABC):
    """A live mono audio input delivering float32 blocks to a callback."""

    @abstractmethod
    def start(self, callback: BlockCallback) -> None:
        """Acquire the device and begin delivering blocks."""

    @abstractmethod
    def stop(self) -> None:
        """Release the device. Must be safe to call more than once."""


class SoundDeviceSource(AudioSource):
    """Default microphone input through PortAudio."""

    def __init__(self,
                 sample_rate: int = Config.SAMPLE_RATE,
                 blocksize: int = Config.VAD_WINDOW_SIZE,
                 device: Optional[int] = None):
        self.sample_rate = sample_rate
        self.blocksize = blocksize
        self.device = device
        self.stream = None

    def start(self, callback: BlockCallback) -> None:
        if not SOUNDDEVICE_AVAILABLE:
            raise_device_error(RuntimeError("No default input device: sounddevice/PortAudio not available"))

        def _record_callback(indata, frames, time_info, status):
            if status:
                logger.debug(f"Input stream status: {status}")
            callback(indata[:, 0].copy())

        try:
            self.stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=Config.CHANNELS,
                dtype="float32",
                blocksize=self.blocksize,
                device=self.device,
                callback=_record_callback,
            )
            self.stream.start()
        except Exception as e:
            self.stop()
            raise_device_error(e, {'device': self.device})

    def stop(self) -> None:
        if self.stream is None:
            return
        stream, self.stream = self.stream, None
        try:
            stream.stop()
        finally:
            stream.close()


class RecordingSession:
    """
    Owns the microphone and VAD for exactly one recording attempt.

    Use as a context manager so the device is released on every exit path.
    """

    def __init__(self,
                 source: AudioSource,
                 vad: Optional[VoiceActivityDetector] = None,
                 sample_rate: int = Config.SAMPLE_RATE,
                 settings: Optional[VadSettings] = None,
                 clock: Callable[[], float] = monotonic_ms):
        self.source = source
        self.settings = settings or VadSettings()
        self.vad = vad or VoiceActivityDetector(self.settings)
        self.sample_rate = sample_rate
        self.clock = clock

        self._lock = threading.Lock()
        self._chunks: List[np.ndarray] = []
        self._window = np.zeros(0, dtype=np.float32)
        self._listeners: List[BlockCallback] = []
        self._stop_event = threading.Event()
        self._monitor: Optional[threading.Thread] = None
        self._started = False
        self._stopped = False

    def __enter__(self) -> 'RecordingSession':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def is_active(self) -> bool:
        return self._started and not self._stopped

    def start(self) -> None:
        """Acquire the source and start the VAD monitor thread."""
        if self._started or self._stopped:
            return
        self.vad.reset()
        self._started = True
        try:
            self.source.start(self._on_block)
        except ReadingAssessmentError:
            self._stopped = True
            raise
        except Exception as e:
            self._stopped = True
            raise_device_error(e)

        self._monitor = threading.Thread(target=self._monitor_loop, name="vad-monitor", daemon=True)
        self._monitor.start()
        logger.debug("Recording session started")

    def stop(self) -> None:
        """Stop monitoring and release the device. Safe to call repeatedly."""
        if self._stopped or not self._started:
            self._stopped = True
            return
        self._stopped = True
        self._stop_event.set()
        if self._monitor is not None and self._monitor is not threading.current_thread():
            self._monitor.join(timeout=1.0)
        self._monitor = None
        try:
            self.source.stop()
        finally:
            with self._lock:
                self._listeners.clear()
            logger.debug("Recording session stopped, microphone released")

    def add_listener(self, listener: BlockCallback) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: BlockCallback) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _on_block(self, block: np.ndarray) -> None:
        if self._stopped:
            return
        samples = np.asarray(block, dtype=np.float32).reshape(-1)
        with self._lock:
            self._chunks.append(samples)
            window = np.concatenate([self._window, samples])
            self._window = window[-self.settings.window_size:]
            listeners = list(self._listeners)
        for listener in listeners:
            listener(samples)

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.settings.frame_interval):
            self.sample_vad()

    def sample_vad(self) -> Optional[bool]:
        """Run the VAD on the most recent window. Returns None before any audio arrived."""
        with self._lock:
            window = self._window
        if window.size == 0:
            return None
        return self.vad.process_window(window, self.clock())

    def wait_for_utterance(self,
                           max_seconds: float,
                           trailing_silence_ms: float,
                           should_continue: Callable[[], bool] = lambda: True,
                           poll_interval: float = 0.05) -> np.ndarray:
        """
        Block until the reader finishes or the capture window elapses.

        The utterance is over once speech was detected and has been followed
        by ``trailing_silence_ms`` of silence.

        Returns:
            All samples captured so far
        """
        deadline = time.monotonic() + max_seconds
        while time.monotonic() < deadline and not self._stopped and should_continue():
            if self.vad.speech_detected and self.vad.trailing_silence_ms(self.clock()) >= trailing_silence_ms:
                break
            self._stop_event.wait(poll_interval)
        return self.audio()

    def end_capture(self) -> None:
        """Mark the end of speech now, as the caller stops listening."""
        self.vad.mark_speech_end(self.clock())

    def end_capture_at_last_voice(self) -> None:
        """Mark the end of speech at the last voiced window, or now if none was heard."""
        last = self.vad.last_speech_ms
        self.vad.mark_speech_end(self.clock() if last is None else last)

    def finish(self) -> SpeechTiming:
        """Mark the end of speech unless a provider already did, and return the attempt timing."""
        self.vad.mark_speech_end(self.clock())
        return self.vad.timing()

    def audio(self) -> np.ndarray:
        with self._lock:
            if not self._chunks:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate(self._chunks)

    def save_wav(self, path: Path) -> Path:
        """Write the captured audio as 16-bit PCM WAV."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pcm = (np.clip(self.audio(), -1.0, 1.0) * 32767).astype(np.int16)
        wavfile.write(str(path), self.sample_rate, pcm)
        return path
