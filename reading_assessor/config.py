"""
Configuration settings for the reading assessment engine.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


class Config:
    """Configuration class for application settings."""

    # Project paths
    PROJECT_ROOT = Path(__file__).parent.parent
    DATA_DIR = PROJECT_ROOT / "data"
    CONTENT_DIR = DATA_DIR / "content"
    SESSION_LOCK_DIR = DATA_DIR / "session_locks"
    RESULTS_DIR = DATA_DIR / "results"

    # Audio capture settings
    SAMPLE_RATE = 16000
    CHANNELS = 1
    VAD_WINDOW_SIZE = 2048  # samples per RMS window
    VAD_FRAME_INTERVAL = 1.0 / 60.0  # seconds between VAD samples
    VOICE_DB_THRESHOLD = -50.0  # dBFS
    SILENCE_DEBOUNCE_MS = 200.0
    RMS_EPSILON = 1e-12

    # Recognition timeouts
    PROVIDER_IDLE_TIMEOUT = 4.0  # seconds without a new segment
    PROVIDER_MAX_DURATION = 120.0  # hard ceiling per attempt
    FALLBACK_CAPTURE_WINDOW = 45.0
    FALLBACK_TRAILING_SILENCE_MS = 1500.0

    # Speech service settings
    SPEECH_TOKEN_LIFETIME = 540  # seconds
    SPEECH_TOKEN_REFRESH_MARGIN = 30  # seconds
    SPEECH_TOKEN_TIMEOUT = 10  # HTTP timeout in seconds
    SPEECH_TOKEN_CHECK_INTERVAL = 60  # background monitor interval in seconds
    WHISPER_MODEL_SIZE = "base"

    # Persistence API paths (relative to the portal base URL)
    PERFORMANCE_PATH = "/api/remedial/performance"
    SESSION_PATH = "/api/remedial/session"
    SESSION_STATUS_PATH = "/api/remedial/session/status"
    HTTP_TIMEOUT = 15

    # Content
    FLASHCARD_CONTENT_KEY = "english-remedial-flashcards"

    @classmethod
    def speech_key(cls) -> str:
        """Subscription key for the cloud speech service, or empty string."""
        return os.environ.get("AZURE_SPEECH_KEY") or os.environ.get("SPEECH_KEY") or ""

    @classmethod
    def speech_region(cls) -> str:
        """Region of the cloud speech service, or empty string."""
        return os.environ.get("AZURE_SPEECH_REGION") or os.environ.get("SPEECH_REGION") or ""

    @classmethod
    def ensure_directories(cls):
        """Create necessary directories if they don't exist."""
        for directory in [cls.DATA_DIR, cls.CONTENT_DIR, cls.SESSION_LOCK_DIR, cls.RESULTS_DIR]:
            directory.mkdir(parents=True, exist_ok=True)


@dataclass
class VadSettings:
    """Thresholds for the energy-based voice activity detector."""

    window_size: int = Config.VAD_WINDOW_SIZE
    frame_interval: float = Config.VAD_FRAME_INTERVAL
    threshold_db: float = Config.VOICE_DB_THRESHOLD
    silence_debounce_ms: float = Config.SILENCE_DEBOUNCE_MS
    epsilon: float = Config.RMS_EPSILON


@dataclass
class RecognitionTimeouts:
    """Timeouts applied to a single recording attempt (seconds)."""

    idle_timeout: float = Config.PROVIDER_IDLE_TIMEOUT
    max_duration: float = Config.PROVIDER_MAX_DURATION
    fallback_window: float = Config.FALLBACK_CAPTURE_WINDOW
    fallback_trailing_silence_ms: float = Config.FALLBACK_TRAILING_SILENCE_MS


@dataclass
class AssessmentSettings:
    """Bundle of settings handed to the orchestrator and its collaborators."""

    sample_rate: int = Config.SAMPLE_RATE
    vad: VadSettings = field(default_factory=VadSettings)
    timeouts: RecognitionTimeouts = field(default_factory=RecognitionTimeouts)
    token_refresh_margin: int = Config.SPEECH_TOKEN_REFRESH_MARGIN
    speech_key: str = ""
    speech_region: str = ""

    @classmethod
    def from_config(cls) -> 'AssessmentSettings':
        """Build settings from the class constants and environment."""
        return cls(
            speech_key=Config.speech_key(),
            speech_region=Config.speech_region(),
        )

    @property
    def has_speech_credentials(self) -> bool:
        return bool(self.speech_key and self.speech_region)
