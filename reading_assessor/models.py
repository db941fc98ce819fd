"""
Core data models for the reading assessment engine.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any

import numpy as np


def convert_numpy_types(obj):
    """Convert numpy types to Python native types for JSON serialization."""
    if isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, dict):
        return {k: convert_numpy_types(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy_types(item) for item in obj]
    return obj


class ErrorType(Enum):
    """Per-word error classification shown next to each expected word."""
    NONE = "None"
    MISPRONOUNCED = "Mispronounced"
    OMITTED = "Omitted"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> 'ErrorType':
        """Map a provider error label onto the three-way classification."""
        if not value:
            return cls.NONE
        label = value.strip().lower()
        if label in ("omission", "omitted"):
            return cls.OMITTED
        if label in ("mispronunciation", "mispronounced"):
            return cls.MISPRONOUNCED
        return cls.NONE


@dataclass(frozen=True)
class ExpectedCard:
    """One sentence-reading unit within a multi-card session."""
    sentence: str
    highlight_words: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'sentence': self.sentence, 'highlights': list(self.highlight_words)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExpectedCard':
        return cls(sentence=data['sentence'], highlight_words=tuple(data.get('highlights', [])))


@dataclass
class WordAlignment:
    """Best spoken candidate found for one expected word."""
    expected_word: str
    matched_spoken_word: str
    similarity_percent: float


@dataclass
class WordFeedback:
    """Feedback for a single expected word, in expected-sentence order."""
    word: str
    accuracy_score: Optional[int]
    error_type: ErrorType = ErrorType.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'word': self.word,
            'accuracy_score': self.accuracy_score,
            'error_type': self.error_type.value,
        }

    @classmethod
    def omitted(cls, word: str) -> 'WordFeedback':
        return cls(word=word, accuracy_score=0, error_type=ErrorType.OMITTED)


@dataclass
class PronunciationScores:
    """Provider-native pronunciation sub-scores on a 0-100 scale."""
    pronunciation: float = 0.0
    accuracy: float = 0.0
    fluency: float = 0.0
    completeness: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return convert_numpy_types(asdict(self))


@dataclass
class SpeechSegment:
    """A single recognized segment of a streaming attempt."""
    start_ms: float
    end_ms: float
    raw_text: str
    scores: Optional[PronunciationScores] = None
    words: List[WordFeedback] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        return max(0.0, self.end_ms - self.start_ms)


@dataclass
class AggregateResult:
    """Merged recognition output of one recording attempt."""
    transcript: str
    duration_ms: float
    word_count: int
    provider: str
    scores: Optional[PronunciationScores] = None
    words: List[WordFeedback] = field(default_factory=list)
    confidence: Optional[float] = None

    @property
    def has_native_scores(self) -> bool:
        return self.scores is not None


@dataclass
class SpeechTiming:
    """Speech span and accumulated silence measured by the VAD."""
    speech_start_ms: Optional[float] = None
    speech_end_ms: Optional[float] = None
    cumulative_silent_ms: float = 0.0

    @property
    def has_speech(self) -> bool:
        return self.speech_start_ms is not None and self.speech_end_ms is not None

    @property
    def total_speech_ms(self) -> float:
        """Speech span in milliseconds, floored at 1 ms so ratios never divide by zero."""
        if not self.has_speech:
            return 1.0
        return max(1.0, self.speech_end_ms - self.speech_start_ms)


@dataclass
class SlideScore:
    """Recorded result for one card. At most one per card index in a session."""
    card_index: int
    sentence: str
    pron_score: int
    correctness: int
    fluency_score: int
    completeness_score: int
    reading_speed_wpm: int
    reading_speed_score: int
    average_score: int
    transcription: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return convert_numpy_types(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SlideScore':
        """Create instance from dictionary."""
        return cls(**data)


@dataclass
class SessionLockState:
    """Persisted progress/completion flag for one (subject, activity, student)."""
    completed: bool
    last_index: int
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'completed': self.completed,
            'lastIndex': self.last_index,
            'updatedAt': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionLockState':
        """
        Create instance from a persisted dictionary.

        Raises:
            ValueError: If the stored data does not match the expected schema
        """
        if not isinstance(data, dict):
            raise ValueError("Session lock state must be an object")
        completed = data.get('completed')
        last_index = data.get('lastIndex')
        updated_at = data.get('updatedAt')
        if not isinstance(completed, bool):
            raise ValueError("'completed' must be a boolean")
        if isinstance(last_index, bool) or not isinstance(last_index, (int, float)):
            raise ValueError("'lastIndex' must be a number")
        if not np.isfinite(last_index):
            raise ValueError("'lastIndex' must be finite")
        if not isinstance(updated_at, str):
            raise ValueError("'updatedAt' must be an ISO-8601 string")
        return cls(
            completed=completed,
            last_index=int(last_index),
            updated_at=datetime.fromisoformat(updated_at),
        )


@dataclass
class SessionStatus:
    """Server-side status of a student's session."""
    completed: bool = False
    has_progress: bool = False


@dataclass
class PerformanceEntry:
    """Flat performance record emitted when a session is saved."""
    id: str
    student_id: str
    timestamp: str
    pron_score: int
    fluency_score: int
    phoneme_accuracy: float
    wpm: int
    card_index: int
    sentence: str
    correctness: Optional[int] = None
    reading_speed_score: Optional[int] = None
    reading_speed_label: Optional[str] = None
    word_count: Optional[int] = None
    overall_average: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return convert_numpy_types(asdict(self))


@dataclass
class SessionSummary:
    """Averages across all slides recorded in a session."""
    pronunciation_avg: int
    accuracy_avg: int
    fluency_avg: int
    reading_speed_avg: int
    overall_average: int
    slide_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionContext:
    """Identifiers of the remedial activity a session belongs to."""
    subject: str = ""
    activity: str = ""
    subject_name: str = "English"
    approved_schedule_id: Optional[str] = None
    subject_id: Optional[str] = None
    grade_id: Optional[str] = None
    phonemic_id: Optional[str] = None
    material_id: Optional[str] = None
    expected_level: Optional[str] = None
    lock_enabled: bool = True
