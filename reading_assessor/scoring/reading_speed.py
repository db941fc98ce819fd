"""
Reading-speed grading.

Words per minute are dampened for short sentences before bucketing, so a
fast three-word read does not earn the same speed score as a fast ten-word
read. The bucket thresholds are fixed calibration constants.
"""

from dataclasses import dataclass
from typing import Tuple

from .rounding import round_half_up


@dataclass(frozen=True)
class ReadingSpeedBucket:
    min_wpm: float
    score: int
    label: str


# Descending minimum wpm; the last bucket (min 0) is the fallback
READING_SPEED_BUCKETS: Tuple[ReadingSpeedBucket, ...] = (
    ReadingSpeedBucket(90, 100, "Very Fast"),
    ReadingSpeedBucket(75, 95, "Moderately Fast"),
    ReadingSpeedBucket(60, 90, "Fast"),
    ReadingSpeedBucket(45, 85, "Moderate"),
    ReadingSpeedBucket(30, 80, "Slightly Slow"),
    ReadingSpeedBucket(20, 75, "Slow"),
    ReadingSpeedBucket(0, 70, "Very Slow"),
)

STABLE_WORD_COUNT = 10


@dataclass(frozen=True)
class ReadingSpeedGrade:
    adjusted_wpm: int
    score: int
    label: str


def adjusted_wpm(wpm: float, word_count: int) -> float:
    stability = min(1.0, max(1, word_count) / STABLE_WORD_COUNT)
    return wpm * (0.65 + 0.35 * stability)


def grade_reading_speed(wpm: float, word_count: int) -> ReadingSpeedGrade:
    """
    Grade a reading speed.

    Args:
        wpm: Raw words per minute
        word_count: Number of words in the sentence read

    Returns:
        Rounded adjusted wpm with the score and label of the first bucket
        whose minimum it reaches
    """
    adjusted = adjusted_wpm(wpm, word_count)
    bucket = next(
        (b for b in READING_SPEED_BUCKETS if adjusted >= b.min_wpm),
        READING_SPEED_BUCKETS[-1]
    )
    return ReadingSpeedGrade(adjusted_wpm=round_half_up(adjusted), score=bucket.score, label=bucket.label)


def label_for_wpm(wpm: float, word_count: int) -> str:
    return grade_reading_speed(wpm, word_count).label
