"""
Scoring module: per-attempt scores and reading-speed grading.
"""

from .engine import ScoringEngine, ScoreResult, label_for_score, REMARKS
from .reading_speed import grade_reading_speed, ReadingSpeedGrade, READING_SPEED_BUCKETS

__all__ = [
    'ScoringEngine',
    'ScoreResult',
    'label_for_score',
    'REMARKS',
    'grade_reading_speed',
    'ReadingSpeedGrade',
    'READING_SPEED_BUCKETS'
]
