"""
Scoring engine for a single reading attempt.

Combines word alignment, phoneme comparison, VAD timing and, when the
primary provider supplied them, native pronunciation sub-scores into the
per-card scores shown to the teacher. Every ratio uses a ``max(1, ...)``
floor, so empty sentences, empty transcripts and zero durations produce
clamped scores instead of errors.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..alignment.aligner import WordAligner, compare_phoneme_arrays
from ..alignment.languages import LanguageProfile, ENGLISH
from ..alignment.normalizer import normalize
from ..alignment.phonemes import PhonemeApproximator
from ..models import (
    ErrorType, PronunciationScores, SlideScore, SpeechTiming, WordAlignment, WordFeedback
)
from ..providers.aggregation import apply_omissions
from .reading_speed import grade_reading_speed
from .rounding import clamp_score, round_half_up, round_to


logger = logging.getLogger(__name__)


FEEDBACK_OK_THRESHOLD = 85
DEFAULT_CONFIDENCE = 0.8

# Weights of the fallback pronunciation composite
WORD_ACCURACY_WEIGHT = 0.5
PHONEME_ACCURACY_WEIGHT = 0.35
CONFIDENCE_WEIGHT = 0.15

# Blend of provider accuracy and per-word accuracy on the primary path
PROVIDER_ACCURACY_WEIGHT = 0.6
WORD_SCORE_WEIGHT = 0.4

LABEL_THRESHOLDS = (
    (90, "Excellent"),
    (80, "Very Good"),
    (70, "Good"),
    (60, "Fair"),
    (0, "Poor"),
)

REMARKS = {
    "Excellent": "Excellent: outstanding delivery and pacing!",
    "Very Good": "Very Good: just a little polish needed.",
    "Good": "Good: keep practicing for smoother speech.",
    "Fair": "Fair: focus on clarity and confidence.",
    "Poor": "Poor: let's build clarity and pace together.",
}


def label_for_score(average_score: int) -> str:
    for threshold, label in LABEL_THRESHOLDS:
        if average_score >= threshold:
            return label
    return "Poor"


@dataclass
class ScoreResult:
    """All scores of one attempt; integers except phoneme accuracy."""
    expected_words: List[str]
    spoken_words: List[str]
    alignments: List[WordAlignment]
    word_feedback: List[WordFeedback]
    word_accuracy: float
    correctness: int
    phoneme_accuracy: float
    fluency_score: int
    completeness_score: int
    wpm: int
    adjusted_wpm: int
    reading_speed_score: int
    reading_speed_label: str
    word_count: int
    pron_score: int
    average_score: int
    label: str
    remarks: str
    transcript: str = ""
    provider: Optional[str] = None
    omitted_words: List[str] = field(default_factory=list)

    def to_slide(self, card_index: int, sentence: str) -> SlideScore:
        return SlideScore(
            card_index=card_index,
            sentence=sentence,
            pron_score=self.pron_score,
            correctness=self.correctness,
            fluency_score=self.fluency_score,
            completeness_score=self.completeness_score,
            reading_speed_wpm=self.wpm,
            reading_speed_score=self.reading_speed_score,
            average_score=self.average_score,
            transcription=self.transcript,
        )


class ScoringEngine:
    """
    Stateless scorer. Safe to share between threads.
    """

    def __init__(self, profile: LanguageProfile = ENGLISH, aligner: Optional[WordAligner] = None):
        self.profile = profile
        self.aligner = aligner or WordAligner()
        self.phonemes = PhonemeApproximator(profile)

    def score(self,
              expected_text: str,
              spoken_text: str,
              timing: Optional[SpeechTiming] = None,
              provider_scores: Optional[PronunciationScores] = None,
              confidence: Optional[float] = None,
              provider_words: Optional[Sequence[WordFeedback]] = None,
              provider: Optional[str] = None) -> ScoreResult:
        """
        Score a transcript against the expected sentence.

        Args:
            expected_text: Sentence the reader was asked to read
            spoken_text: Transcript of the attempt
            timing: VAD speech span and silence; missing timing means a 1 ms span
            provider_scores: Native sub-scores from the primary provider
            confidence: Recognizer confidence in [0, 1] for the fallback path
            provider_words: Per-word results from the primary provider
            provider: Name of the provider that produced the transcript

        Returns:
            ScoreResult with every score clamped to [0, 100]
        """
        timing = timing or SpeechTiming()
        expected_words = normalize(expected_text, self.profile)
        spoken_words = normalize(spoken_text, self.profile)
        total = len(expected_words)

        alignments = self.aligner.align(expected_words, spoken_words)
        word_accuracy = self.aligner.word_accuracy(alignments)

        phoneme_accuracy = compare_phoneme_arrays(
            self.phonemes.approximate_words(expected_words),
            self.phonemes.approximate_words(spoken_words),
        )

        total_speech_ms = timing.total_speech_ms
        pause_ratio = min(1.0, timing.cumulative_silent_ms / total_speech_ms)
        fluency_score = clamp_score((1 - pause_ratio) * 100)

        wpm = max(0, round_half_up(total / (total_speech_ms / 1000.0) * 60))
        speed = grade_reading_speed(wpm, total)

        if provider_scores is not None:
            word_mean = word_accuracy
            if provider_words:
                word_feedback = apply_omissions(list(provider_words), expected_text, self.profile)
                word_scores = [w.accuracy_score for w in word_feedback if w.accuracy_score is not None]
                if word_scores:
                    word_mean = sum(word_scores) / len(word_scores)
            else:
                word_feedback = self._alignment_feedback(alignments)
            pron_score = clamp_score(provider_scores.pronunciation)
            correctness = clamp_score(
                PROVIDER_ACCURACY_WEIGHT * provider_scores.accuracy + WORD_SCORE_WEIGHT * word_mean
            )
        else:
            word_feedback = self._alignment_feedback(alignments)
            conf = DEFAULT_CONFIDENCE if confidence is None else confidence
            pron_score = clamp_score(
                WORD_ACCURACY_WEIGHT * word_accuracy
                + PHONEME_ACCURACY_WEIGHT * phoneme_accuracy
                + CONFIDENCE_WEIGHT * conf * 100
            )
            correctness = clamp_score(word_accuracy)

        omitted = [w.word for w in word_feedback if w.error_type is ErrorType.OMITTED]
        completeness_score = clamp_score(100 - len(omitted) / total * 100) if total else 100

        average_score = clamp_score((pron_score + correctness + speed.score) / 3)
        label = label_for_score(average_score)

        result = ScoreResult(
            expected_words=expected_words,
            spoken_words=spoken_words,
            alignments=alignments,
            word_feedback=word_feedback,
            word_accuracy=word_accuracy,
            correctness=correctness,
            phoneme_accuracy=round_to(phoneme_accuracy, 2),
            fluency_score=fluency_score,
            completeness_score=completeness_score,
            wpm=wpm,
            adjusted_wpm=speed.adjusted_wpm,
            reading_speed_score=speed.score,
            reading_speed_label=speed.label,
            word_count=total,
            pron_score=pron_score,
            average_score=average_score,
            label=label,
            remarks=REMARKS[label],
            transcript=spoken_text or "",
            provider=provider,
            omitted_words=omitted,
        )
        logger.info(
            f"Scored attempt: average {average_score} ({label}), pron {pron_score}, "
            f"correctness {correctness}, fluency {fluency_score}, {wpm} wpm"
        )
        return result

    @staticmethod
    def _alignment_feedback(alignments: Sequence[WordAlignment]) -> List[WordFeedback]:
        feedback = []
        for alignment in alignments:
            score = round_half_up(alignment.similarity_percent)
            if score == 0:
                error_type = ErrorType.OMITTED
            elif score < FEEDBACK_OK_THRESHOLD:
                error_type = ErrorType.MISPRONOUNCED
            else:
                error_type = ErrorType.NONE
            feedback.append(WordFeedback(word=alignment.expected_word, accuracy_score=score, error_type=error_type))
        return feedback
