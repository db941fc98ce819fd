"""
Merging of streamed recognition segments and per-word feedback repair.
"""

import json
import logging
import threading
from typing import List, Optional

from ..alignment.languages import LanguageProfile, ENGLISH
from ..alignment.normalizer import normalize, normalize_text
from ..models import (
    AggregateResult, ErrorType, PronunciationScores, SpeechSegment, WordFeedback
)
from .base import no_speech_error


logger = logging.getLogger(__name__)


def parse_word_feedback(json_result: Optional[str]) -> List[WordFeedback]:
    """
    Extract per-word results from a pronunciation assessment JSON payload.

    Reads ``NBest[0].Words``; unreadable payloads yield an empty list.
    """
    if not json_result:
        return []
    try:
        payload = json.loads(json_result)
        words = payload.get('NBest', [{}])[0].get('Words', []) or []
    except (ValueError, AttributeError, IndexError, TypeError) as e:
        logger.debug(f"Could not parse word breakdown: {e}")
        return []

    feedback = []
    for entry in words:
        assessment = entry.get('PronunciationAssessment') or {}
        accuracy = assessment.get('AccuracyScore')
        feedback.append(WordFeedback(
            word=entry.get('Word', ''),
            accuracy_score=int(round(accuracy)) if accuracy is not None else None,
            error_type=ErrorType.from_provider(assessment.get('ErrorType')),
        ))
    return feedback


def apply_omissions(words: List[WordFeedback],
                    expected_text: str,
                    profile: LanguageProfile = ENGLISH) -> List[WordFeedback]:
    """
    Re-key provider word feedback onto the expected sentence.

    Walks the expected words in order with a pointer into the provider
    list. A provider word equal to the expected word is taken and the
    pointer advances; otherwise the expected word is recorded as omitted.
    The result always has one entry per expected word.
    """
    expected_words = normalize(expected_text, profile)
    repaired = []
    j = 0
    for expected in expected_words:
        if j < len(words) and normalize_text(words[j].word, profile) == expected:
            repaired.append(words[j])
            j += 1
        else:
            repaired.append(WordFeedback.omitted(expected))
    return repaired


class SegmentAggregator:
    """
    Word-count-weighted accumulation of segment sub-scores.

    Sums are order independent; the per-word list keeps arrival order.
    """

    def __init__(self, profile: LanguageProfile = ENGLISH):
        self.profile = profile
        self._lock = threading.Lock()
        self._texts: List[str] = []
        self._words: List[WordFeedback] = []
        self._weighted = PronunciationScores()
        self._scored_words = 0
        self.total_words = 0
        self.total_duration_ms = 0.0

    def add(self, segment: SpeechSegment) -> None:
        count = len(normalize(segment.raw_text, self.profile))
        with self._lock:
            if segment.raw_text:
                self._texts.append(segment.raw_text.strip())
            if count > 0 and segment.scores is not None:
                self._weighted.pronunciation += segment.scores.pronunciation * count
                self._weighted.accuracy += segment.scores.accuracy * count
                self._weighted.fluency += segment.scores.fluency * count
                self._weighted.completeness += segment.scores.completeness * count
                self._scored_words += count
            self.total_words += count
            self.total_duration_ms += segment.duration_ms
            self._words.extend(segment.words)
        logger.debug(f"Segment added: {count} words, {segment.duration_ms:.0f}ms")

    def finalize(self, provider_name: str) -> AggregateResult:
        """
        Produce the merged result.

        Raises:
            NoSpeechDetectedError: If no words were recognized
        """
        with self._lock:
            if self.total_words == 0:
                raise no_speech_error(provider_name)

            scores = None
            if self._scored_words > 0:
                n = self._scored_words
                scores = PronunciationScores(
                    pronunciation=self._weighted.pronunciation / n,
                    accuracy=self._weighted.accuracy / n,
                    fluency=self._weighted.fluency / n,
                    completeness=self._weighted.completeness / n,
                )
            return AggregateResult(
                transcript=" ".join(t for t in self._texts if t),
                duration_ms=self.total_duration_ms,
                word_count=self.total_words,
                provider=provider_name,
                scores=scores,
                words=list(self._words),
            )
