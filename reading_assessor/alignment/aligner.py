"""
Edit-distance alignment of spoken words against the expected sentence.

Word matching uses a windowed search around each expected position rather
than a global alignment, which keeps the pass linear and tolerates small
insertions or deletions from disfluent reading.
"""

import logging
from enum import Enum
from typing import List, Sequence, Tuple

import Levenshtein

from ..models import WordAlignment


logger = logging.getLogger(__name__)


EXACT_MATCH_THRESHOLD = 95.0
SOFT_MATCH_THRESHOLD = 60.0
SOFT_MATCH_WEIGHT = 0.6
SEARCH_RADIUS = 2


class MatchKind(Enum):
    """Classification of a word alignment by similarity."""
    EXACT = "exact"
    SOFT = "soft"
    MISMATCH = "mismatch"


def levenshtein(a: Sequence, b: Sequence) -> int:
    """Unit-cost insert/delete/substitute distance between two sequences."""
    return Levenshtein.distance(a, b)


def word_similarity(expected: str, spoken: str) -> float:
    """
    Similarity of a spoken word to an expected word as a percentage.

    Distance is measured against the expected length, floored at one so an
    empty expected word cannot divide by zero.
    """
    distance = levenshtein(expected, spoken or "")
    return max(0, len(expected) - distance) / max(1, len(expected)) * 100


def classify_similarity(similarity: float) -> MatchKind:
    if similarity >= EXACT_MATCH_THRESHOLD:
        return MatchKind.EXACT
    if similarity >= SOFT_MATCH_THRESHOLD:
        return MatchKind.SOFT
    return MatchKind.MISMATCH


class WordAligner:
    """Matches each expected word to the closest spoken word nearby."""

    def __init__(self, search_radius: int = SEARCH_RADIUS):
        self.search_radius = search_radius

    def align(self, expected_words: Sequence[str], spoken_words: Sequence[str]) -> List[WordAlignment]:
        """
        Align normalized expected words to normalized spoken words.

        Args:
            expected_words: Words of the target sentence, in order
            spoken_words: Words of the transcript, in order

        Returns:
            One WordAlignment per expected word, in expected order
        """
        alignments = []
        for i, expected in enumerate(expected_words):
            best = ""
            best_distance = None
            start = max(0, i - self.search_radius)
            stop = min(len(spoken_words), i + self.search_radius + 1)
            for j in range(start, stop):
                distance = levenshtein(expected, spoken_words[j])
                if best_distance is None or distance < best_distance:
                    best_distance = distance
                    best = spoken_words[j]
            alignments.append(WordAlignment(
                expected_word=expected,
                matched_spoken_word=best,
                similarity_percent=word_similarity(expected, best),
            ))
        logger.debug(f"Aligned {len(expected_words)} expected words against {len(spoken_words)} spoken words")
        return alignments

    @staticmethod
    def count_matches(alignments: Sequence[WordAlignment]) -> Tuple[int, int]:
        """Return (exact, soft) match counts."""
        exact = soft = 0
        for alignment in alignments:
            kind = classify_similarity(alignment.similarity_percent)
            if kind is MatchKind.EXACT:
                exact += 1
            elif kind is MatchKind.SOFT:
                soft += 1
        return exact, soft

    def word_accuracy(self, alignments: Sequence[WordAlignment]) -> float:
        """Exact matches count fully, soft matches at 60%, over all expected words."""
        exact, soft = self.count_matches(alignments)
        return (exact + SOFT_MATCH_WEIGHT * soft) / max(1, len(alignments)) * 100


def compare_phoneme_arrays(expected: Sequence[str], actual: Sequence[str]) -> float:
    """
    Positional phoneme match percentage with one position of slack.

    A token counts as matched if the actual sequence carries it at the same
    index or at either neighbouring index.
    """
    if not expected:
        return 0.0
    matches = 0
    for i, token in enumerate(expected):
        candidates = (i, i - 1, i + 1)
        if any(0 <= k < len(actual) and actual[k] == token for k in candidates):
            matches += 1
    return matches / len(expected) * 100
