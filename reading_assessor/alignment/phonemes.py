"""
Approximate phoneme synthesis for pronunciation comparison.

This is a spelling heuristic, not a phonetic transcription: a digraph
table is collapsed into markers and the remaining letters are grouped
into vowel runs and consonant runs. Score thresholds elsewhere (85/95)
are calibrated against this heuristic's error distribution, so its
output must stay stable.
"""

import re
from functools import lru_cache
from typing import Iterable, List

from .languages import LanguageProfile, ENGLISH


@lru_cache(maxsize=None)
def _letter_pattern(alphabet: str) -> 're.Pattern':
    letters = alphabet.replace("\\s", "")
    return re.compile(f"[^{letters}]")


class PhonemeApproximator:
    """Maps words to coarse phoneme-like token sequences for one language."""

    def __init__(self, profile: LanguageProfile = ENGLISH):
        self.profile = profile

    def approximate(self, word: str) -> List[str]:
        """
        Approximate the phoneme tokens of a single word.

        Args:
            word: Word to approximate (any case, punctuation is dropped)

        Returns:
            Ordered list of non-empty tokens without whitespace
        """
        if not word:
            return []
        cleaned = _letter_pattern(self.profile.alphabet).sub("", word.lower())
        marked = self._mark_digraphs(cleaned)
        return self._group_runs(marked)

    def approximate_words(self, words: Iterable[str]) -> List[str]:
        """Concatenate the phoneme tokens of several words."""
        tokens: List[str] = []
        for word in words:
            tokens.extend(self.approximate(word))
        return tokens

    def _mark_digraphs(self, word: str) -> str:
        """Replace digraphs with space-delimited markers, left to right, non-overlapping."""
        parts: List[str] = []
        i = 0
        while i < len(word):
            for pattern, marker in self.profile.digraphs:
                if word.startswith(pattern, i):
                    parts.append(f" {marker} ")
                    i += len(pattern)
                    break
            else:
                parts.append(word[i])
                i += 1
        return "".join(parts)

    def _group_runs(self, marked: str) -> List[str]:
        """Group consecutive vowels into one token and consecutive consonants into another."""
        vowels = self.profile.vowels
        tokens: List[str] = []
        buffer = ""
        i = 0
        while i < len(marked):
            char = marked[i]
            if char == " ":
                if buffer:
                    tokens.append(buffer)
                buffer = ""
            elif char in vowels:
                if buffer:
                    tokens.append(buffer)
                    buffer = ""
                run = char
                while i + 1 < len(marked) and marked[i + 1] in vowels:
                    i += 1
                    run += marked[i]
                tokens.append(run.upper())
            else:
                buffer += char.upper()
            i += 1
        if buffer:
            tokens.append(buffer)
        return [token for token in tokens if token]


def approx_phonemes(word: str, profile: LanguageProfile = ENGLISH) -> List[str]:
    """Approximate the phoneme tokens of a word with the given profile."""
    return PhonemeApproximator(profile).approximate(word)
