"""
Text normalization for expected and spoken sentences.

Expected and spoken text must pass through the same normalizer before
any comparison, otherwise case and punctuation show up as reading errors.
"""

import re
from functools import lru_cache
from typing import List, Optional

from .languages import LanguageProfile, ENGLISH


@lru_cache(maxsize=None)
def _strip_pattern(alphabet: str) -> 're.Pattern':
    return re.compile(f"[^{alphabet}]")


def normalize_text(text: Optional[str], profile: LanguageProfile = ENGLISH) -> str:
    """
    Remove characters outside the profile alphabet, lower-case and trim.

    Args:
        text: Raw sentence or transcript
        profile: Language profile supplying the alphabet

    Returns:
        Normalized text (may be empty)
    """
    if not text:
        return ""
    return _strip_pattern(profile.alphabet).sub("", text).lower().strip()


def normalize(text: Optional[str], profile: LanguageProfile = ENGLISH) -> List[str]:
    """Normalize text and split it into words, dropping empty tokens."""
    return [word for word in normalize_text(text, profile).split() if word]


def word_count(text: Optional[str], profile: LanguageProfile = ENGLISH) -> int:
    return len(normalize(text, profile))
