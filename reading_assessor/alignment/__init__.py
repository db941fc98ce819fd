"""
Text alignment module: normalization, phoneme approximation and word matching.
"""

from .languages import LanguageProfile, ENGLISH, FILIPINO, get_profile
from .normalizer import normalize, normalize_text
from .phonemes import PhonemeApproximator, approx_phonemes
from .aligner import WordAligner, MatchKind, levenshtein, compare_phoneme_arrays

__all__ = [
    'LanguageProfile',
    'ENGLISH',
    'FILIPINO',
    'get_profile',
    'normalize',
    'normalize_text',
    'PhonemeApproximator',
    'approx_phonemes',
    'WordAligner',
    'MatchKind',
    'levenshtein',
    'compare_phoneme_arrays'
]
