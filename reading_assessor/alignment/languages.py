"""
Language profiles for text normalization and phoneme approximation.

A profile fixes the alphabet kept by the normalizer, the vowel set and
digraph table used to approximate phonemes, and the locale/voice used by
the speech services.
"""

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class LanguageProfile:
    """Per-language constants shared by normalizer, phonemes and providers."""
    name: str
    # Characters kept by the normalizer, as a regex character-class body
    alphabet: str
    vowels: frozenset
    # Ordered (pattern, marker) pairs; earlier entries win at a position
    digraphs: Tuple[Tuple[str, str], ...]
    locale: str
    whisper_language: str
    voice_name: str

    @property
    def digraph_map(self) -> Dict[str, str]:
        return dict(self.digraphs)


ENGLISH = LanguageProfile(
    name="english",
    alphabet="a-zA-Z\\s'",
    vowels=frozenset("aeiou"),
    digraphs=(
        ('th', 'TH'), ('sh', 'SH'), ('ch', 'CH'), ('ph', 'F'), ('gh', 'G'), ('wh', 'WH'),
        ('ck', 'K'), ('ng', 'NG'), ('nk', 'NK'), ('ee', 'EE'), ('oo', 'OO'), ('ai', 'AY'),
        ('ay', 'AY'), ('ea', 'EE'), ('oa', 'OA'), ('ow', 'OW'), ('ou', 'OU'), ('oi', 'OI'),
        ('oy', 'OY'), ('aw', 'AW'), ('au', 'AW'), ('ar', 'AR'), ('er', 'ER'), ('ir', 'ER'),
        ('ur', 'ER'), ('or', 'OR'),
    ),
    locale="en-US",
    whisper_language="en",
    voice_name="en-US-JennyNeural",
)

FILIPINO = LanguageProfile(
    name="filipino",
    alphabet="a-zA-ZáéíóúñÑäëïöüÁÉÍÓÚ\\s'",
    vowels=frozenset("aeiouáéíóú"),
    digraphs=(
        ('ng', 'NG'), ('ny', 'NY'), ('ts', 'TS'), ('dy', 'DY'), ('sy', 'SY'), ('ly', 'LY'),
        ('th', 'T'), ('sh', 'S'), ('ch', 'CH'), ('ph', 'F'), ('gh', 'G'),
    ),
    locale="fil-PH",
    whisper_language="tl",
    voice_name="fil-PH-BlessicaNeural",
)

PROFILES = {
    ENGLISH.name: ENGLISH,
    FILIPINO.name: FILIPINO,
}


def get_profile(name: str) -> LanguageProfile:
    """
    Look up a language profile by name.

    Raises:
        KeyError: If no profile is registered under that name
    """
    key = (name or "").strip().lower()
    if key in ("en", "en-us"):
        key = ENGLISH.name
    elif key in ("fil", "tl", "fil-ph"):
        key = FILIPINO.name
    return PROFILES[key]
