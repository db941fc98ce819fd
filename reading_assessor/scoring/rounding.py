"""
Rounding and clamping helpers shared by the scoring code.

Scores round half up (2.5 -> 3), unlike the built-in round().
"""

import math


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_to(value: float, digits: int) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def clamp_score(value: float, low: int = 0, high: int = 100) -> int:
    """Round half up and clamp into [low, high]."""
    return min(high, max(low, round_half_up(value)))
