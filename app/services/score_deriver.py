"""
Lumen — Score derivation.

Turns the oracle's two swipe probabilities into the persisted scores:

  one_way = P(source swipes right on target)
  two_way = round(P(source -> target) x P(target -> source) / 100)

The two-way score is the joint probability mapped back onto 0-100.  Rounding
is half-up on the integer product, e.g. 33 x 34 = 1122 -> 11.22 -> 11 and
25 x 50 = 1250 -> 12.5 -> 13.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

logger = structlog.get_logger("lumen.score_deriver")

_MIN_PROBABILITY = 0
_MAX_PROBABILITY = 100


@dataclass(frozen=True)
class DerivedScores:
    one_way: int
    two_way: int


def clamp_probability(value: int) -> int:
    """Coerce an oracle probability into [0, 100]."""
    clamped = max(_MIN_PROBABILITY, min(_MAX_PROBABILITY, int(value)))
    if clamped != value:
        logger.debug("probability_clamped", raw=value, clamped=clamped)
    return clamped


def derive_scores(source_probability: int, target_probability: int) -> DerivedScores:
    """Derive the one-way and two-way scores from two swipe probabilities."""
    source = clamp_probability(source_probability)
    target = clamp_probability(target_probability)

    two_way = (source * target + 50) // 100

    return DerivedScores(one_way=source, two_way=two_way)
