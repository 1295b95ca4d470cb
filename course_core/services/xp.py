"""Differential XP: reward the improvement, not the repetition.

A learner earns XP for how far a new score moves past their previous
best on the same course, plus a flat bonus for having improved at all.
Re-taking a course at the same (or a worse) score earns nothing, and
once a perfect score is on record the course pays out nothing more.

    best 0   → new 80   : floor(0.80 * 500) + 25 = 425
    best 80  → new 100  : floor(0.20 * 500) + 25 = 125
    best 100 → new 100  : 0
    best 80  → new 70   : 0
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_COURSE_XP = 500
PERSISTENCE_BONUS = 25
PERFECT_SCORE = 100


@dataclass(frozen=True, slots=True)
class XpBreakdown:
    improvement: float = 0
    improvement_xp: int = 0
    persistence_bonus: int = 0
    total: int = 0


@dataclass(frozen=True, slots=True)
class XpAward:
    xp_earned: int
    breakdown: XpBreakdown


_NO_AWARD = XpAward(xp_earned=0, breakdown=XpBreakdown())


def calculate_differential_xp(
    new_score: float,
    best_previous_score: float,
    total_course_xp: int = DEFAULT_COURSE_XP,
) -> XpAward:
    if best_previous_score >= PERFECT_SCORE:
        return _NO_AWARD

    improvement = max(0, new_score - best_previous_score)
    if improvement == 0:
        return _NO_AWARD

    improvement_xp = math.floor(improvement / 100 * total_course_xp)
    total = improvement_xp + PERSISTENCE_BONUS
    return XpAward(
        xp_earned=total,
        breakdown=XpBreakdown(
            improvement=improvement,
            improvement_xp=improvement_xp,
            persistence_bonus=PERSISTENCE_BONUS,
            total=total,
        ),
    )
