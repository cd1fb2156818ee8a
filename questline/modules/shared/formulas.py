"""
Questline leveling formulas.

Purpose
-------
Pure calculation functions mapping cumulative experience points to a level.
These are the single source of truth for levels: the `level` column stored on
a profile is a cache and is corrected whenever it disagrees with
`calculate_level(points)`.

Design Notes
------------
- Pure functions only (no side effects, no config access)
- Level 1 costs `base_xp`; each following level costs the previous cost times
  `growth`, rounded half-up at every step. The rounding is applied
  iteratively so every step matches the persisted history exactly; a closed
  form `base * growth ** n` drifts after a few levels.
- The walk stops at MAX_LEVEL.

Usage
-----
    from questline.modules.shared.formulas import level_progress

    info = level_progress(250)
    info.level, info.xp_in_level, info.xp_to_next
"""

from __future__ import annotations

import math
from dataclasses import dataclass

BASE_XP = 10
GROWTH_FACTOR = 1.2
MAX_LEVEL = 100


@dataclass(frozen=True)
class LevelProgress:
    """
    Where a point total sits on the leveling curve.

    Attributes
    ----------
    level : int
        Current level (1..max_level)
    xp_in_level : int
        Points earned past the start of the current level
    xp_to_next : int
        Cost of the next level (0 at max level)
    cumulative_xp : int
        Points needed to reach the current level
    is_max_level : bool
        True once max_level is reached
    """

    level: int
    xp_in_level: int
    xp_to_next: int
    cumulative_xp: int
    is_max_level: bool

    @property
    def percent(self) -> float:
        """Progress through the current level in [0, 100]."""
        if self.is_max_level or self.xp_to_next <= 0:
            return 100.0
        return min(100.0, self.xp_in_level / self.xp_to_next * 100.0)


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero for positives.

    Example:
        >>> round_half_up(2.5)
        3
        >>> round(2.5)
        2
    """
    return int(math.floor(value + 0.5))


def xp_for_level(level: int, base_xp: int = BASE_XP, growth: float = GROWTH_FACTOR) -> int:
    """
    Cost of a single level on the curve.

    Args:
        level: Level whose cost is requested
        base_xp: Cost of level 1
        growth: Per-level multiplier

    Returns:
        Experience required for that level

    Example:
        >>> xp_for_level(1)
        10
        >>> xp_for_level(2)
        12
        >>> xp_for_level(3)
        14
    """
    xp = base_xp
    if level <= 1:
        return xp
    for _ in range(2, level + 1):
        xp = round_half_up(xp * growth)
    return xp


def level_progress(
    total_points: int,
    base_xp: int = BASE_XP,
    growth: float = GROWTH_FACTOR,
    max_level: int = MAX_LEVEL,
) -> LevelProgress:
    """
    Walk the curve from level 1 and locate `total_points` on it.

    Going from level L to L+1 costs `xp_for_level(L + 1)`. Negative totals are
    treated as zero.

    Example:
        >>> level_progress(10)
        LevelProgress(level=1, xp_in_level=10, xp_to_next=12, cumulative_xp=0, is_max_level=False)
        >>> level_progress(12).level
        2
    """
    points = max(0, int(total_points))
    level = 1
    cumulative = 0

    # Per-level cost is carried forward instead of recomputed from level 1.
    next_cost = xp_for_level(2, base_xp, growth)
    while level < max_level:
        if points < cumulative + next_cost:
            break
        cumulative += next_cost
        level += 1
        next_cost = round_half_up(next_cost * growth)

    is_max = level >= max_level
    return LevelProgress(
        level=level,
        xp_in_level=points - cumulative,
        xp_to_next=0 if is_max else next_cost,
        cumulative_xp=cumulative,
        is_max_level=is_max,
    )


def calculate_level(
    total_points: int,
    base_xp: int = BASE_XP,
    growth: float = GROWTH_FACTOR,
    max_level: int = MAX_LEVEL,
) -> int:
    """Level for a point total. Shorthand for `level_progress(...).level`."""
    return level_progress(total_points, base_xp, growth, max_level).level


def leveled_up(points_before: int, points_after: int) -> bool:
    """True when adding points crossed at least one level boundary."""
    return calculate_level(points_after) > calculate_level(points_before)
