"""
Reset scheduling for periodic quests.

Pure functions computing when a quest cycle rolls over. The timezone of the
`now` argument decides what "midnight" means; the engine passes an aware
datetime in the configured reset timezone.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Optional, Union

from questline.domain.models.quest import ResetPeriod

WEEKLY_RESET_WEEKDAY = 0  # Monday


def _midnight(day: datetime) -> datetime:
    return datetime.combine(day.date(), time.min, tzinfo=day.tzinfo)


def next_reset(period: Union[ResetPeriod, str], now: datetime) -> Optional[datetime]:
    """
    Next rollover instant for a reset period.

    - never  -> None
    - daily  -> 00:00 of the day after `now`
    - weekly -> 00:00 of the next Monday; on a Monday this is seven days out

    The result is always strictly later than `now`.

    Example:
        >>> next_reset("daily", datetime(2024, 5, 6, 15, 30))
        datetime.datetime(2024, 5, 7, 0, 0)
        >>> next_reset("weekly", datetime(2024, 5, 6, 0, 0))  # a Monday
        datetime.datetime(2024, 5, 13, 0, 0)
    """
    period = ResetPeriod(period)

    if period is ResetPeriod.NEVER:
        return None

    if period is ResetPeriod.DAILY:
        return _midnight(now) + timedelta(days=1)

    days_ahead = (WEEKLY_RESET_WEEKDAY - now.weekday()) % 7 or 7
    return _midnight(now) + timedelta(days=days_ahead)


def is_cycle_elapsed(reset_at: Optional[datetime], now: datetime) -> bool:
    """True when a cycle bounded by `reset_at` has rolled over at `now`."""
    return reset_at is not None and now >= reset_at
