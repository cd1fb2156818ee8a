"""
Unit Tests for the Reset Scheduler
==================================

Test Coverage
-------------
- Daily and weekly rollover instants, strictly in the future
- Timezone of `now` decides midnight
- Cycle elapsed checks
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from questline.domain.models.quest import ResetPeriod
from questline.modules.quests.reset_scheduler import is_cycle_elapsed, next_reset

UTC = timezone.utc


@pytest.mark.unit
@pytest.mark.domain
class TestNextReset:
    """Rollover instants."""

    def test_never_has_no_reset(self):
        assert next_reset(ResetPeriod.NEVER, datetime(2024, 5, 8, 10, tzinfo=UTC)) is None

    def test_daily_is_next_midnight(self):
        now = datetime(2024, 5, 8, 10, 30, tzinfo=UTC)

        assert next_reset(ResetPeriod.DAILY, now) == datetime(2024, 5, 9, tzinfo=UTC)

    def test_daily_at_midnight_is_a_full_day_away(self):
        now = datetime(2024, 5, 8, tzinfo=UTC)

        assert next_reset(ResetPeriod.DAILY, now) == datetime(2024, 5, 9, tzinfo=UTC)

    def test_daily_crosses_month_and_year(self):
        now = datetime(2024, 12, 31, 23, 59, tzinfo=UTC)

        assert next_reset("daily", now) == datetime(2025, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize(
        "now, expected",
        [
            (datetime(2024, 5, 8, 10, tzinfo=UTC), datetime(2024, 5, 13, tzinfo=UTC)),  # Wednesday
            (datetime(2024, 5, 12, 23, 59, tzinfo=UTC), datetime(2024, 5, 13, tzinfo=UTC)),  # Sunday
            (datetime(2024, 5, 13, 0, 0, tzinfo=UTC), datetime(2024, 5, 20, tzinfo=UTC)),  # Monday
            (datetime(2024, 5, 13, 9, 0, tzinfo=UTC), datetime(2024, 5, 20, tzinfo=UTC)),  # Monday
        ],
    )
    def test_weekly_is_next_monday(self, now, expected):
        assert next_reset(ResetPeriod.WEEKLY, now) == expected

    def test_result_is_strictly_later(self):
        now = datetime(2024, 5, 13, tzinfo=UTC)

        for period in (ResetPeriod.DAILY, ResetPeriod.WEEKLY):
            assert next_reset(period, now) > now

    def test_keeps_timezone_of_now(self):
        # Arrange
        tz = ZoneInfo("America/New_York")
        now = datetime(2024, 5, 8, 22, 0, tzinfo=tz)

        # Act
        reset = next_reset(ResetPeriod.DAILY, now)

        # Assert
        assert reset == datetime(2024, 5, 9, 0, 0, tzinfo=tz)
        assert reset.tzinfo is tz

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError):
            next_reset("monthly", datetime(2024, 5, 8, tzinfo=UTC))


@pytest.mark.unit
@pytest.mark.domain
class TestCycleElapsed:
    def test_no_reset_never_elapses(self):
        assert is_cycle_elapsed(None, datetime(2100, 1, 1, tzinfo=UTC)) is False

    def test_elapsed_at_reset_instant(self):
        reset_at = datetime(2024, 5, 9, tzinfo=UTC)

        assert is_cycle_elapsed(reset_at, reset_at) is True

    def test_not_elapsed_before(self):
        assert is_cycle_elapsed(
            datetime(2024, 5, 9, tzinfo=UTC), datetime(2024, 5, 8, 23, 59, tzinfo=UTC)
        ) is False
