"""
Unit Tests for the Quest Progress State Machine
===============================================

Purpose
-------
Exercise the pure transaction body without a store: reset-on-read, dedup
gate, completion latch, capping and absolute updates.
"""

from datetime import datetime, timedelta, timezone

import pytest

from questline.domain.models.progress import UserQuestProgress
from questline.domain.models.quest import QuestDefinition, QuestType, ResetPeriod
from questline.modules.quests import transitions
from questline.modules.quests.transitions import Outcome, ProgressUpdate

NOW = datetime(2024, 5, 8, 10, 0, tzinfo=timezone.utc)
TOMORROW = datetime(2024, 5, 9, tzinfo=timezone.utc)


def daily(target=2, **kwargs):
    return QuestDefinition(
        id=kwargs.pop("id", "daily_chat"),
        title="Chat",
        type=QuestType.DAILY,
        target_value=target,
        reward_points=10,
        reset_period=ResetPeriod.DAILY,
        **kwargs,
    )


def weekly_follow(target=3):
    return QuestDefinition(
        id="weekly_follow",
        title="Follow",
        type=QuestType.WEEKLY,
        target_value=target,
        reward_points=40,
        reset_period=ResetPeriod.WEEKLY,
        unique_targets=True,
    )


def achievement(target=3):
    return QuestDefinition(
        id="achievement_posts",
        title="Posts",
        type=QuestType.ACHIEVEMENT,
        target_value=target,
        reward_points=20,
        reset_period=ResetPeriod.NEVER,
    )


def record(quest, progress=0, completed=False, reset_at=TOMORROW, followed=()):
    return UserQuestProgress(
        user_id="u1",
        quest_id=quest.id,
        progress=progress,
        completed=completed,
        completed_at=NOW - timedelta(hours=1) if completed else None,
        reset_at=reset_at,
        followed_users=set(followed),
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(hours=1),
        version=1,
    )


@pytest.mark.unit
@pytest.mark.domain
class TestLoadOrInit:
    def test_creates_missing_record_with_reset(self):
        # Act
        created, was_created = transitions.load_or_init(None, daily(), "u1", NOW)

        # Assert
        assert was_created is True
        assert created.progress == 0
        assert created.reset_at == TOMORROW
        assert created.created_at == NOW

    def test_achievement_record_has_no_reset(self):
        created, _ = transitions.load_or_init(None, achievement(), "u1", NOW)

        assert created.reset_at is None

    def test_existing_record_is_copied(self):
        quest = weekly_follow()
        original = record(quest, followed={"a"})

        working, was_created = transitions.load_or_init(original, quest, "u1", NOW)
        working.followed_users.add("b")

        assert was_created is False
        assert original.followed_users == {"a"}


@pytest.mark.unit
@pytest.mark.domain
class TestApplyProgress:
    """Full transition from loaded record to new state."""

    def test_first_increment_progresses(self):
        # Act
        result = transitions.apply_progress(None, daily(), "u1", ProgressUpdate.increment(), NOW)

        # Assert
        assert result.outcome is Outcome.PROGRESSED
        assert result.record.progress == 1
        assert result.was_created is True
        assert result.should_persist is True
        assert result.just_completed is False

    def test_reaching_target_completes(self):
        quest = daily()

        result = transitions.apply_progress(
            record(quest, progress=1), quest, "u1", ProgressUpdate.increment(), NOW
        )

        assert result.outcome is Outcome.COMPLETED
        assert result.record.completed is True
        assert result.record.completed_at == NOW
        assert result.previous_progress == 1

    def test_completed_record_short_circuits(self):
        quest = daily()
        existing = record(quest, progress=2, completed=True)

        result = transitions.apply_progress(existing, quest, "u1", ProgressUpdate.increment(), NOW)

        assert result.outcome is Outcome.ALREADY_COMPLETED
        assert result.record.progress == 2
        assert result.should_persist is False

    def test_periodic_progress_is_capped(self):
        result = transitions.apply_progress(None, daily(target=2), "u1", ProgressUpdate.increment(5), NOW)

        assert result.outcome is Outcome.COMPLETED
        assert result.record.progress == 2

    def test_achievement_progress_overshoots(self):
        result = transitions.apply_progress(None, achievement(target=3), "u1", ProgressUpdate.increment(5), NOW)

        assert result.outcome is Outcome.COMPLETED
        assert result.record.progress == 5

    def test_elapsed_cycle_resets_before_counting(self):
        # Arrange
        quest = daily()
        stale = record(quest, progress=2, completed=True, reset_at=NOW - timedelta(hours=10))

        # Act
        result = transitions.apply_progress(stale, quest, "u1", ProgressUpdate.increment(), NOW)

        # Assert
        assert result.was_reset is True
        assert result.outcome is Outcome.PROGRESSED
        assert result.record.progress == 1
        assert result.record.completed is False
        assert result.record.completed_at is None
        assert result.record.reset_at == TOMORROW

    def test_reset_clears_dedup_set(self):
        quest = weekly_follow()
        stale = record(quest, progress=1, followed={"b"}, reset_at=NOW - timedelta(days=1))

        result = transitions.apply_progress(
            stale, quest, "u1", ProgressUpdate.increment(target_user_id="b"), NOW
        )

        assert result.outcome is Outcome.PROGRESSED
        assert result.record.followed_users == {"b"}
        assert result.record.progress == 1

    def test_duplicate_target_is_ignored(self):
        quest = weekly_follow()
        existing = record(quest, progress=1, followed={"b"})

        result = transitions.apply_progress(
            existing, quest, "u1", ProgressUpdate.increment(target_user_id="b"), NOW
        )

        assert result.outcome is Outcome.DUPLICATE_TARGET
        assert result.record.progress == 1
        assert result.should_persist is False

    def test_new_target_is_recorded(self):
        quest = weekly_follow()
        existing = record(quest, progress=1, followed={"b"})

        result = transitions.apply_progress(
            existing, quest, "u1", ProgressUpdate.increment(target_user_id="c"), NOW
        )

        assert result.record.progress == 2
        assert result.record.followed_users == {"b", "c"}

    def test_new_target_counts_once_regardless_of_increment(self):
        # Arrange
        quest = weekly_follow(target=5)
        existing = record(quest, progress=1, followed={"b"})

        # Act
        result = transitions.apply_progress(
            existing, quest, "u1", ProgressUpdate.increment(4, target_user_id="c"), NOW
        )

        # Assert
        assert result.outcome is Outcome.PROGRESSED
        assert result.record.progress == 2

    def test_increment_without_target_is_not_clamped(self):
        quest = weekly_follow(target=5)
        existing = record(quest, progress=1)

        result = transitions.apply_progress(existing, quest, "u1", ProgressUpdate.increment(3), NOW)

        assert result.record.progress == 4

    def test_dedup_applies_only_to_unique_target_quests(self):
        quest = daily(target=5)
        existing = record(quest, progress=1)

        result = transitions.apply_progress(
            existing, quest, "u1", ProgressUpdate.increment(target_user_id="b"), NOW
        )

        assert result.record.progress == 2
        assert result.record.followed_users == set()

    def test_absolute_update_raises_progress(self):
        quest = achievement(target=10)

        result = transitions.apply_progress(
            record(quest, progress=2, reset_at=None), quest, "u1", ProgressUpdate.at_least(7), NOW
        )

        assert result.outcome is Outcome.PROGRESSED
        assert result.record.progress == 7

    def test_absolute_update_never_lowers(self):
        quest = achievement(target=10)

        result = transitions.apply_progress(
            record(quest, progress=6, reset_at=None), quest, "u1", ProgressUpdate.at_least(3), NOW
        )

        assert result.outcome is Outcome.UNCHANGED
        assert result.record.progress == 6
        assert result.should_persist is False


@pytest.mark.unit
@pytest.mark.domain
class TestCompletionViews:
    def test_completed_in_current_cycle(self):
        quest = daily()

        assert transitions.is_completed_in_cycle(record(quest, 2, completed=True), quest, NOW) is True

    def test_completed_in_elapsed_cycle_does_not_count(self):
        quest = daily()
        stale = record(quest, 2, completed=True, reset_at=NOW - timedelta(minutes=1))

        assert transitions.is_completed_in_cycle(stale, quest, NOW) is False

    def test_current_view_leaves_record_untouched(self):
        # Arrange
        quest = daily()
        stale = record(quest, 2, completed=True, reset_at=NOW - timedelta(minutes=1))

        # Act
        view, was_reset = transitions.current_view(stale, quest, "u1", NOW)

        # Assert
        assert was_reset is True
        assert view.progress == 0
        assert stale.completed is True

    def test_count_completed(self):
        first = daily(id="d1")
        second = daily(id="d2")
        third = daily(id="d3")
        pairs = [
            (first, record(first, 2, completed=True)),
            (second, record(second, 1)),
            (third, None),
        ]

        assert transitions.count_completed(pairs, NOW) == 1
