"""
Quest progress state machine.

Pure functions run inside a store transaction. They take the loaded record
(or None), the quest definition, the update and `now`, and return the new
state without touching anything else, so a conflicting transaction can
simply be re-run.

Steps, in order:
1. load-or-init
2. reset-on-read when the cycle has elapsed
3. dedup gate for quests counting distinct targets
4. completion short-circuit
5. apply the increment (or raise to an absolute value)
6. completion detection
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from questline.domain.models.progress import UserQuestProgress
from questline.domain.models.quest import QuestDefinition
from questline.modules.quests.reset_scheduler import is_cycle_elapsed, next_reset


class Outcome(str, Enum):
    PROGRESSED = "progressed"
    COMPLETED = "completed"
    UNCHANGED = "unchanged"
    DUPLICATE_TARGET = "duplicate_target"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class ProgressUpdate:
    """
    One requested change.

    `absolute=True` raises progress to `value` instead of adding it; used when
    the caller knows the total (completed-dailies count, follower count).
    """

    value: int
    absolute: bool = False
    target_user_id: Optional[str] = None

    @classmethod
    def increment(cls, amount: int = 1, target_user_id: Optional[str] = None) -> ProgressUpdate:
        return cls(value=amount, target_user_id=target_user_id)

    @classmethod
    def at_least(cls, total: int) -> ProgressUpdate:
        return cls(value=total, absolute=True)


@dataclass(frozen=True)
class TransitionResult:
    outcome: Outcome
    record: UserQuestProgress
    previous_progress: int
    was_created: bool
    was_reset: bool

    @property
    def just_completed(self) -> bool:
        return self.outcome is Outcome.COMPLETED

    @property
    def changed(self) -> bool:
        return self.outcome in (Outcome.PROGRESSED, Outcome.COMPLETED)

    @property
    def should_persist(self) -> bool:
        return self.changed or self.was_reset or self.was_created


def load_or_init(
    existing: Optional[UserQuestProgress],
    quest: QuestDefinition,
    user_id: str,
    now: datetime,
) -> tuple[UserQuestProgress, bool]:
    """Working copy of the record, and whether it had to be created."""
    if existing is None:
        return (
            UserQuestProgress.new(user_id, quest.id, now, next_reset(quest.reset_period, now)),
            True,
        )

    record = existing.copy()
    if quest.is_periodic and record.reset_at is None:
        # Quest became periodic after the record was written.
        record.reset_at = next_reset(quest.reset_period, now)
    return record, False


def reset_if_elapsed(record: UserQuestProgress, quest: QuestDefinition, now: datetime) -> bool:
    """Roll the record into a new cycle in place. Returns True if it did."""
    if not quest.is_periodic or not is_cycle_elapsed(record.reset_at, now):
        return False

    record.progress = 0
    record.completed = False
    record.completed_at = None
    record.followed_users = set()
    record.reset_at = next_reset(quest.reset_period, now)
    record.updated_at = now
    return True


def is_completed_in_cycle(
    record: Optional[UserQuestProgress], quest: QuestDefinition, now: datetime
) -> bool:
    """Completed and not yet rolled over; never mutates the record."""
    if record is None or not record.completed:
        return False
    return not (quest.is_periodic and is_cycle_elapsed(record.reset_at, now))


def current_view(
    record: Optional[UserQuestProgress], quest: QuestDefinition, user_id: str, now: datetime
) -> tuple[UserQuestProgress, bool]:
    """Reset-aware view of a record for display. Returns (view, was_reset)."""
    view, _ = load_or_init(record, quest, user_id, now)
    return view, reset_if_elapsed(view, quest, now)


def apply_progress(
    existing: Optional[UserQuestProgress],
    quest: QuestDefinition,
    user_id: str,
    update: ProgressUpdate,
    now: datetime,
) -> TransitionResult:
    record, created = load_or_init(existing, quest, user_id, now)
    was_reset = reset_if_elapsed(record, quest, now)
    previous = record.progress

    def result(outcome: Outcome) -> TransitionResult:
        return TransitionResult(
            outcome=outcome,
            record=record,
            previous_progress=previous,
            was_created=created,
            was_reset=was_reset,
        )

    target = update.target_user_id
    if quest.unique_targets and target is not None and target in record.followed_users:
        return result(Outcome.DUPLICATE_TARGET)

    if record.completed:
        return result(Outcome.ALREADY_COMPLETED)

    if update.absolute:
        raw = max(record.progress, update.value)
    else:
        step = max(update.value, 0)
        if quest.unique_targets and target is not None:
            # One new member moves progress by one
            step = min(step, 1)
        raw = record.progress + step
    new_progress = quest.cap(raw)

    if new_progress == record.progress:
        return result(Outcome.UNCHANGED)

    record.progress = new_progress
    record.updated_at = now
    if quest.unique_targets and target is not None:
        record.followed_users.add(target)

    if new_progress >= quest.target_value:
        record.completed = True
        record.completed_at = now
        return result(Outcome.COMPLETED)

    return result(Outcome.PROGRESSED)


def count_completed(
    records: Iterable[tuple[QuestDefinition, Optional[UserQuestProgress]]],
    now: datetime,
) -> int:
    """How many (quest, record) pairs are completed in their current cycle."""
    return sum(1 for quest, record in records if is_completed_in_cycle(record, quest, now))
