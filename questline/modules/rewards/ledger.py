"""
Reward Ledger

Purpose
-------
Credit quest rewards to a user's profile: cumulative points, the derived
level and the completion counter change together in one transaction.

Failure policy
--------------
Write conflicts are retried (LEDGER_RETRY_MAX_ATTEMPTS, default 3) with
exponential backoff. When retries run out the error is logged and
swallowed: the quest that triggered the reward stays completed, so a later
call can never issue the same reward twice. The missed points are not
reconciled automatically.

Events
------
- player.points_awarded: every successful credit
- player.level_up: when the credit crossed a level boundary
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from questline.core.event.types import QuestEvents
from questline.core.logging.logger import get_logger
from questline.core.retry_policy import RetryConfig, RetryPolicy
from questline.domain.models.profile import UserProfile
from questline.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from questline.core.event.bus import EventBus
    from questline.modules.quests.store import ProgressStore, StoreTransaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class AwardResult:
    user_id: str
    points_awarded: int
    points_before: int
    points_after: int
    level_before: int
    level_after: int
    total_quests_completed: int

    @property
    def leveled_up(self) -> bool:
        return self.level_after > self.level_before


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RewardLedger(BaseService):
    """
    Usage
    -----
    >>> ledger = RewardLedger(store, event_bus)
    >>> result = await ledger.award_points("u1", 15)
    >>> result.leveled_up if result else None
    """

    def __init__(
        self,
        store: ProgressStore,
        event_bus: Optional[EventBus] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        super().__init__(event_bus, logger)
        self._store = store
        self._retry = retry or RetryPolicy(RetryConfig.for_ledger())

    async def award_points(
        self, user_id: str, points: int, now: Optional[datetime] = None
    ) -> Optional[AwardResult]:
        """
        Credit `points` and count one completed quest.

        Returns None when the credit could not be written; never raises for
        storage failures.
        """
        if points < 0:
            raise ValueError(f"reward points cannot be negative: {points}")
        stamp = now or _utcnow()

        async def credit(tx: StoreTransaction) -> AwardResult:
            profile = await tx.get_profile(user_id) or UserProfile.new(user_id, stamp)
            before_points = profile.points
            before_level = profile.derived_level

            profile.add_points(points, stamp)
            await tx.put_profile(profile)

            return AwardResult(
                user_id=user_id,
                points_awarded=points,
                points_before=before_points,
                points_after=profile.points,
                level_before=before_level,
                level_after=profile.level,
                total_quests_completed=profile.total_quests_completed,
            )

        try:
            result = await self._store.run_transaction(
                credit, operation_name="ledger.award_points", retry=self._retry
            )
        except Exception as exc:
            self.log_error("award_points", exc, user_id=user_id, points=points)
            return None

        self.log.info(
            "Quest reward credited",
            extra={
                "user_id": user_id,
                "points_awarded": points,
                "points_after": result.points_after,
                "level_after": result.level_after,
                "leveled_up": result.leveled_up,
            },
        )

        await self.emit_event(
            QuestEvents.POINTS_AWARDED,
            {
                "user_id": user_id,
                "points_awarded": points,
                "points": result.points_after,
                "level": result.level_after,
            },
        )
        if result.leveled_up:
            await self.emit_event(
                QuestEvents.LEVEL_UP,
                {
                    "user_id": user_id,
                    "old_level": result.level_before,
                    "new_level": result.level_after,
                },
            )
        return result

    async def load_profile(self, user_id: str, now: Optional[datetime] = None) -> UserProfile:
        """
        Read path for a profile.

        Creates the default profile on first access and rewrites a cached
        level that disagrees with the points total.
        """
        stamp = now or _utcnow()

        async def load(tx: StoreTransaction) -> UserProfile:
            profile = await tx.get_profile(user_id)
            if profile is None:
                profile = UserProfile.new(user_id, stamp)
                await tx.put_profile(profile)
                return profile

            if profile.has_level_drift():
                self.log.warning(
                    "Cached level diverged from points; correcting",
                    extra={
                        "user_id": user_id,
                        "cached_level": profile.level,
                        "derived_level": profile.derived_level,
                        "points": profile.points,
                    },
                )
                profile.level = profile.derived_level
                profile.updated_at = stamp
                await tx.put_profile(profile)
            return profile

        return await self._store.run_transaction(load, operation_name="ledger.load_profile")
