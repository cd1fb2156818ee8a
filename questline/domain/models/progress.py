"""
Per-user quest progress domain model.

One `UserQuestProgress` exists per (user_id, quest_id). It is created lazily
on the first progress call, reset in place when its cycle has elapsed, and
never deleted. `version` is the optimistic-concurrency token owned by the
store; domain code never touches it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional


@dataclass
class UserQuestProgress:
    user_id: str
    quest_id: str
    progress: int = 0
    completed: bool = False
    completed_at: Optional[datetime] = None
    reset_at: Optional[datetime] = None
    followed_users: set[str] = field(default_factory=set)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        quest_id: str,
        now: datetime,
        reset_at: Optional[datetime],
    ) -> UserQuestProgress:
        return cls(
            user_id=user_id,
            quest_id=quest_id,
            reset_at=reset_at,
            created_at=now,
            updated_at=now,
        )

    def copy(self) -> UserQuestProgress:
        """Detached copy; the dedup set is not shared."""
        return replace(self, followed_users=set(self.followed_users))

