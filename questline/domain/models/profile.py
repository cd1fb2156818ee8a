"""
User profile domain model (progression subset).

`points` only grows. `level` is a cache of `calculate_level(points)`; read
paths correct it when the two disagree. The verification fields belong to
the external-account verification gate.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from questline.modules.shared.formulas import LevelProgress, calculate_level, level_progress


@dataclass
class UserProfile:
    user_id: str
    points: int = 0
    level: int = 1
    total_quests_completed: int = 0

    verification_attempts: int = 0
    verification_first_attempt_at: Optional[datetime] = None
    verification_code: Optional[str] = None
    verification_code_generated_at: Optional[datetime] = None
    external_account: Optional[str] = None
    external_account_verified: bool = False
    external_account_verified_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = None

    @classmethod
    def new(cls, user_id: str, now: datetime) -> UserProfile:
        return cls(user_id=user_id, created_at=now, updated_at=now)

    def copy(self) -> UserProfile:
        return replace(self)

    @property
    def derived_level(self) -> int:
        return calculate_level(self.points)

    @property
    def level_info(self) -> LevelProgress:
        return level_progress(self.points)

    def has_level_drift(self) -> bool:
        return self.level != self.derived_level

    def add_points(self, amount: int, now: datetime) -> None:
        """Credit one quest reward; recomputes the cached level."""
        if amount < 0:
            raise ValueError("reward points cannot be negative")
        self.points += amount
        self.level = calculate_level(self.points)
        self.total_quests_completed += 1
        self.updated_at = now
