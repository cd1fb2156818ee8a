"""
Quest definition domain model.

Purpose
-------
Immutable description of one objective in the catalog: what counts toward
it, how much it is worth, and when it rolls over. Definitions are read-only
at runtime; per-user state lives in `UserQuestProgress`.

Invariants
----------
- `target_value >= 1`, `reward_points >= 0`
- achievements never reset (`reset_period` is `never`)
- daily/weekly quests reset on their own period
- `sync_source` and `unique_targets` are mutually exclusive
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from questline.modules.shared.exceptions import ValidationError


class QuestType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    ACHIEVEMENT = "achievement"


class ResetPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


SYNC_SOURCES = frozenset({"followers", "following"})

_DEFAULT_RESET = {
    QuestType.DAILY: ResetPeriod.DAILY,
    QuestType.WEEKLY: ResetPeriod.WEEKLY,
    QuestType.ACHIEVEMENT: ResetPeriod.NEVER,
}


@dataclass(frozen=True)
class QuestDefinition:
    """
    Immutable catalog entry.

    Attributes
    ----------
    id : str
        Stable key, also the progress record key
    title : str
        Display title, carried into completion notifications
    type : QuestType
        daily, weekly or achievement
    target_value : int
        Threshold for completion
    reward_points : int
        Experience granted once per completion cycle
    reset_period : ResetPeriod
        When progress rolls over
    is_active : bool
        Inactive quests ignore progress calls
    category : str
        Free-form grouping (chat, social, activity, ...)
    unique_targets : bool
        Progress counts distinct `target_user_id` values once per cycle
    sync_source : Optional[str]
        Social-graph count mirrored into progress ("followers"/"following")
    """

    id: str
    title: str
    type: QuestType
    target_value: int
    reward_points: int
    reset_period: ResetPeriod
    is_active: bool = True
    description: str = ""
    category: str = "general"
    unique_targets: bool = False
    sync_source: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValidationError("id", "quest id cannot be empty")
        if self.target_value < 1:
            raise ValidationError("target_value", f"must be >= 1, got {self.target_value}")
        if self.reward_points < 0:
            raise ValidationError("reward_points", f"must be >= 0, got {self.reward_points}")
        if self.type is QuestType.ACHIEVEMENT and self.reset_period is not ResetPeriod.NEVER:
            raise ValidationError("reset_period", "achievements never reset")
        if self.type is not QuestType.ACHIEVEMENT and self.reset_period is ResetPeriod.NEVER:
            raise ValidationError("reset_period", f"{self.type.value} quests must reset")
        if self.sync_source is not None and self.sync_source not in SYNC_SOURCES:
            raise ValidationError("sync_source", f"unknown source {self.sync_source!r}")
        if self.sync_source is not None and self.unique_targets:
            raise ValidationError("sync_source", "synced quests cannot be dedup-gated")

    @property
    def is_periodic(self) -> bool:
        return self.reset_period is not ResetPeriod.NEVER

    @property
    def is_daily(self) -> bool:
        return self.type is QuestType.DAILY

    def cap(self, progress: int) -> int:
        """Clamp progress to the target for periodic quests; achievements overshoot."""
        if self.is_periodic:
            return min(progress, self.target_value)
        return progress

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> QuestDefinition:
        """
        Build a definition from a catalog mapping (YAML entry).

        `reset_period` defaults from `type`; unknown keys are rejected so
        catalog typos fail loudly.
        """
        allowed = {
            "id", "title", "type", "target_value", "reward_points", "reset_period",
            "is_active", "description", "category", "unique_targets", "sync_source",
        }
        unknown = set(data) - allowed
        if unknown:
            raise ValidationError("quest", f"unknown keys {sorted(unknown)}")

        try:
            quest_type = QuestType(data["type"])
        except (KeyError, ValueError) as exc:
            raise ValidationError("type", f"invalid quest type {data.get('type')!r}") from exc

        raw_period = data.get("reset_period")
        try:
            period = ResetPeriod(raw_period) if raw_period else _DEFAULT_RESET[quest_type]
        except ValueError as exc:
            raise ValidationError("reset_period", f"invalid reset period {raw_period!r}") from exc

        for key in ("id", "target_value", "reward_points"):
            if key not in data:
                raise ValidationError(key, "is required")

        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or data["id"]),
            type=quest_type,
            target_value=int(data["target_value"]),
            reward_points=int(data["reward_points"]),
            reset_period=period,
            is_active=bool(data.get("is_active", True)),
            description=str(data.get("description", "")),
            category=str(data.get("category", "general")),
            unique_targets=bool(data.get("unique_targets", False)),
            sync_source=data.get("sync_source"),
        )
