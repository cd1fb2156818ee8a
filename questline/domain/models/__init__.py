"""
Questline domain models.

Plain dataclasses, separate from the ORM rows in `questline.database.models`.
Stores convert between the two.
"""

from questline.domain.models.profile import UserProfile
from questline.domain.models.progress import UserQuestProgress
from questline.domain.models.quest import QuestDefinition, QuestType, ResetPeriod

__all__ = [
    "QuestDefinition",
    "QuestType",
    "ResetPeriod",
    "UserQuestProgress",
    "UserProfile",
]
