"""
Questline persistence layer (ORM rows).
"""

from questline.database.base import Base
from questline.database.models import UserProfileRow, UserQuestProgressRow

__all__ = ["Base", "UserQuestProgressRow", "UserProfileRow"]
