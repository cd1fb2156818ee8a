from questline.database.models.user_profile import UserProfileRow
from questline.database.models.user_quest import UserQuestProgressRow

__all__ = ["UserQuestProgressRow", "UserProfileRow"]
