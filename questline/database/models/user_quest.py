"""
UserQuestProgressRow - persisted progress for one (user, quest) pair
=====================================================================

Purpose
-------
Row backing `UserQuestProgress`. One row per (user_id, quest_id), created
lazily by the first progress call, reset in place when its cycle elapses,
never deleted.

Schema Design
-------------
- Composite primary key (user_id, quest_id): two concurrent first-time
  inserts collide at the database instead of producing duplicates
- `version` is the SQLAlchemy `version_id_col`: every UPDATE carries
  `WHERE version = <read version>` so a lost race surfaces as StaleDataError
- `followed_users` stores the per-cycle dedup set as a JSON list
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String

from questline.database.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserQuestProgressRow(Base):
    """Progress of one user on one quest for the current cycle."""

    __tablename__ = "user_quest_progress"

    # ========================================================================
    # PRIMARY KEY COMPONENTS
    # ========================================================================

    user_id = Column(String(128), primary_key=True, nullable=False)
    quest_id = Column(String(128), primary_key=True, nullable=False)

    # ========================================================================
    # CYCLE STATE
    # ========================================================================

    progress = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    reset_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Next cycle rollover; NULL for permanent quests",
    )
    followed_users = Column(JSON, nullable=False, default=list)

    # ========================================================================
    # AUDIT FIELDS
    # ========================================================================

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_user_quest_progress_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserQuestProgressRow("
            f"user_id='{self.user_id}', "
            f"quest_id='{self.quest_id}', "
            f"progress={self.progress}, "
            f"completed={self.completed}, "
            f"version={self.version}"
            f")>"
        )
