"""
UserProfileRow - the progression subset of a user profile.

Holds cumulative points, the cached level, the completion counter and the
external-account verification state. Versioned like the progress rows so the
reward ledger and the verification gate detect concurrent writers.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from questline.database.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserProfileRow(Base):
    __tablename__ = "user_profiles"

    user_id = Column(String(128), primary_key=True, nullable=False)

    # ========================================================================
    # PROGRESSION
    # ========================================================================

    points = Column(Integer, nullable=False, default=0)
    level = Column(Integer, nullable=False, default=1)
    total_quests_completed = Column(Integer, nullable=False, default=0)

    # ========================================================================
    # EXTERNAL ACCOUNT VERIFICATION
    # ========================================================================

    verification_attempts = Column(Integer, nullable=False, default=0)
    verification_first_attempt_at = Column(DateTime(timezone=True), nullable=True)
    verification_code = Column(String(64), nullable=True)
    verification_code_generated_at = Column(DateTime(timezone=True), nullable=True)
    external_account = Column(String(128), nullable=True)
    external_account_verified = Column(Boolean, nullable=False, default=False)
    external_account_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<UserProfileRow("
            f"user_id='{self.user_id}', "
            f"points={self.points}, "
            f"level={self.level}, "
            f"version={self.version}"
            f")>"
        )
