"""
SQLAlchemy-backed progress store.

Each transaction attempt runs inside `DatabaseService.get_transaction()`.
Rows carry a `version_id_col`, so an UPDATE of a row another writer changed
matches zero rows and SQLAlchemy raises StaleDataError; two writers creating
the same (user, quest) row collide on the primary key. Both surface as
`TransactionConflictError` and the retry policy re-runs the attempt.

SQLite returns naive datetimes for `DateTime(timezone=True)` columns; values
are normalized to aware UTC on the way out.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from questline.core.database.service import DatabaseService
from questline.core.exceptions import DatabaseError, TransactionConflictError
from questline.core.logging.logger import get_logger
from questline.core.retry_policy import RetryPolicy
from questline.database.models import UserProfileRow, UserQuestProgressRow
from questline.domain.models.profile import UserProfile
from questline.domain.models.progress import UserQuestProgress
from questline.modules.quests.store import TransactionFn, default_store_retry

logger = get_logger(__name__)

T = TypeVar("T")

_PROFILE_FIELDS = (
    "points",
    "level",
    "total_quests_completed",
    "verification_attempts",
    "verification_first_attempt_at",
    "verification_code",
    "verification_code_generated_at",
    "external_account",
    "external_account_verified",
    "external_account_verified_at",
    "created_at",
    "updated_at",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return _aware(value).astimezone(timezone.utc)


# ============================================================================
# Row <-> domain mapping
# ============================================================================


def progress_from_row(row: UserQuestProgressRow) -> UserQuestProgress:
    return UserQuestProgress(
        user_id=row.user_id,
        quest_id=row.quest_id,
        progress=row.progress,
        completed=row.completed,
        completed_at=_aware(row.completed_at),
        reset_at=_aware(row.reset_at),
        followed_users=set(row.followed_users or []),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        version=row.version,
    )


def apply_progress_to_row(progress: UserQuestProgress, row: UserQuestProgressRow) -> None:
    row.progress = progress.progress
    row.completed = progress.completed
    row.completed_at = _utc(progress.completed_at)
    row.reset_at = _utc(progress.reset_at)
    row.followed_users = sorted(progress.followed_users)
    flag_modified(row, "followed_users")
    if row.created_at is None and progress.created_at is not None:
        row.created_at = _utc(progress.created_at)
    row.updated_at = _utc(progress.updated_at) or datetime.now(timezone.utc)


def profile_from_row(row: UserProfileRow) -> UserProfile:
    profile = UserProfile(user_id=row.user_id, version=row.version)
    for name in _PROFILE_FIELDS:
        value = getattr(row, name)
        setattr(profile, name, _aware(value) if isinstance(value, datetime) else value)
    return profile


def apply_profile_to_row(profile: UserProfile, row: UserProfileRow) -> None:
    for name in _PROFILE_FIELDS:
        if name == "created_at" and row.created_at is not None:
            continue
        value = getattr(profile, name)
        setattr(row, name, _utc(value) if isinstance(value, datetime) else value)
    if row.updated_at is None:
        row.updated_at = datetime.now(timezone.utc)


# ============================================================================
# Transaction
# ============================================================================


class _SqlTransaction:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._progress_rows: dict[tuple[str, str], Optional[UserQuestProgressRow]] = {}
        self._profile_rows: dict[str, Optional[UserProfileRow]] = {}

    async def _progress_row(self, user_id: str, quest_id: str) -> Optional[UserQuestProgressRow]:
        key = (user_id, quest_id)
        if key not in self._progress_rows:
            self._progress_rows[key] = await self._session.get(UserQuestProgressRow, key)
        return self._progress_rows[key]

    async def _profile_row(self, user_id: str) -> Optional[UserProfileRow]:
        if user_id not in self._profile_rows:
            self._profile_rows[user_id] = await self._session.get(UserProfileRow, user_id)
        return self._profile_rows[user_id]

    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        row = await self._progress_row(user_id, quest_id)
        return progress_from_row(row) if row is not None else None

    async def put_progress(self, progress: UserQuestProgress) -> None:
        row = await self._progress_row(progress.user_id, progress.quest_id)
        if row is None:
            row = UserQuestProgressRow(user_id=progress.user_id, quest_id=progress.quest_id)
            self._session.add(row)
            self._progress_rows[(progress.user_id, progress.quest_id)] = row
        apply_progress_to_row(progress, row)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        row = await self._profile_row(user_id)
        return profile_from_row(row) if row is not None else None

    async def put_profile(self, profile: UserProfile) -> None:
        row = await self._profile_row(profile.user_id)
        if row is None:
            row = UserProfileRow(user_id=profile.user_id)
            self._session.add(row)
            self._profile_rows[profile.user_id] = row
        apply_profile_to_row(profile, row)


# ============================================================================
# Store
# ============================================================================


class SqlAlchemyProgressStore:
    """
    ProgressStore over async SQLAlchemy.

    Usage
    -----
    >>> db = DatabaseService("postgresql+asyncpg://...")
    >>> await db.initialize()
    >>> store = SqlAlchemyProgressStore(db)
    """

    def __init__(self, db: DatabaseService, retry: Optional[RetryPolicy] = None) -> None:
        self._db = db
        self._retry = retry or default_store_retry()

    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        async with self._db.get_session() as session:
            row = await session.get(UserQuestProgressRow, (user_id, quest_id))
            return progress_from_row(row) if row is not None else None

    async def list_progress(self, user_id: str) -> dict[str, UserQuestProgress]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(UserQuestProgressRow).where(UserQuestProgressRow.user_id == user_id)
            )
            return {row.quest_id: progress_from_row(row) for row in result.scalars()}

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self._db.get_session() as session:
            row = await session.get(UserProfileRow, user_id)
            return profile_from_row(row) if row is not None else None

    async def run_transaction(
        self,
        fn: TransactionFn[T],
        *,
        operation_name: str = "store.transaction",
        retry: Optional[RetryPolicy] = None,
    ) -> T:
        async def attempt() -> T:
            try:
                async with self._db.get_transaction() as session:
                    return await fn(_SqlTransaction(session))
            except StaleDataError as exc:
                raise TransactionConflictError(f"{operation_name}: stale row") from exc
            except IntegrityError as exc:
                # Concurrent first-time insert of the same primary key.
                raise TransactionConflictError(f"{operation_name}: duplicate row") from exc
            except SQLAlchemyError as exc:
                raise DatabaseError(operation_name, exc) from exc

        policy = retry or self._retry
        return await policy.execute(attempt, operation_name=operation_name)
