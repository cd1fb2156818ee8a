"""
Progress Store Adapter

Purpose
-------
Boundary between the engine and persistent storage of quest progress and
user profiles. Storage engines only need single-record reads plus an atomic
read-modify-write transaction with optimistic conflict detection.

Contract
--------
- `run_transaction(fn)` calls `fn(tx)` with a fresh `StoreTransaction`.
  Everything `fn` writes is committed atomically, or not at all.
- If a record `fn` read was changed (or created) by someone else before
  commit, the commit raises `TransactionConflictError` and the whole `fn` is
  re-run against fresh state by the retry policy. `fn` must therefore be free
  of side effects outside `tx`.
- Records returned to callers are detached copies; mutating them has no
  effect until passed to `put_*` inside a transaction.

Implementations
---------------
- `InMemoryProgressStore` (here): single process, versioned dict storage.
  Used by tests and local runs.
- `SqlAlchemyProgressStore` (`sql_store.py`): async SQLAlchemy with a
  version column.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol, TypeVar

from questline.core.exceptions import TransactionConflictError
from questline.core.logging.logger import get_logger
from questline.core.retry_policy import RetryConfig, RetryPolicy
from questline.domain.models.profile import UserProfile
from questline.domain.models.progress import UserQuestProgress

logger = get_logger(__name__)

T = TypeVar("T")


class StoreTransaction(Protocol):
    """Read/write handle valid for the duration of one transaction attempt."""

    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        ...

    async def put_progress(self, progress: UserQuestProgress) -> None:
        ...

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def put_profile(self, profile: UserProfile) -> None:
        ...


TransactionFn = Callable[[StoreTransaction], Awaitable[T]]


class ProgressStore(Protocol):
    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        ...

    async def list_progress(self, user_id: str) -> dict[str, UserQuestProgress]:
        ...

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def run_transaction(
        self,
        fn: TransactionFn[T],
        *,
        operation_name: str = "store.transaction",
        retry: Optional[RetryPolicy] = None,
    ) -> T:
        ...


def default_store_retry() -> RetryPolicy:
    return RetryPolicy(RetryConfig.for_store())


# ============================================================================
# In-memory implementation
# ============================================================================


_ProgressKey = tuple[str, str]


class _InMemoryTransaction:
    """
    Buffered transaction over `InMemoryProgressStore`.

    Remembers the version of everything it read (None when absent) and
    buffers writes; `commit()` validates the read set and applies the
    buffer in one step.
    """

    def __init__(self, store: InMemoryProgressStore) -> None:
        self._store = store
        self._progress_reads: dict[_ProgressKey, Optional[int]] = {}
        self._profile_reads: dict[str, Optional[int]] = {}
        self._progress_writes: dict[_ProgressKey, UserQuestProgress] = {}
        self._profile_writes: dict[str, UserProfile] = {}

    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        key = (user_id, quest_id)
        if key in self._progress_writes:
            return self._progress_writes[key].copy()

        current = self._store._progress.get(key)
        self._progress_reads.setdefault(key, current.version if current else None)
        return current.copy() if current else None

    async def put_progress(self, progress: UserQuestProgress) -> None:
        key = (progress.user_id, progress.quest_id)
        if key not in self._progress_reads:
            current = self._store._progress.get(key)
            self._progress_reads[key] = current.version if current else None
        self._progress_writes[key] = progress.copy()

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        if user_id in self._profile_writes:
            return self._profile_writes[user_id].copy()

        current = self._store._profiles.get(user_id)
        self._profile_reads.setdefault(user_id, current.version if current else None)
        return current.copy() if current else None

    async def put_profile(self, profile: UserProfile) -> None:
        if profile.user_id not in self._profile_reads:
            current = self._store._profiles.get(profile.user_id)
            self._profile_reads[profile.user_id] = current.version if current else None
        self._profile_writes[profile.user_id] = profile.copy()

    def commit(self) -> None:
        # No awaits below: validation and apply are atomic on the event loop.
        for key, seen in self._progress_reads.items():
            current = self._store._progress.get(key)
            actual = current.version if current else None
            if actual != seen:
                raise TransactionConflictError(
                    f"progress:{key[0]}:{key[1]}", expected_version=seen, actual_version=actual
                )
        for user_id, seen in self._profile_reads.items():
            current = self._store._profiles.get(user_id)
            actual = current.version if current else None
            if actual != seen:
                raise TransactionConflictError(
                    f"profile:{user_id}", expected_version=seen, actual_version=actual
                )

        for key, progress in self._progress_writes.items():
            stored = progress.copy()
            stored.version = (self._progress_reads.get(key) or 0) + 1
            self._store._progress[key] = stored
        for user_id, profile in self._profile_writes.items():
            stored = profile.copy()
            stored.version = (self._profile_reads.get(user_id) or 0) + 1
            self._store._profiles[user_id] = stored

        self._store.commit_count += 1


class InMemoryProgressStore:
    """
    Process-local progress store with optimistic versioning.

    Usage
    -----
    >>> store = InMemoryProgressStore()
    >>> await store.run_transaction(lambda tx: tx.put_profile(UserProfile.new("u1", now)))
    """

    def __init__(self, retry: Optional[RetryPolicy] = None) -> None:
        self._progress: dict[_ProgressKey, UserQuestProgress] = {}
        self._profiles: dict[str, UserProfile] = {}
        self._retry = retry or default_store_retry()
        self.commit_count = 0

    async def get_progress(self, user_id: str, quest_id: str) -> Optional[UserQuestProgress]:
        current = self._progress.get((user_id, quest_id))
        return current.copy() if current else None

    async def list_progress(self, user_id: str) -> dict[str, UserQuestProgress]:
        return {
            quest_id: progress.copy()
            for (owner, quest_id), progress in self._progress.items()
            if owner == user_id
        }

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        current = self._profiles.get(user_id)
        return current.copy() if current else None

    async def run_transaction(
        self,
        fn: TransactionFn[T],
        *,
        operation_name: str = "store.transaction",
        retry: Optional[RetryPolicy] = None,
    ) -> T:
        async def attempt() -> T:
            tx = _InMemoryTransaction(self)
            result = await fn(tx)
            tx.commit()
            return result

        policy = retry or self._retry
        return await policy.execute(attempt, operation_name=operation_name)

    # ------------------------------------------------------------------ #
    # Fixture helpers
    # ------------------------------------------------------------------ #

    def seed_progress(self, progress: UserQuestProgress) -> None:
        """Install a record directly, bumping its version."""
        key = (progress.user_id, progress.quest_id)
        current = self._progress.get(key)
        stored = progress.copy()
        stored.version = (current.version if current else 0) + 1
        self._progress[key] = stored

    def seed_profile(self, profile: UserProfile) -> None:
        current = self._profiles.get(profile.user_id)
        stored = profile.copy()
        stored.version = (current.version if current else 0) + 1
        self._profiles[profile.user_id] = stored
