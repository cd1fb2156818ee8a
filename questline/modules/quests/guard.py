"""
In-process concurrency guard for progress updates.

At most one `update_progress` call per (user_id, quest_id) is in flight in
this process. A second call arriving meanwhile is dropped, not queued: a
near-simultaneous duplicate (double click, two listeners reacting to the same
action) is suppressed. Correctness across processes comes from the store's
optimistic transactions; this guard only removes redundant work.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from questline.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConcurrencyGuard:
    def __init__(self) -> None:
        self._in_flight: set[str] = set()
        self.dropped = 0

    @staticmethod
    def key_for(user_id: str, quest_id: str) -> str:
        return f"{user_id}:{quest_id}"

    def try_acquire(self, user_id: str, quest_id: str) -> bool:
        """Claim the key; False when another call already holds it."""
        key = self.key_for(user_id, quest_id)
        if key in self._in_flight:
            self.dropped += 1
            logger.debug(
                "Duplicate in-flight progress update dropped",
                extra={"user_id": user_id, "quest_id": quest_id},
            )
            return False
        self._in_flight.add(key)
        return True

    def release(self, user_id: str, quest_id: str) -> None:
        self._in_flight.discard(self.key_for(user_id, quest_id))

    def is_in_flight(self, user_id: str, quest_id: str) -> bool:
        return self.key_for(user_id, quest_id) in self._in_flight

    @asynccontextmanager
    async def hold(self, user_id: str, quest_id: str) -> AsyncIterator[bool]:
        """
        Async context form of try_acquire/release.

        Yields whether the key was acquired; releases only what it acquired.
        """
        acquired = self.try_acquire(user_id, quest_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(user_id, quest_id)

    def __len__(self) -> int:
        return len(self._in_flight)
