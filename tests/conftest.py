"""
Pytest Configuration and Fixtures for Questline Tests
=====================================================

Purpose
-------
Shared fixtures for the quest engine test suite: a small inline catalog, a
controllable clock, an in-memory store with sleep-free retries, an event
recorder and a fully wired engine.

Architecture Notes
------------------
- Unit tests run against InMemoryProgressStore (fast, isolated)
- Integration tests (tests/integration) run against SQLAlchemy stores
- Retry policies never sleep in tests; backoff math is tested separately
"""

from __future__ import annotations

import os

# Must be set before questline.core.config is imported.
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from questline.core.event import EventBus, ListenerPriority, QuestEvents
from questline.core.logging.logger import get_logger
from questline.core.retry_policy import RetryConfig, RetryPolicy
from questline.modules.quests.catalog import QuestCatalog
from questline.modules.quests.context import QuestContext
from questline.modules.quests.engine import QuestProgressEngine
from questline.modules.quests.guard import ConcurrencyGuard
from questline.modules.quests.store import InMemoryProgressStore
from questline.modules.rewards.ledger import RewardLedger

logger = get_logger(__name__)

# Wednesday; daily reset at Thursday 00:00, weekly reset at Monday 2024-05-13.
START = datetime(2024, 5, 8, 10, 0, tzinfo=timezone.utc)

TEST_CATALOG: dict[str, Any] = {
    "roles": {
        "complete_all_dailies": "daily_complete_all",
        "weekly_daily_aggregate": "weekly_complete_daily_3",
        "verification": "weekly_verify_account",
    },
    "quests": [
        {"id": "daily_chat_2", "title": "Chatter", "type": "daily", "target_value": 2, "reward_points": 10},
        {"id": "daily_login", "title": "Show Up", "type": "daily", "target_value": 1, "reward_points": 5},
        {
            "id": "daily_complete_all",
            "title": "Quest Completer",
            "type": "daily",
            "target_value": 2,
            "reward_points": 15,
        },
        {
            "id": "daily_retired",
            "title": "Retired",
            "type": "daily",
            "target_value": 1,
            "reward_points": 5,
            "is_active": False,
        },
        {
            "id": "weekly_complete_daily_3",
            "title": "Daily Devotee",
            "type": "weekly",
            "target_value": 3,
            "reward_points": 75,
        },
        {
            "id": "weekly_follow_2",
            "title": "Networker",
            "type": "weekly",
            "target_value": 2,
            "reward_points": 40,
            "unique_targets": True,
        },
        {
            "id": "weekly_followers_10",
            "title": "Rising Star",
            "type": "weekly",
            "target_value": 10,
            "reward_points": 60,
            "sync_source": "followers",
        },
        {
            "id": "weekly_verify_account",
            "title": "Verified",
            "type": "weekly",
            "target_value": 1,
            "reward_points": 100,
        },
        {
            "id": "achievement_posts_3",
            "title": "Storyteller",
            "type": "achievement",
            "target_value": 3,
            "reward_points": 20,
        },
        {
            "id": "achievement_following_5",
            "title": "Connected",
            "type": "achievement",
            "target_value": 5,
            "reward_points": 30,
            "sync_source": "following",
        },
    ],
}


# ============================================================================
# HELPERS
# ============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class EventRecorder:
    """Records every quest, player and verification event in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        for attr, name in vars(QuestEvents).items():
            if attr.isupper():
                bus.subscribe(
                    name,
                    self._record_for(name),
                    priority=ListenerPriority.CRITICAL,
                    identifier=f"recorder@{name}",
                )

    def _record_for(self, event_name: str):
        def record(payload: dict[str, Any]) -> None:
            self.events.append((event_name, dict(payload)))

        return record

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event_name: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]


async def _no_sleep(_: float) -> None:
    return None


def fast_retry(max_attempts: int) -> RetryPolicy:
    return RetryPolicy(RetryConfig(max_attempts=max_attempts, jitter_ms=0), sleep=_no_sleep)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def catalog() -> QuestCatalog:
    return QuestCatalog.from_mapping(TEST_CATALOG, source="tests")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def guard() -> ConcurrencyGuard:
    return ConcurrencyGuard()


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore(retry=fast_retry(5))


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def ledger(store: InMemoryProgressStore, event_bus: EventBus) -> RewardLedger:
    return RewardLedger(store, event_bus, retry=fast_retry(3))


@pytest.fixture
def engine(
    store: InMemoryProgressStore, ledger: RewardLedger, event_bus: EventBus
) -> QuestProgressEngine:
    return QuestProgressEngine(store, ledger, event_bus)


@pytest.fixture
def ctx(catalog: QuestCatalog, guard: ConcurrencyGuard, clock: FrozenClock) -> QuestContext:
    return QuestContext(user_id="user-1", catalog=catalog, guard=guard, clock=clock)


@pytest.fixture
def anonymous_ctx(ctx: QuestContext) -> QuestContext:
    return ctx.for_user(None)


@pytest.fixture
def make_retry():
    """Factory for sleep-free retry policies."""
    return fast_retry


@pytest.fixture
def catalog_data() -> dict[str, Any]:
    return TEST_CATALOG
