"""
Explicit per-call context for the quest engine.

Carries what used to be ambient state: the authenticated user, the quest
catalog, the process-wide in-flight registry and the clock. Passing it
explicitly keeps the engine free of module globals and lets tests swap any
piece.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from questline.core.config.config import Config
from questline.modules.quests.catalog import QuestCatalog
from questline.modules.quests.guard import ConcurrencyGuard

Clock = Callable[[], datetime]


def reset_clock(tz_name: Optional[str] = None) -> Clock:
    """Wall clock in the quest reset timezone (Config.QUEST_RESET_TIMEZONE)."""
    name = tz_name or Config.QUEST_RESET_TIMEZONE
    tz = timezone.utc if name.upper() == "UTC" else ZoneInfo(name)

    def now() -> datetime:
        return datetime.now(tz)

    return now


@dataclass(frozen=True)
class QuestContext:
    """
    Attributes
    ----------
    user_id : Optional[str]
        Authenticated user; None means unauthenticated and every operation
        becomes a logged no-op
    catalog : QuestCatalog
    guard : ConcurrencyGuard
        The process-owned in-flight registry; required so that every
        context built for a request shares it (QuestlineApp.context passes it)
    clock : Clock
        Returns an aware datetime; midnight in its timezone is the reset time
    """

    user_id: Optional[str]
    catalog: QuestCatalog
    guard: ConcurrencyGuard
    clock: Clock = field(default_factory=reset_clock)

    def now(self) -> datetime:
        return self.clock()

    def for_user(self, user_id: Optional[str]) -> QuestContext:
        """Same catalog, guard and clock for another identity."""
        return replace(self, user_id=user_id)
