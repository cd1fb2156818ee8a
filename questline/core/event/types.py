"""
Shared types for the event bus: payloads, listener tiers and the names of
the events Questline publishes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

# Kept JSON-friendly; the JSON log formatter may serialize payloads
EventPayload = dict[str, Any]


class ListenerPriority(Enum):
    """Execution tier; lower values run first. See EventBus.publish."""

    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class QuestEvents:
    """Event names published by the quest, reward and verification modules."""

    PROGRESS_UPDATED = "quest.progress_updated"
    COMPLETED = "quest.completed"
    RESET = "quest.reset"
    POINTS_AWARDED = "player.points_awarded"
    LEVEL_UP = "player.level_up"
    VERIFICATION_SUCCEEDED = "verification.succeeded"
    VERIFICATION_FAILED = "verification.failed"
    VERIFICATION_RATE_LIMITED = "verification.rate_limited"


@dataclass(slots=True, frozen=True)
class EventListener:
    """One subscription. `once` listeners are unregistered as they are picked."""

    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @classmethod
    def from_callback(
        cls,
        event_name: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str],
        once: bool,
    ) -> EventListener:
        """Without an explicit id the listener is named `module.qualname@event`."""
        if identifier is None:
            owner = getattr(callback, "__module__", None) or "unknown"
            name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", "callback")
            identifier = f"{owner}.{name}@{event_name}"
        return cls(callback, priority, identifier, once)
