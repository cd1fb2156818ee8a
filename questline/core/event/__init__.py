"""
Questline event system.

Exports the instance-based EventBus and its type definitions.
"""

from questline.core.event.bus import EventBus, matches
from questline.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
    QuestEvents,
)

__all__ = [
    "EventBus",
    "matches",
    "EventPayload",
    "EventListener",
    "ListenerPriority",
    "CallbackType",
    "QuestEvents",
]
