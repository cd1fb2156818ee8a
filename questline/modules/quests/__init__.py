"""
Quests Module
=============

Domain: per-user quest progress, resets, completion and cascades

Services:
- QuestProgressEngine: idempotent progress updates, quest board reads
- QuestCatalog: read-only quest definitions loaded from YAML
- ProgressStore implementations: in-memory and SQLAlchemy
"""

from .catalog import QuestCatalog
from .context import QuestContext, reset_clock
from .engine import QuestBoard, QuestBoardEntry, QuestCompletion, QuestProgressEngine, SocialGraph
from .guard import ConcurrencyGuard
from .store import InMemoryProgressStore, ProgressStore, StoreTransaction

__all__ = [
    "QuestCatalog",
    "QuestContext",
    "reset_clock",
    "QuestProgressEngine",
    "QuestCompletion",
    "QuestBoard",
    "QuestBoardEntry",
    "SocialGraph",
    "ConcurrencyGuard",
    "ProgressStore",
    "StoreTransaction",
    "InMemoryProgressStore",
]
