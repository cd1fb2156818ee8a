"""
Quest Catalog

Purpose
-------
Read-only registry of quest definitions plus the quest roles the engine's
cascades depend on:

- `complete_all_dailies`: daily meta quest fed with the number of completed
  non-meta dailies
- `weekly_daily_aggregate`: weekly quest incremented once per daily completion
- `verification`: quest completed by the external-account verification gate

Loading
-------
Catalogs are YAML documents (`config/quests.yaml` by default):

    roles:
      complete_all_dailies: daily_complete_all
    quests:
      - id: daily_chat_5
        type: daily
        target_value: 5
        reward_points: 10

Any structural problem raises `CatalogError`; a catalog either loads whole or
not at all.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

import yaml

from questline.core.config.config import Config
from questline.core.logging.logger import get_logger
from questline.domain.models.quest import QuestDefinition, QuestType
from questline.modules.shared.exceptions import CatalogError, NotFoundError, ValidationError

logger = get_logger(__name__)

ROLE_COMPLETE_ALL_DAILIES = "complete_all_dailies"
ROLE_WEEKLY_DAILY_AGGREGATE = "weekly_daily_aggregate"
ROLE_VERIFICATION = "verification"

_ROLE_TYPES = {
    ROLE_COMPLETE_ALL_DAILIES: QuestType.DAILY,
    ROLE_WEEKLY_DAILY_AGGREGATE: QuestType.WEEKLY,
    ROLE_VERIFICATION: None,
}


class QuestCatalog:
    """
    Immutable quest registry.

    Iteration yields definitions in catalog order.
    """

    def __init__(
        self,
        quests: Iterable[QuestDefinition],
        roles: Optional[Mapping[str, str]] = None,
        *,
        source: str = "<inline>",
    ) -> None:
        self._source = source
        self._quests: dict[str, QuestDefinition] = {}
        for quest in quests:
            if quest.id in self._quests:
                raise CatalogError(source, "duplicate quest id", quest_id=quest.id)
            self._quests[quest.id] = quest

        self._roles: dict[str, str] = {}
        for role, quest_id in (roles or {}).items():
            if role not in _ROLE_TYPES:
                raise CatalogError(source, f"unknown role {role!r}")
            quest = self._quests.get(quest_id)
            if quest is None:
                raise CatalogError(source, f"role {role!r} names a missing quest", quest_id=quest_id)
            expected = _ROLE_TYPES[role]
            if expected is not None and quest.type is not expected:
                raise CatalogError(
                    source,
                    f"role {role!r} requires a {expected.value} quest",
                    quest_id=quest_id,
                )
            self._roles[role] = quest_id

        meta = self.complete_all_dailies
        if meta is not None and meta.target_value != len(self.non_meta_dailies()):
            logger.warning(
                "Meta quest target differs from the number of non-meta dailies",
                extra={
                    "source": source,
                    "quest_id": meta.id,
                    "target_value": meta.target_value,
                    "non_meta_dailies": len(self.non_meta_dailies()),
                },
            )

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: str = "<inline>") -> QuestCatalog:
        if not isinstance(data, Mapping):
            raise CatalogError(source, "top level must be a mapping")

        raw_quests = data.get("quests")
        if not isinstance(raw_quests, list) or not raw_quests:
            raise CatalogError(source, "'quests' must be a non-empty list")

        quests: list[QuestDefinition] = []
        for index, entry in enumerate(raw_quests):
            if not isinstance(entry, Mapping):
                raise CatalogError(source, f"quest #{index} must be a mapping")
            try:
                quests.append(QuestDefinition.from_mapping(entry))
            except ValidationError as exc:
                raise CatalogError(
                    source, exc.message, quest_id=str(entry.get("id", f"#{index}"))
                ) from exc

        roles = data.get("roles") or {}
        if not isinstance(roles, Mapping):
            raise CatalogError(source, "'roles' must be a mapping")

        return cls(quests, roles, source=source)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> QuestCatalog:
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle)
        except FileNotFoundError as exc:
            raise CatalogError(str(path), "file not found") from exc
        except yaml.YAMLError as exc:
            raise CatalogError(str(path), f"YAML parse error: {exc}") from exc

        catalog = cls.from_mapping(data, source=str(path))
        logger.info(
            "Quest catalog loaded",
            extra={
                "catalog_path": str(path),
                "quest_count": len(catalog),
                "active_count": len(catalog.active()),
            },
        )
        return catalog

    @classmethod
    def load_default(cls) -> QuestCatalog:
        """Load the catalog at Config.QUEST_CATALOG_PATH."""
        return cls.from_yaml(Config.QUEST_CATALOG_PATH)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def get(self, quest_id: str) -> Optional[QuestDefinition]:
        return self._quests.get(quest_id)

    def require(self, quest_id: str) -> QuestDefinition:
        quest = self._quests.get(quest_id)
        if quest is None:
            raise NotFoundError("Quest", quest_id)
        return quest

    def active(self) -> list[QuestDefinition]:
        return [quest for quest in self._quests.values() if quest.is_active]

    def by_type(self, quest_type: QuestType, *, active_only: bool = True) -> list[QuestDefinition]:
        return [
            quest
            for quest in self._quests.values()
            if quest.type is quest_type and (quest.is_active or not active_only)
        ]

    def synced(self, source: str) -> list[QuestDefinition]:
        return [q for q in self.active() if q.sync_source == source]

    def role(self, role: str) -> Optional[QuestDefinition]:
        quest_id = self._roles.get(role)
        return self._quests.get(quest_id) if quest_id else None

    @property
    def complete_all_dailies(self) -> Optional[QuestDefinition]:
        return self.role(ROLE_COMPLETE_ALL_DAILIES)

    @property
    def weekly_daily_aggregate(self) -> Optional[QuestDefinition]:
        return self.role(ROLE_WEEKLY_DAILY_AGGREGATE)

    @property
    def verification_quest(self) -> Optional[QuestDefinition]:
        return self.role(ROLE_VERIFICATION)

    def is_meta(self, quest_id: str) -> bool:
        return self._roles.get(ROLE_COMPLETE_ALL_DAILIES) == quest_id

    def non_meta_dailies(self) -> list[QuestDefinition]:
        """Active daily quests counted toward the complete-all-dailies meta quest."""
        return [q for q in self.by_type(QuestType.DAILY) if not self.is_meta(q.id)]

    @property
    def source(self) -> str:
        return self._source

    def __contains__(self, quest_id: object) -> bool:
        return quest_id in self._quests

    def __iter__(self) -> Iterator[QuestDefinition]:
        return iter(self._quests.values())

    def __len__(self) -> int:
        return len(self._quests)
