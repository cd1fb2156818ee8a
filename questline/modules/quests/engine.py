"""
Quest Progress Engine

Purpose
-------
Orchestrate progress updates: guard against duplicate in-flight calls, run
the transition inside a store transaction, credit rewards for fresh
completions, and drain the cascades those completions trigger.

Responsibilities
----------------
- `update_progress`: the entry point called by request handlers whenever a
  user does something a quest counts
- `set_progress_at_least` / `sync_social_progress`: absolute updates from
  counts owned elsewhere (social graph)
- `credit_progress`: a guard-free increment for credits that must not be
  dropped as duplicates (account verification)
- `get_quest_board`: reset-aware read of every active quest

Cascades
--------
Completing a daily quest queues, in this order:

A. the complete-all-dailies meta quest, raised to the number of non-meta
   dailies currently completed (recounted inside the meta quest's own
   transaction)
B. the weekly daily-aggregate quest, +1

Work items are drained FIFO inside the same call, bounded by
QUEST_MAX_CASCADE_STEPS. Cascade items skip the in-flight guard so two
concurrent chains feeding the same meta quest both land; the store
transaction keeps them consistent.

Error policy
------------
Nothing raised inside `update_progress` reaches the caller. Precondition
failures log a warning; a work item whose transaction fails (conflict
retries exhausted, database down) is logged and abandoned; the rest of the
queue still runs.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

from questline.core.config.config import Config
from questline.core.event.bus import EventBus
from questline.core.event.types import QuestEvents
from questline.core.logging.logger import LogContext, get_logger
from questline.domain.models.profile import UserProfile
from questline.domain.models.progress import UserQuestProgress
from questline.domain.models.quest import QuestDefinition, QuestType
from questline.modules.quests import transitions
from questline.modules.quests.catalog import QuestCatalog
from questline.modules.quests.context import QuestContext
from questline.modules.quests.store import ProgressStore, StoreTransaction
from questline.modules.quests.transitions import ProgressUpdate, TransitionResult
from questline.modules.rewards.ledger import AwardResult, RewardLedger
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import UnauthenticatedError
from questline.modules.shared.formulas import LevelProgress

logger = get_logger(__name__)


class SocialGraph(Protocol):
    """Read-only view of the follow graph."""

    async def follower_count(self, user_id: str) -> int:
        ...

    async def following_count(self, user_id: str) -> int:
        ...


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class QuestCompletion:
    user_id: str
    quest_id: str
    quest_title: str
    reward_points: int
    completed_at: datetime
    leveled_up: bool = False
    new_level: Optional[int] = None
    award: Optional[AwardResult] = None
    triggered_by: Optional[str] = None

    @property
    def reward_credited(self) -> bool:
        return self.award is not None

    def to_event(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "user_id": self.user_id,
            "quest_id": self.quest_id,
            "quest_title": self.quest_title,
            "reward_points": self.reward_points,
            "leveled_up": self.leveled_up,
        }
        if self.leveled_up:
            payload["new_level"] = self.new_level
        if self.triggered_by:
            payload["triggered_by"] = self.triggered_by
        return payload


@dataclass(frozen=True)
class QuestBoardEntry:
    quest: QuestDefinition
    progress: UserQuestProgress

    @property
    def percent(self) -> float:
        return min(self.progress.progress / self.quest.target_value * 100.0, 100.0)

    @property
    def display(self) -> str:
        return f"{self.progress.progress}/{self.quest.target_value}"


@dataclass(frozen=True)
class QuestBoard:
    user_id: str
    profile: UserProfile
    level: LevelProgress
    entries: list[QuestBoardEntry] = field(default_factory=list)

    def of_type(self, quest_type: QuestType) -> list[QuestBoardEntry]:
        return [entry for entry in self.entries if entry.quest.type is quest_type]

    def entry(self, quest_id: str) -> Optional[QuestBoardEntry]:
        return next((e for e in self.entries if e.quest.id == quest_id), None)


@dataclass(frozen=True)
class _WorkItem:
    quest_id: str
    update: ProgressUpdate
    triggered_by: Optional[str] = None
    recount_dailies: bool = False


# ============================================================================
# Engine
# ============================================================================


class QuestProgressEngine(BaseService):
    """
    Usage
    -----
    >>> engine = QuestProgressEngine(store, event_bus=bus)
    >>> ctx = QuestContext(user_id="u1", catalog=catalog, guard=guard)
    >>> await engine.update_progress(ctx, "daily_chat_5")
    """

    def __init__(
        self,
        store: ProgressStore,
        ledger: Optional[RewardLedger] = None,
        event_bus: Optional[EventBus] = None,
        *,
        max_cascade_steps: Optional[int] = None,
    ) -> None:
        super().__init__(event_bus, logger)
        self._store = store
        self._ledger = ledger or RewardLedger(store, event_bus)
        self._max_cascade_steps = (
            max_cascade_steps
            if max_cascade_steps is not None
            else int(Config.QUEST_MAX_CASCADE_STEPS)
        )

    @property
    def ledger(self) -> RewardLedger:
        return self._ledger

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def update_progress(
        self,
        ctx: QuestContext,
        quest_id: str,
        increment: int = 1,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> list[QuestCompletion]:
        """
        Count `increment` toward a quest for `ctx.user_id`.

        `metadata["target_user_id"]` identifies the other user for quests
        that count distinct targets (follow N users); repeats within a cycle
        are ignored.

        Returns every completion produced by the call and its cascades.
        """
        quest = self._check_preconditions(ctx, quest_id)
        if quest is None:
            return []
        if not isinstance(increment, int) or increment <= 0:
            self.log.warning(
                "Ignoring non-positive progress increment",
                extra={"user_id": ctx.user_id, "quest_id": quest_id, "increment": increment},
            )
            return []

        target = (metadata or {}).get("target_user_id")
        update = ProgressUpdate.increment(
            increment, target_user_id=str(target) if target is not None else None
        )
        return await self._run_guarded(ctx, quest, update, "update_progress")

    async def set_progress_at_least(
        self, ctx: QuestContext, quest_id: str, total: int
    ) -> list[QuestCompletion]:
        """Raise progress to `total` if it is lower; never lowers it."""
        quest = self._check_preconditions(ctx, quest_id)
        if quest is None:
            return []
        if total < 0:
            self.log.warning(
                "Ignoring negative progress total",
                extra={"user_id": ctx.user_id, "quest_id": quest_id, "total": total},
            )
            return []
        return await self._run_guarded(
            ctx, quest, ProgressUpdate.at_least(total), "set_progress_at_least"
        )

    async def credit_progress(
        self, ctx: QuestContext, quest_id: str, increment: int = 1
    ) -> list[QuestCompletion]:
        """
        Count `increment` toward a quest without consulting the in-flight guard.

        For one-shot credits owned by another module (a verified account)
        that must never be dropped as a duplicate. The store transaction
        still keeps concurrent writers consistent.
        """
        quest = self._check_preconditions(ctx, quest_id)
        if quest is None:
            return []
        async with LogContext(user_id=ctx.user_id, quest_id=quest.id, operation="credit_progress"):
            try:
                return await self._drain(ctx, _WorkItem(quest.id, ProgressUpdate.increment(increment)))
            except Exception as exc:
                self.log_error("credit_progress", exc, user_id=ctx.user_id, quest_id=quest.id)
                return []

    async def sync_social_progress(
        self, ctx: QuestContext, social_graph: SocialGraph
    ) -> list[QuestCompletion]:
        """Mirror follower/following counts into quests that declare a sync source."""
        if not ctx.user_id:
            self.log.warning("Social sync skipped: no authenticated user")
            return []

        completions: list[QuestCompletion] = []
        counts: dict[str, int] = {}
        for quest in ctx.catalog.active():
            source = quest.sync_source
            if source is None:
                continue
            if source not in counts:
                try:
                    if source == "followers":
                        counts[source] = await social_graph.follower_count(ctx.user_id)
                    else:
                        counts[source] = await social_graph.following_count(ctx.user_id)
                except Exception as exc:
                    self.log_error("sync_social_progress", exc, user_id=ctx.user_id, source=source)
                    return completions
            completions.extend(await self.set_progress_at_least(ctx, quest.id, counts[source]))
        return completions

    async def get_quest_board(self, ctx: QuestContext) -> QuestBoard:
        """
        Every active quest with its current-cycle progress, plus level info.

        Elapsed cycles are shown reset and the reset is persisted.

        Raises:
            UnauthenticatedError: If the context has no user
        """
        if not ctx.user_id:
            raise UnauthenticatedError("get_quest_board")
        user_id = ctx.user_id
        now = ctx.now()

        records = await self._store.list_progress(user_id)
        entries: list[QuestBoardEntry] = []
        for quest in ctx.catalog.active():
            record = records.get(quest.id)
            view, was_reset = transitions.current_view(record, quest, user_id, now)
            if was_reset and record is not None:
                await self._persist_reset(user_id, quest, now)
            entries.append(QuestBoardEntry(quest=quest, progress=view))

        profile = await self._ledger.load_profile(user_id, now)
        return QuestBoard(
            user_id=user_id,
            profile=profile,
            level=profile.level_info,
            entries=entries,
        )

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _check_preconditions(self, ctx: QuestContext, quest_id: str) -> Optional[QuestDefinition]:
        if not ctx.user_id:
            self.log.warning(
                "Quest progress ignored: no authenticated user",
                extra={"quest_id": quest_id},
            )
            return None

        quest = ctx.catalog.get(quest_id)
        if quest is None:
            self.log.warning(
                "Quest progress ignored: unknown quest",
                extra={"user_id": ctx.user_id, "quest_id": quest_id},
            )
            return None
        if not quest.is_active:
            self.log.warning(
                "Quest progress ignored: quest inactive",
                extra={"user_id": ctx.user_id, "quest_id": quest_id},
            )
            return None
        return quest

    async def _run_guarded(
        self,
        ctx: QuestContext,
        quest: QuestDefinition,
        update: ProgressUpdate,
        operation: str,
    ) -> list[QuestCompletion]:
        assert ctx.user_id is not None
        async with ctx.guard.hold(ctx.user_id, quest.id) as acquired:
            if not acquired:
                return []
            async with LogContext(user_id=ctx.user_id, quest_id=quest.id, operation=operation):
                try:
                    return await self._drain(ctx, _WorkItem(quest.id, update))
                except Exception as exc:
                    self.log_error(operation, exc, user_id=ctx.user_id, quest_id=quest.id)
                    return []

    async def _drain(self, ctx: QuestContext, first: _WorkItem) -> list[QuestCompletion]:
        queue: deque[_WorkItem] = deque([first])
        completions: list[QuestCompletion] = []
        cascade_steps = 0

        while queue:
            item = queue.popleft()
            if item.triggered_by is not None:
                if cascade_steps >= self._max_cascade_steps:
                    self.log.warning(
                        "Cascade step limit reached; dropping remaining work",
                        extra={
                            "user_id": ctx.user_id,
                            "quest_id": item.quest_id,
                            "max_cascade_steps": self._max_cascade_steps,
                            "dropped_items": len(queue) + 1,
                        },
                    )
                    break
                cascade_steps += 1

            try:
                completion, follow_ups = await self._process(ctx, item)
            except Exception as exc:
                self.log_error(
                    "update_progress",
                    exc,
                    user_id=ctx.user_id,
                    quest_id=item.quest_id,
                    triggered_by=item.triggered_by,
                )
                continue

            if completion is not None:
                completions.append(completion)
            queue.extend(follow_ups)

        return completions

    async def _process(
        self, ctx: QuestContext, item: _WorkItem
    ) -> tuple[Optional[QuestCompletion], list[_WorkItem]]:
        assert ctx.user_id is not None
        user_id = ctx.user_id
        catalog = ctx.catalog

        quest = catalog.get(item.quest_id)
        if quest is None or not quest.is_active:
            return None, []

        now = ctx.now()

        async def body(tx: StoreTransaction) -> TransitionResult:
            update = item.update
            if item.recount_dailies:
                records = [
                    (daily, await tx.get_progress(user_id, daily.id))
                    for daily in catalog.non_meta_dailies()
                ]
                update = ProgressUpdate.at_least(transitions.count_completed(records, now))

            existing = await tx.get_progress(user_id, quest.id)
            result = transitions.apply_progress(existing, quest, user_id, update, now)
            if result.should_persist:
                await tx.put_progress(result.record)
            return result

        result = await self._store.run_transaction(body, operation_name="quest.update_progress")

        self.log.debug(
            "Quest transition applied",
            extra={
                "user_id": user_id,
                "quest_id": quest.id,
                "outcome": result.outcome.value,
                "progress": result.record.progress,
                "was_reset": result.was_reset,
                "triggered_by": item.triggered_by,
            },
        )

        if result.was_reset:
            await self.emit_event(
                QuestEvents.RESET,
                {"user_id": user_id, "quest_id": quest.id, "reset_at": result.record.reset_at},
            )
        if result.changed:
            await self.emit_event(
                QuestEvents.PROGRESS_UPDATED,
                {
                    "user_id": user_id,
                    "quest_id": quest.id,
                    "progress": result.record.progress,
                    "target_value": quest.target_value,
                    "completed": result.record.completed,
                },
            )

        if not result.just_completed:
            return None, []

        completion = await self._reward(user_id, quest, now, item.triggered_by)
        await self.emit_event(QuestEvents.COMPLETED, completion.to_event())
        return completion, self._cascades_for(catalog, quest)

    async def _reward(
        self,
        user_id: str,
        quest: QuestDefinition,
        now: datetime,
        triggered_by: Optional[str],
    ) -> QuestCompletion:
        award = await self._ledger.award_points(user_id, quest.reward_points, now)

        if award is None:
            # Quest stays completed; a second award attempt could double-pay.
            self.log.error(
                "Quest completed but reward was not credited",
                extra={
                    "user_id": user_id,
                    "quest_id": quest.id,
                    "reward_points": quest.reward_points,
                },
            )

        self.log_operation(
            "quest_completed",
            user_id=user_id,
            quest_id=quest.id,
            reward_points=quest.reward_points,
            triggered_by=triggered_by,
        )

        return QuestCompletion(
            user_id=user_id,
            quest_id=quest.id,
            quest_title=quest.title,
            reward_points=quest.reward_points,
            completed_at=now,
            leveled_up=bool(award and award.leveled_up),
            new_level=award.level_after if award else None,
            award=award,
            triggered_by=triggered_by,
        )

    @staticmethod
    def _cascades_for(catalog: QuestCatalog, quest: QuestDefinition) -> list[_WorkItem]:
        if not quest.is_daily:
            return []

        items: list[_WorkItem] = []
        meta = catalog.complete_all_dailies
        if meta is not None and meta.id != quest.id:
            items.append(
                _WorkItem(
                    meta.id,
                    ProgressUpdate.at_least(0),
                    triggered_by=quest.id,
                    recount_dailies=True,
                )
            )
        aggregate = catalog.weekly_daily_aggregate
        if aggregate is not None:
            items.append(_WorkItem(aggregate.id, ProgressUpdate.increment(1), triggered_by=quest.id))
        return items

    async def _persist_reset(self, user_id: str, quest: QuestDefinition, now: datetime) -> None:
        async def body(tx: StoreTransaction) -> Optional[datetime]:
            existing = await tx.get_progress(user_id, quest.id)
            if existing is None:
                return None
            record, _ = transitions.load_or_init(existing, quest, user_id, now)
            if not transitions.reset_if_elapsed(record, quest, now):
                return None
            await tx.put_progress(record)
            return record.reset_at

        try:
            next_reset_at = await self._store.run_transaction(
                body, operation_name="quest.persist_reset"
            )
            if next_reset_at is not None:
                await self.emit_event(
                    QuestEvents.RESET,
                    {"user_id": user_id, "quest_id": quest.id, "reset_at": next_reset_at},
                )
        except Exception as exc:
            self.log.warning(
                "Could not persist elapsed quest reset",
                extra={
                    "user_id": user_id,
                    "quest_id": quest.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
