"""
Questline Application Context
=============================

Purpose
-------
Wire the infrastructure and services a host process needs into one object
with an explicit startup and shutdown order.

Responsibilities
----------------
- Config validation and logging setup
- DatabaseService initialization (optional schema creation)
- One EventBus, ConcurrencyGuard and QuestCatalog per process
- Construction of the store, ledger, engine and verification gate
- Per-user QuestContext creation

Non-Responsibilities
--------------------
- Transport (HTTP handlers, bots, schedulers live in the host)
- Fetching external profiles (AccountVerifier implementations)

Usage
-----
>>> async with QuestlineApp(verifier=my_verifier) as app:
...     ctx = app.context("user-1")
...     await app.engine.update_progress(ctx, "daily_chat_5")
"""

from __future__ import annotations

import time
from typing import Optional

from questline.core.config.config import Config
from questline.core.database.service import DatabaseService
from questline.core.event import EventBus
from questline.core.logging.logger import get_logger, setup_logging, shutdown_logging
from questline.modules.quests.catalog import QuestCatalog
from questline.modules.quests.context import Clock, QuestContext, reset_clock
from questline.modules.quests.engine import QuestProgressEngine
from questline.modules.quests.guard import ConcurrencyGuard
from questline.modules.quests.sql_store import SqlAlchemyProgressStore
from questline.modules.quests.store import ProgressStore
from questline.modules.rewards.ledger import RewardLedger
from questline.modules.verification.gate import AccountVerifier, VerificationGate

logger = get_logger(__name__)


class QuestlineApp:
    """
    Application context for one process.

    `store` may be injected (tests use InMemoryProgressStore); otherwise a
    SqlAlchemyProgressStore is built over a DatabaseService for
    `database_url` (Config.DATABASE_URL by default).
    """

    def __init__(
        self,
        *,
        database_url: Optional[str] = None,
        store: Optional[ProgressStore] = None,
        catalog: Optional[QuestCatalog] = None,
        verifier: Optional[AccountVerifier] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        create_schema: bool = False,
        configure_logging: bool = True,
    ) -> None:
        self._database_url = database_url
        self._injected_store = store
        self._catalog = catalog
        self._verifier = verifier
        self._clock = clock
        self._create_schema = create_schema
        self._configure_logging = configure_logging

        self.event_bus = event_bus or EventBus()
        self.guard = ConcurrencyGuard()

        self._db: Optional[DatabaseService] = None
        self._store: Optional[ProgressStore] = None
        self._ledger: Optional[RewardLedger] = None
        self._engine: Optional[QuestProgressEngine] = None
        self._gate: Optional[VerificationGate] = None
        self._started = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def startup(self) -> None:
        if self._started:
            return

        start = time.perf_counter()
        if self._configure_logging:
            setup_logging()

        logger.info("========== QUESTLINE INITIALIZATION START ==========")

        try:
            Config.validate()
            logger.info("✓ Configuration validated")
        except Exception as exc:
            logger.critical(f"Configuration validation failed: {exc}")
            raise

        if self._catalog is None:
            try:
                self._catalog = QuestCatalog.load_default()
                logger.info(f"✓ Quest catalog loaded ({len(self._catalog)} quests)")
            except Exception as exc:
                logger.critical(f"Quest catalog load failed: {exc}", exc_info=True)
                raise

        if self._injected_store is not None:
            self._store = self._injected_store
        else:
            try:
                self._db = DatabaseService(self._database_url)
                await self._db.initialize()
                if self._create_schema:
                    await self._db.create_schema()
                self._store = SqlAlchemyProgressStore(self._db)
                logger.info("✓ Database service initialized")
            except Exception as exc:
                logger.critical(f"Database initialization failed: {exc}", exc_info=True)
                raise

        self._ledger = RewardLedger(self._store, self.event_bus)
        self._engine = QuestProgressEngine(self._store, self._ledger, self.event_bus)
        if self._verifier is not None:
            self._gate = VerificationGate(
                self._store, self._engine, self._verifier, self.event_bus
            )

        self._started = True
        logger.info(
            "========== QUESTLINE INITIALIZED ==========",
            extra={
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "verification_enabled": self._gate is not None,
            },
        )

    async def shutdown(self) -> None:
        if not self._started:
            return

        logger.info("========== QUESTLINE SHUTDOWN START ==========")

        if self._db is not None:
            try:
                await self._db.shutdown()
                logger.info("✓ Database service shut down")
            except Exception as exc:
                logger.error(f"Database service shutdown error: {exc}", exc_info=True)
            self._db = None

        await self.event_bus.drain()
        self.event_bus.clear()
        self._started = False
        logger.info("========== SHUTDOWN COMPLETE ==========")

        if self._configure_logging:
            shutdown_logging()

    async def __aenter__(self) -> QuestlineApp:
        await self.startup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ========================================================================
    # Accessors
    # ========================================================================

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("QuestlineApp.startup() has not been awaited")

    @property
    def catalog(self) -> QuestCatalog:
        self._require_started()
        assert self._catalog is not None
        return self._catalog

    @property
    def store(self) -> ProgressStore:
        self._require_started()
        assert self._store is not None
        return self._store

    @property
    def ledger(self) -> RewardLedger:
        self._require_started()
        assert self._ledger is not None
        return self._ledger

    @property
    def engine(self) -> QuestProgressEngine:
        self._require_started()
        assert self._engine is not None
        return self._engine

    @property
    def gate(self) -> VerificationGate:
        self._require_started()
        if self._gate is None:
            raise RuntimeError("No AccountVerifier configured; verification is disabled")
        return self._gate

    def context(self, user_id: Optional[str]) -> QuestContext:
        """Per-call context sharing this process's catalog, guard and clock."""
        return QuestContext(
            user_id=user_id,
            catalog=self.catalog,
            guard=self.guard,
            clock=self._clock or reset_clock(),
        )
