"""
Async SQLAlchemy engine and sessions for the SQL progress store.

    db = DatabaseService("sqlite+aiosqlite:///./questline.db")
    await db.initialize()
    async with db.get_transaction() as session:
        session.add(row)

`get_transaction()` commits when the block exits cleanly and rolls back on
any exception, which is re-raised unchanged so the store can map a
StaleDataError to a conflict. Retrying belongs to RetryPolicy, and mapping
rows to domain models belongs to the store.

Each store gets its own service instance. The test environment defaults to
NullPool so connections never outlive a test's event loop.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from questline.core.config.config import Config
from questline.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """The engine could not be created from the configured URL."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before initialize() or after shutdown()."""


@dataclass(frozen=True)
class EngineSettings:
    url: str
    echo: bool
    null_pool: bool
    pool_size: int
    max_overflow: int

    @property
    def scheme(self) -> str:
        return self.url.partition(":")[0] or "unknown"

    def engine_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"echo": self.echo}
        if self.null_pool:
            kwargs["poolclass"] = NullPool
        elif not self.scheme.startswith("sqlite"):
            # SQLite drivers pick their own pool
            kwargs.update(pool_size=self.pool_size, max_overflow=self.max_overflow, pool_pre_ping=True)
        return kwargs


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 3)


class DatabaseService:
    """Owns one AsyncEngine; hands out read sessions and write transactions."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        echo: Optional[bool] = None,
        use_null_pool: Optional[bool] = None,
    ) -> None:
        self._url = url
        self._echo = echo
        self._use_null_pool = use_null_pool
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None
        self._lock = asyncio.Lock()

    def _settings(self) -> EngineSettings:
        url = self._url or Config.DATABASE_URL
        if not isinstance(url, str) or not url:
            raise DatabaseInitializationError("No database URL configured (DATABASE_URL)")
        return EngineSettings(
            url=url,
            echo=Config.DATABASE_ECHO if self._echo is None else self._echo,
            null_pool=Config.is_testing() if self._use_null_pool is None else self._use_null_pool,
            pool_size=int(getattr(Config, "DATABASE_POOL_SIZE", 10)),
            max_overflow=int(getattr(Config, "DATABASE_MAX_OVERFLOW", 10)),
        )

    async def initialize(self) -> None:
        """Create the engine once; later calls do nothing."""
        async with self._lock:
            if self._engine is not None:
                return

            settings = self._settings()
            try:
                engine = create_async_engine(settings.url, **settings.engine_kwargs())
            except Exception as exc:
                logger.error(
                    "Could not create database engine",
                    extra={"url_scheme": settings.scheme, "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(f"Cannot create engine for {settings.scheme}: {exc}") from exc

            self._engine = engine
            self._sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
            logger.info(
                "Database engine ready",
                extra={"url_scheme": settings.scheme, "null_pool": settings.null_pool},
            )

    async def shutdown(self) -> None:
        async with self._lock:
            engine, self._engine, self._sessions = self._engine, None, None
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    def _engine_or_raise(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseNotInitializedError("DatabaseService.initialize() has not been awaited")
        return self._engine

    async def create_schema(self) -> None:
        """Create all tables mapped on the declarative Base if missing."""
        from questline.database.base import Base

        async with self._engine_or_raise().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def health_check(self) -> bool:
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, DBAPIError) as exc:
            logger.warning("Database health check failed", extra={"error_type": type(exc).__name__})
            return False
        return True

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Read-only use; nothing is committed."""
        self._engine_or_raise()
        start = time.perf_counter()
        async with self._sessions() as session:
            yield session
        logger.debug("Read session closed", extra={"duration_ms": _elapsed_ms(start)})

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session inside one atomic transaction.

        Stale version checks fire at flush or commit time; either way the
        original exception reaches the caller after the rollback.
        """
        self._engine_or_raise()
        start = time.perf_counter()
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.debug(
                    "Transaction rolled back",
                    extra={"error_type": type(exc).__name__, "duration_ms": _elapsed_ms(start)},
                )
                raise
        logger.debug("Transaction committed", extra={"duration_ms": _elapsed_ms(start)})
