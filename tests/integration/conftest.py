"""
Integration fixtures: real databases behind SqlAlchemyProgressStore.

- sqlite: file database via aiosqlite, fresh per test
- postgres: testcontainers PostgreSQL, one container per session; skipped
  when Docker is not available
"""

from __future__ import annotations

import uuid
from typing import AsyncGenerator, Generator, Optional

import pytest
import pytest_asyncio

from questline.core.database.service import DatabaseService
from questline.core.logging.logger import get_logger
from questline.modules.quests.engine import QuestProgressEngine
from questline.modules.quests.sql_store import SqlAlchemyProgressStore
from questline.modules.rewards.ledger import RewardLedger

logger = get_logger(__name__)


@pytest.fixture(scope="session")
def postgres_url() -> Generator[Optional[str], None, None]:
    """
    Start a PostgreSQL testcontainer.

    Scope: session (container persists across all tests)
    """
    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer(image="postgres:16-alpine", driver="asyncpg")
        container.start()
    except Exception as exc:
        logger.warning("PostgreSQL testcontainer unavailable", extra={"error": str(exc)})
        yield None
        return

    logger.info("PostgreSQL testcontainer started")
    try:
        yield container.get_connection_url()
    finally:
        container.stop()


@pytest_asyncio.fixture(params=["sqlite", "postgres"])
async def db(request, tmp_path, postgres_url) -> AsyncGenerator[DatabaseService, None]:
    """Initialized DatabaseService with the schema created."""
    if request.param == "sqlite":
        url = f"sqlite+aiosqlite:///{tmp_path / 'questline.db'}"
    else:
        if postgres_url is None:
            pytest.skip("Docker is not available for PostgreSQL testcontainer")
        url = postgres_url

    service = DatabaseService(url, use_null_pool=True)
    await service.initialize()
    await service.create_schema()
    try:
        yield service
    finally:
        await service.shutdown()


@pytest.fixture
def user_id() -> str:
    # The postgres container is shared across tests; keep users apart.
    return f"user-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def sql_store(db, make_retry) -> SqlAlchemyProgressStore:
    return SqlAlchemyProgressStore(db, retry=make_retry(5))


@pytest.fixture
def sql_engine(sql_store, event_bus, make_retry) -> QuestProgressEngine:
    ledger = RewardLedger(sql_store, event_bus, retry=make_retry(3))
    return QuestProgressEngine(sql_store, ledger, event_bus)
