"""
Retry combinator for optimistic-concurrency conflicts.

Every store transaction and every reward credit runs through a RetryPolicy.
A losing writer raises TransactionConflictError; the policy sleeps and calls
the operation again from scratch, so the operation must own its whole
transaction:

    async def credit():
        async with db.get_transaction() as session:
            ...

    await policy.execute(credit, operation_name="ledger.award_points")

Backoff for attempt n (1-based) is min(initial * 2**(n-1), max) plus a
uniform jitter in [0, jitter_ms]. Exceptions outside `retriable_exceptions`
propagate immediately; a conflict on the last attempt propagates after an
error log.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from questline.core.config.config import Config
from questline.core.exceptions import TransactionConflictError
from questline.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry budget and backoff tuning.

    `max_attempts` counts the first call. Backoff values are milliseconds.
    """

    max_attempts: int
    initial_backoff_ms: int = 50
    max_backoff_ms: int = 1000
    jitter_ms: int = 25
    retriable_exceptions: Tuple[Type[BaseException], ...] = (TransactionConflictError,)

    @classmethod
    def _from_config(cls, attempts_key: str, attempts_default: int) -> RetryConfig:
        return cls(
            max_attempts=int(getattr(Config, attempts_key, attempts_default)),
            initial_backoff_ms=int(getattr(Config, "RETRY_INITIAL_BACKOFF_MS", 50)),
            max_backoff_ms=int(getattr(Config, "RETRY_MAX_BACKOFF_MS", 1000)),
            jitter_ms=int(getattr(Config, "RETRY_JITTER_MS", 25)),
        )

    @classmethod
    def for_store(cls) -> RetryConfig:
        """Budget for progress-store transactions."""
        return cls._from_config("STORE_RETRY_MAX_ATTEMPTS", 5)

    @classmethod
    def for_ledger(cls) -> RetryConfig:
        """Budget for reward credits."""
        return cls._from_config("LEDGER_RETRY_MAX_ATTEMPTS", 3)


class RetryPolicy:
    """
    Re-run an async operation while it loses write races.

    >>> policy = RetryPolicy(RetryConfig.for_ledger())
    >>> await policy.execute(credit, operation_name="ledger.award_points")

    `sleep` is injectable so tests can record the backoff without waiting.
    """

    def __init__(
        self,
        config: RetryConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _is_retriable(self, exc: BaseException) -> bool:
        return isinstance(exc, self._config.retriable_exceptions)

    def compute_backoff_ms(self, attempt: int) -> int:
        """Delay in ms after the given (1-based) failed attempt."""
        cfg = self._config
        delay = min(cfg.initial_backoff_ms << max(attempt - 1, 0), cfg.max_backoff_ms)
        if cfg.jitter_ms > 0:
            delay += random.randint(0, cfg.jitter_ms)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Await `operation()` until it succeeds or the budget runs out.

        The callable takes no arguments and is invoked afresh each attempt.
        The last exception propagates unchanged.
        """
        extra = dict(context or {}, retry_operation=operation_name)
        limit = self._config.max_attempts

        for attempt in range(1, limit + 1):
            try:
                return await operation()
            except Exception as exc:
                if not self._is_retriable(exc):
                    raise
                if attempt >= limit:
                    logger.error(
                        "Operation retries exhausted",
                        extra={
                            **extra,
                            "attempt": attempt,
                            "error_type": type(exc).__name__,
                            "max_attempts": limit,
                        },
                    )
                    raise
                delay_ms = self.compute_backoff_ms(attempt)
                logger.warning(
                    "Operation lost a write race; backing off before retry",
                    extra={
                        **extra,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "backoff_ms": delay_ms,
                    },
                )
                await self._sleep(delay_ms / 1000.0)

        raise RuntimeError(f"{operation_name}: max_attempts must be at least 1")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    backoff: Optional[RetryConfig] = None,
    *,
    operation_name: str = "operation",
) -> T:
    """
    Functional form of RetryPolicy.execute.

    `backoff` supplies the backoff tuning; `max_attempts` always wins.
    """
    base = backoff or RetryConfig(max_attempts=max_attempts)
    config = RetryConfig(
        max_attempts=max_attempts,
        initial_backoff_ms=base.initial_backoff_ms,
        max_backoff_ms=base.max_backoff_ms,
        jitter_ms=base.jitter_ms,
        retriable_exceptions=base.retriable_exceptions,
    )
    return await RetryPolicy(config).execute(operation, operation_name=operation_name)
