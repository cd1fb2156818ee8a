"""
Unit Tests for RetryPolicy
==========================

Test Coverage
-------------
- Backoff growth, cap and jitter bounds
- Retry on conflicts, immediate raise on anything else
- Exhaustion re-raises the last conflict
"""

import pytest

from questline.core.exceptions import TransactionConflictError
from questline.core.retry_policy import RetryConfig, RetryPolicy, with_retry


class Flaky:
    """Fails with the given errors, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def conflict():
    return TransactionConflictError("progress:u1:q1", expected_version=1, actual_version=2)


@pytest.mark.unit
class TestBackoff:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(RetryConfig(max_attempts=5, initial_backoff_ms=50, jitter_ms=0))

        assert [policy.compute_backoff_ms(n) for n in (1, 2, 3, 4)] == [50, 100, 200, 400]

    def test_capped(self):
        policy = RetryPolicy(
            RetryConfig(max_attempts=10, initial_backoff_ms=50, max_backoff_ms=300, jitter_ms=0)
        )

        assert policy.compute_backoff_ms(8) == 300

    def test_jitter_bounds(self):
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_backoff_ms=50, jitter_ms=25))

        for _ in range(50):
            assert 50 <= policy.compute_backoff_ms(1) <= 75

    def test_config_constructors_follow_settings(self):
        assert RetryConfig.for_store().max_attempts == 5
        assert RetryConfig.for_ledger().max_attempts == 3


@pytest.mark.unit
@pytest.mark.asyncio
class TestExecute:
    async def test_retries_conflicts(self, make_retry):
        # Arrange
        operation = Flaky(conflict(), conflict())

        # Act
        result = await make_retry(5).execute(operation, operation_name="test")

        # Assert
        assert result == "ok"
        assert operation.calls == 3

    async def test_exhaustion_reraises(self, make_retry):
        operation = Flaky(conflict(), conflict(), conflict())

        with pytest.raises(TransactionConflictError):
            await make_retry(3).execute(operation, operation_name="test")

        assert operation.calls == 3

    async def test_non_retriable_raises_immediately(self, make_retry):
        operation = Flaky(ValueError("bad"))

        with pytest.raises(ValueError):
            await make_retry(5).execute(operation, operation_name="test")

        assert operation.calls == 1

    async def test_sleeps_between_attempts(self, mocker):
        # Arrange
        sleep = mocker.AsyncMock()
        policy = RetryPolicy(RetryConfig(max_attempts=3, initial_backoff_ms=50, jitter_ms=0), sleep=sleep)

        # Act
        await policy.execute(Flaky(conflict(), conflict()), operation_name="test")

        # Assert
        assert [c.args[0] for c in sleep.await_args_list] == [0.05, 0.1]

    async def test_with_retry_functional_form(self):
        operation = Flaky(conflict())
        backoff = RetryConfig(max_attempts=9, initial_backoff_ms=1, jitter_ms=0)

        result = await with_retry(operation, max_attempts=2, backoff=backoff, operation_name="test")

        assert result == "ok"
        assert operation.calls == 2
