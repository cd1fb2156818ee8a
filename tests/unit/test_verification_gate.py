"""
Unit Tests for VerificationGate
===============================

Test Coverage
-------------
- Success marks the account verified and credits the verification quest
- Failed attempts counted against a fixed window anchored at the first failure
- Rate limiting with a human wait message, and window expiry
- Verifier errors count as failures
- Concurrent attempts: the limit holds and the quest is credited once
- Code issuance and the bio matcher
"""

import asyncio
import re
from collections import Counter

import pytest

from questline.modules.shared.exceptions import UnauthenticatedError, ValidationError
from questline.modules.verification import (
    VerificationGate,
    VerificationStatus,
    bio_contains_code,
    format_time_remaining,
    generate_code,
)


class FakeVerifier:
    """Returns queued results; an Exception instance in the queue is raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def verify(self, account_handle, code):
        self.calls.append((account_handle, code))
        result = self.results.pop(0) if self.results else False
        if isinstance(result, Exception):
            raise result
        return result


class SlowVerifier:
    """Yields to the loop before answering, so concurrent attempts interleave."""

    def __init__(self, verified=False):
        self.verified = verified
        self.calls = 0

    async def verify(self, account_handle, code):
        self.calls += 1
        await asyncio.sleep(0)
        return self.verified


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def gate(store, engine, verifier, event_bus):
    return VerificationGate(store, engine, verifier, event_bus)


async def fail_times(gate, ctx, count):
    for _ in range(count):
        await gate.attempt(ctx, "handle")


# ============================================================================
# ATTEMPTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestAttempt:
    async def test_success_verifies_and_credits_quest(self, gate, ctx, store, verifier, recorder):
        # Arrange
        verifier.results = [True]

        # Act
        result = await gate.attempt(ctx, "@handle")

        # Assert
        assert result.status is VerificationStatus.VERIFIED
        assert result.is_verified is True
        profile = await store.get_profile("user-1")
        assert profile.external_account == "handle"
        assert profile.external_account_verified is True
        assert profile.verification_attempts == 0
        assert profile.points == 100
        assert (await store.get_progress("user-1", "weekly_verify_account")).completed is True
        assert "verification.succeeded" in recorder.names()

    async def test_verifier_receives_stored_code(self, gate, ctx, verifier):
        code = await gate.get_or_create_code(ctx)

        await gate.attempt(ctx, "handle")

        assert verifier.calls == [("handle", code)]

    async def test_already_verified_short_circuits(self, gate, ctx, verifier, store):
        verifier.results = [True]
        await gate.attempt(ctx, "handle")

        result = await gate.attempt(ctx, "handle")

        assert result.status is VerificationStatus.ALREADY_VERIFIED
        assert len(verifier.calls) == 1
        assert (await store.get_profile("user-1")).points == 100

    async def test_failure_counts_attempt_and_anchors_window(self, gate, ctx, store, clock, recorder):
        # Act
        result = await gate.attempt(ctx, "handle")

        # Assert
        assert result.status is VerificationStatus.FAILED
        assert result.attempts == 1
        assert result.attempts_remaining == 4
        profile = await store.get_profile("user-1")
        assert profile.verification_first_attempt_at == clock()
        assert recorder.of("verification.failed") == [{"user_id": "user-1", "attempts": 1}]

    async def test_anchor_is_not_moved_by_later_failures(self, gate, ctx, store, clock):
        start = clock()
        await gate.attempt(ctx, "handle")
        clock.advance(hours=3)

        await gate.attempt(ctx, "handle")

        assert (await store.get_profile("user-1")).verification_first_attempt_at == start

    async def test_verifier_error_counts_as_failure(self, gate, ctx, verifier, store):
        verifier.results = [ConnectionError("timeout")]

        result = await gate.attempt(ctx, "handle")

        assert result.status is VerificationStatus.FAILED
        assert (await store.get_profile("user-1")).verification_attempts == 1

    async def test_blank_handle_rejected(self, gate, ctx):
        with pytest.raises(ValidationError):
            await gate.attempt(ctx, "  @ ")

    async def test_requires_user(self, gate, anonymous_ctx):
        with pytest.raises(UnauthenticatedError):
            await gate.attempt(anonymous_ctx, "handle")


# ============================================================================
# RATE LIMITING
# ============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestRateLimit:
    """Five failures per 24 hour window."""

    async def test_sixth_attempt_is_rate_limited(self, gate, ctx, verifier, clock, recorder):
        # Arrange
        await fail_times(gate, ctx, 5)
        clock.advance(hours=1, minutes=30)
        calls = len(verifier.calls)

        # Act
        result = await gate.attempt(ctx, "handle")

        # Assert
        assert result.status is VerificationStatus.RATE_LIMITED
        assert len(verifier.calls) == calls
        assert result.message == (
            "Too many verification attempts (5/5). Please try again in 22 hours and 30 minutes."
        )
        assert result.retry_after.total_seconds() == 22.5 * 3600
        assert recorder.of("verification.rate_limited")[0]["retry_after_seconds"] == 81000

    async def test_window_expiry_resets_attempts(self, gate, ctx, verifier, store, clock):
        # Arrange
        await fail_times(gate, ctx, 5)
        clock.advance(hours=24)
        verifier.results = [False]

        # Act
        result = await gate.attempt(ctx, "handle")

        # Assert
        assert result.status is VerificationStatus.FAILED
        assert result.attempts == 1
        assert (await store.get_profile("user-1")).verification_first_attempt_at == clock()

    async def test_success_within_limit_clears_counter(self, gate, ctx, verifier, store):
        verifier.results = [False, False, True]

        await fail_times(gate, ctx, 3)

        profile = await store.get_profile("user-1")
        assert profile.external_account_verified is True
        assert profile.verification_attempts == 0
        assert profile.verification_first_attempt_at is None

    async def test_custom_limits(self, store, engine, verifier, ctx):
        gate = VerificationGate(store, engine, verifier, max_attempts=2, window_hours=1)
        await fail_times(gate, ctx, 2)

        result = await gate.attempt(ctx, "handle")

        assert result.status is VerificationStatus.RATE_LIMITED
        assert result.message.endswith("try again in 1 hour.")


# ============================================================================
# STATUS AND CODES
# ============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestStatusAndCodes:
    async def test_status_of_new_user(self, gate, ctx):
        status = await gate.get_status(ctx)

        assert status.status is VerificationStatus.UNVERIFIED
        assert status.attempts == 0

    async def test_status_when_limited(self, gate, ctx, store):
        await fail_times(gate, ctx, 5)
        commits = store.commit_count

        status = await gate.get_status(ctx)

        assert status.status is VerificationStatus.RATE_LIMITED
        assert store.commit_count == commits

    async def test_code_is_stable(self, gate, ctx, store):
        # Act
        first = await gate.get_or_create_code(ctx)
        second = await gate.get_or_create_code(ctx)

        # Assert
        assert first == second
        assert re.fullmatch(r"QL-USER[0-9A-Z]{4}", first)
        assert (await store.get_profile("user-1")).verification_code_generated_at is not None


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize(
        "hours, expected",
        [
            (0.5, "30 minutes"),
            (0.01, "1 minute"),
            (1.0, "1 hour"),
            (2.75, "2 hours and 45 minutes"),
            (24, "1 day"),
            (49, "2 days and 1 hour"),
            (-3, "0 minutes"),
        ],
    )
    def test_format_time_remaining(self, hours, expected):
        assert format_time_remaining(hours) == expected

    def test_generate_code_format(self):
        code = generate_code("abcdef", prefix="ATS")

        assert re.fullmatch(r"ATS-ABCD[0-9A-Z]{4}", code)

    @pytest.mark.parametrize(
        "bio, expected",
        [
            ("Hello! my code: QL-USERAB12 :)", True),
            ("lowercase ql-userab12 works", True),
            ("no code here", False),
            ("", False),
            (None, False),
        ],
    )
    def test_bio_contains_code(self, bio, expected):
        assert bio_contains_code(bio, "QL-USERAB12") is expected

    def test_bio_whitespace_is_collapsed(self):
        assert bio_contains_code("code:\n\n  QL  AB\tCD", "QL AB CD") is True


# ============================================================================
# CONCURRENT ATTEMPTS
# ============================================================================


@pytest.mark.unit
@pytest.mark.asyncio
class TestConcurrentAttempts:
    async def test_burst_of_failures_respects_limit(self, store, engine, ctx):
        # Arrange
        verifier = SlowVerifier(verified=False)
        gate = VerificationGate(store, engine, verifier)

        # Act
        results = await asyncio.gather(*(gate.attempt(ctx, "handle") for _ in range(12)))

        # Assert
        statuses = Counter(result.status for result in results)
        assert verifier.calls == 5
        assert statuses[VerificationStatus.FAILED] == 5
        assert statuses[VerificationStatus.RATE_LIMITED] == 7
        assert (await store.get_profile("user-1")).verification_attempts == 5

    async def test_attempt_is_counted_before_verifier_answers(self, store, engine, ctx):
        verifier = SlowVerifier(verified=False)
        gate = VerificationGate(store, engine, verifier)

        pending = asyncio.ensure_future(gate.attempt(ctx, "handle"))
        for _ in range(10):
            if verifier.calls:
                break
            await asyncio.sleep(0)

        assert verifier.calls == 1
        assert (await store.get_profile("user-1")).verification_attempts == 1
        assert (await pending).status is VerificationStatus.FAILED

    async def test_concurrent_successes_credit_quest_once(self, store, engine, ctx):
        # Arrange
        verifier = SlowVerifier(verified=True)
        gate = VerificationGate(store, engine, verifier)

        # Act
        results = await asyncio.gather(gate.attempt(ctx, "handle"), gate.attempt(ctx, "handle"))

        # Assert
        assert sorted(result.status.value for result in results) == ["already_verified", "verified"]
        assert (await store.get_profile("user-1")).points == 100

    async def test_credit_lands_while_quest_update_in_flight(self, gate, ctx, verifier, store):
        # Arrange
        verifier.results = [True]
        ctx.guard.try_acquire("user-1", "weekly_verify_account")

        # Act
        result = await gate.attempt(ctx, "handle")

        # Assert
        assert result.status is VerificationStatus.VERIFIED
        assert (await store.get_progress("user-1", "weekly_verify_account")).completed is True
        assert (await store.get_profile("user-1")).points == 100
        assert ctx.guard.is_in_flight("user-1", "weekly_verify_account") is True
