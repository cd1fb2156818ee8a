"""
Rate-Limited Verification Gate

Purpose
-------
Let a user prove ownership of an external account by placing a one-time code
in the account's bio, with at most VERIFICATION_MAX_ATTEMPTS failed attempts
per VERIFICATION_WINDOW_HOURS window. A successful verification counts toward
the catalog's verification quest.

Window
------
The window is anchored at the first counted attempt, not sliding. Once
`now - first_attempt_at >= window` the counter resets before anything else
is checked. An admitted attempt is counted before the verifier runs, so a
burst of concurrent attempts never reaches the verifier more than
`max_attempts` times. Success clears both the counter and the anchor.

Non-Responsibilities
--------------------
- Fetching the bio (AccountVerifier implementations do that)
- Rendering messages (callers use VerificationResult.message)
"""

from __future__ import annotations

import math
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Protocol

from questline.core.config.config import Config
from questline.core.event.bus import EventBus
from questline.core.event.types import QuestEvents
from questline.core.logging.logger import LogContext, get_logger
from questline.domain.models.profile import UserProfile
from questline.modules.quests.context import QuestContext
from questline.modules.quests.engine import QuestProgressEngine
from questline.modules.quests.store import ProgressStore, StoreTransaction
from questline.modules.shared.base_service import BaseService
from questline.modules.shared.exceptions import UnauthenticatedError, ValidationError

logger = get_logger(__name__)

_CODE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_WHITESPACE = re.compile(r"\s+")


class AccountVerifier(Protocol):
    """External check that `code` is visible on the account `handle`."""

    async def verify(self, account_handle: str, code: str) -> bool:
        ...


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"
    ALREADY_VERIFIED = "already_verified"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class VerificationResult:
    status: VerificationStatus
    attempts: int
    max_attempts: int
    retry_after: Optional[timedelta] = None
    message: str = ""

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    @property
    def is_verified(self) -> bool:
        return self.status in (VerificationStatus.VERIFIED, VerificationStatus.ALREADY_VERIFIED)


# ============================================================================
# Pure helpers
# ============================================================================


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}{'' if value == 1 else 's'}"


def format_time_remaining(hours: float) -> str:
    """
    Human wait string.

    >= 24 h: "D days[ and H hours]"; >= 1 h: "H hours[ and M minutes]"
    (both floored); under an hour: minutes rounded up.
    """
    hours = max(hours, 0.0)
    if hours >= 24:
        days = int(hours // 24)
        rest = int(hours - days * 24)
        text = _plural(days, "day")
        return f"{text} and {_plural(rest, 'hour')}" if rest > 0 else text
    if hours >= 1:
        whole = math.floor(hours)
        minutes = math.floor((hours - whole) * 60)
        text = _plural(whole, "hour")
        return f"{text} and {_plural(minutes, 'minute')}" if minutes > 0 else text
    return _plural(math.ceil(hours * 60), "minute")


def generate_code(user_id: str, prefix: Optional[str] = None) -> str:
    """`<prefix>-` + first 4 chars of the user id + 4 random base36 chars, uppercase."""
    head = user_id[:4].upper()
    tail = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{prefix or Config.VERIFICATION_CODE_PREFIX}-{head}{tail}"


def bio_contains_code(bio: Optional[str], code: str) -> bool:
    """Whitespace- and case-insensitive substring match."""
    if not bio or not code:
        return False

    def normalize(text: str) -> str:
        return _WHITESPACE.sub(" ", text).strip().upper()

    return normalize(code) in normalize(bio)


# ============================================================================
# Gate
# ============================================================================


@dataclass(frozen=True)
class _Admission:
    profile: UserProfile
    allowed: bool
    retry_after: Optional[timedelta] = None


class VerificationGate(BaseService):
    """
    Usage
    -----
    >>> gate = VerificationGate(store, engine, verifier, event_bus=bus)
    >>> code = await gate.get_or_create_code(ctx)
    >>> result = await gate.attempt(ctx, "my_handle")
    """

    def __init__(
        self,
        store: ProgressStore,
        engine: QuestProgressEngine,
        verifier: AccountVerifier,
        event_bus: Optional[EventBus] = None,
        *,
        max_attempts: Optional[int] = None,
        window_hours: Optional[float] = None,
    ) -> None:
        super().__init__(event_bus, logger)
        self._store = store
        self._engine = engine
        self._verifier = verifier
        self._max_attempts = (
            max_attempts if max_attempts is not None else int(Config.VERIFICATION_MAX_ATTEMPTS)
        )
        self._window = timedelta(
            hours=window_hours if window_hours is not None else Config.VERIFICATION_WINDOW_HOURS
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def attempt(self, ctx: QuestContext, account_handle: str) -> VerificationResult:
        """
        One verification attempt for `ctx.user_id` against `account_handle`.

        Raises:
            UnauthenticatedError: If the context has no user
            ValidationError: If the handle is blank
        """
        user_id = self._require_user(ctx, "verification.attempt")
        handle = (account_handle or "").strip().lstrip("@")
        if not handle:
            raise ValidationError("account_handle", "Account handle is required")

        async with LogContext(user_id=user_id, operation="verification.attempt"):
            now = ctx.now()
            admission = await self._admit(user_id, now)
            profile = admission.profile

            if profile.external_account_verified:
                return self._result(VerificationStatus.ALREADY_VERIFIED, profile, "Account already verified")

            if not admission.allowed:
                wait = admission.retry_after or self._window
                message = (
                    f"Too many verification attempts ({profile.verification_attempts}/"
                    f"{self._max_attempts}). Please try again in "
                    f"{format_time_remaining(wait.total_seconds() / 3600)}."
                )
                self.log.warning(
                    "Verification rate limited",
                    extra={"user_id": user_id, "attempts": profile.verification_attempts},
                )
                await self.emit_event(
                    QuestEvents.VERIFICATION_RATE_LIMITED,
                    {"user_id": user_id, "retry_after_seconds": int(wait.total_seconds())},
                )
                return self._result(VerificationStatus.RATE_LIMITED, profile, message, wait)

            code = profile.verification_code or await self.get_or_create_code(ctx)
            verified = await self._call_verifier(user_id, handle, code)

            if verified:
                return await self._on_success(ctx, user_id, handle, now)
            return await self._on_failure(profile, handle)

    async def get_or_create_code(self, ctx: QuestContext) -> str:
        """Stored code, or a fresh one persisted on the profile."""
        user_id = self._require_user(ctx, "verification.get_or_create_code")
        now = ctx.now()

        async def body(tx: StoreTransaction) -> str:
            profile = await tx.get_profile(user_id) or UserProfile.new(user_id, now)
            if profile.verification_code:
                return profile.verification_code
            profile.verification_code = generate_code(user_id)
            profile.verification_code_generated_at = now
            profile.updated_at = now
            await tx.put_profile(profile)
            return profile.verification_code

        return await self._store.run_transaction(body, operation_name="verification.code")

    async def get_status(self, ctx: QuestContext) -> VerificationResult:
        """Read-only view; does not reset a stale window."""
        user_id = self._require_user(ctx, "verification.get_status")
        now = ctx.now()
        profile = await self._store.get_profile(user_id) or UserProfile.new(user_id, now)

        if profile.external_account_verified:
            return self._result(VerificationStatus.ALREADY_VERIFIED, profile, "Account already verified")

        if self._window_elapsed(profile, now):
            profile.verification_attempts = 0
            profile.verification_first_attempt_at = None

        retry_after = self._retry_after(profile, now)
        if retry_after is not None:
            return self._result(
                VerificationStatus.RATE_LIMITED,
                profile,
                f"Try again in {format_time_remaining(retry_after.total_seconds() / 3600)}",
                retry_after,
            )
        return self._result(VerificationStatus.UNVERIFIED, profile, "Not verified")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require_user(ctx: QuestContext, operation: str) -> str:
        if not ctx.user_id:
            raise UnauthenticatedError(operation)
        return ctx.user_id

    def _window_elapsed(self, profile: UserProfile, now: datetime) -> bool:
        anchor = profile.verification_first_attempt_at
        return anchor is not None and now - anchor >= self._window

    def _retry_after(self, profile: UserProfile, now: datetime) -> Optional[timedelta]:
        """Remaining wait when the counter is exhausted, else None."""
        if profile.verification_attempts < self._max_attempts:
            return None
        anchor = profile.verification_first_attempt_at
        if anchor is None:
            return self._window
        return max(anchor + self._window - now, timedelta(0))

    async def _admit(self, user_id: str, now: datetime) -> _Admission:
        """
        Check the limit and, when admitted, count the attempt in the same
        transaction so concurrent attempts cannot all pass the check.
        """

        async def body(tx: StoreTransaction) -> _Admission:
            profile = await tx.get_profile(user_id) or UserProfile.new(user_id, now)
            if profile.external_account_verified:
                return _Admission(profile, allowed=False)

            if self._window_elapsed(profile, now):
                profile.verification_attempts = 0
                profile.verification_first_attempt_at = None

            retry_after = self._retry_after(profile, now)
            if retry_after is not None:
                return _Admission(profile, allowed=False, retry_after=retry_after)

            profile.verification_attempts += 1
            if profile.verification_first_attempt_at is None:
                profile.verification_first_attempt_at = now
            profile.updated_at = now
            await tx.put_profile(profile)
            return _Admission(profile, allowed=True)

        return await self._store.run_transaction(body, operation_name="verification.admit")

    async def _call_verifier(self, user_id: str, handle: str, code: str) -> bool:
        try:
            return bool(await self._verifier.verify(handle, code))
        except Exception as exc:
            self.log_error("verification.verify", exc, user_id=user_id, account_handle=handle)
            return False

    async def _on_failure(self, profile: UserProfile, handle: str) -> VerificationResult:
        """The attempt was already counted on admission."""
        user_id = profile.user_id
        self.log.info(
            "Verification failed",
            extra={
                "user_id": user_id,
                "account_handle": handle,
                "attempts": profile.verification_attempts,
            },
        )
        await self.emit_event(
            QuestEvents.VERIFICATION_FAILED,
            {"user_id": user_id, "attempts": profile.verification_attempts},
        )
        remaining = max(self._max_attempts - profile.verification_attempts, 0)
        return self._result(
            VerificationStatus.FAILED,
            profile,
            f"Verification code not found in bio ({remaining} attempts remaining)",
        )

    async def _on_success(
        self, ctx: QuestContext, user_id: str, handle: str, now: datetime
    ) -> VerificationResult:
        async def body(tx: StoreTransaction) -> tuple[UserProfile, bool]:
            profile = await tx.get_profile(user_id) or UserProfile.new(user_id, now)
            if profile.external_account_verified:
                return profile, False
            profile.verification_attempts = 0
            profile.verification_first_attempt_at = None
            profile.external_account = handle
            profile.external_account_verified = True
            profile.external_account_verified_at = now
            profile.updated_at = now
            await tx.put_profile(profile)
            return profile, True

        profile, flipped = await self._store.run_transaction(body, operation_name="verification.success")
        if not flipped:
            # A concurrent attempt verified first and owns the quest credit
            return self._result(VerificationStatus.ALREADY_VERIFIED, profile, "Account already verified")

        self.log_operation("verification_succeeded", user_id=user_id, account_handle=handle)
        await self.emit_event(
            QuestEvents.VERIFICATION_SUCCEEDED,
            {"user_id": user_id, "account_handle": handle},
        )

        quest = ctx.catalog.verification_quest
        if quest is not None:
            await self._engine.credit_progress(ctx, quest.id)
        return self._result(VerificationStatus.VERIFIED, profile, "Account verified")

    def _result(
        self,
        status: VerificationStatus,
        profile: UserProfile,
        message: str,
        retry_after: Optional[timedelta] = None,
    ) -> VerificationResult:
        return VerificationResult(
            status=status,
            attempts=profile.verification_attempts,
            max_attempts=self._max_attempts,
            retry_after=retry_after,
            message=message,
        )
