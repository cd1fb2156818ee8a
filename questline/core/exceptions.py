"""
Questline exception hierarchy.

Purpose
-------
One structured base, `QuestlineError`, and two families:

- `QuestlineInfrastructureException` (this module): configuration,
  persistence, optimistic-write conflicts and event delivery.
- `QuestlineDomainException` (`questline.modules.shared.exceptions`):
  business-rule failures such as unknown quests or a bad catalog.

Every error carries a message, a details dict, a severity, a retryable hint
and a stable error code, and serializes with `to_dict()` for structured logs.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """How loudly an error should be logged."""

    DEBUG = "debug"  # expected, e.g. a repeated follow
    INFO = "info"  # caller mistakes, e.g. validation
    WARNING = "warning"  # handled, e.g. a write conflict that will be retried
    ERROR = "error"
    CRITICAL = "critical"  # the process cannot work, e.g. a bad catalog


class QuestlineError(Exception):
    """
    Structured base for every Questline exception.

    Subclasses set DEFAULT_SEVERITY / DEFAULT_RETRYABLE; instances may
    override either.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity = severity if severity is not None else self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code!r})"


class QuestlineInfrastructureException(QuestlineError):
    """Failures of the machinery around the domain (config, database, events)."""


def _cause(error: BaseException) -> Dict[str, str]:
    return {"error": str(error), "error_type": type(error).__name__}


class ConfigurationError(QuestlineInfrastructureException):
    """A setting is missing or unusable; startup cannot continue."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"{config_key}: {message}",
            details={"config_key": config_key},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(QuestlineInfrastructureException):
    """The database rejected or dropped a store operation."""

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"{operation} failed in the database: {original_error}",
            details={"operation": operation, **_cause(original_error)},
            error_code="DATABASE_ERROR",
        )


class TransactionConflictError(QuestlineInfrastructureException):
    """
    A concurrent writer changed (or created) a record this transaction read.

    Nothing was committed, so the whole transaction can run again on fresh
    state. Versions are None where the record did not exist.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        key: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Lost write race on {key}",
            details={"key": key, "expected_version": expected_version, "actual_version": actual_version},
            error_code="TRANSACTION_CONFLICT",
        )


class EventBusError(QuestlineInfrastructureException):
    """Publishing `event_type` blew up outside any single listener."""

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, event_type: str, original_error: Exception) -> None:
        self.operation = operation
        self.event_type = event_type
        self.original_error = original_error
        super().__init__(
            f"{operation} of '{event_type}' failed: {original_error}",
            details={"operation": operation, "event_type": event_type, **_cause(original_error)},
            error_code="EVENT_BUS_ERROR",
        )


def is_transient_error(exc: BaseException) -> bool:
    """True when re-running the failed operation may succeed."""
    return isinstance(exc, QuestlineError) and exc.is_retryable


def get_error_severity(exc: BaseException) -> ErrorSeverity:
    """Severity of a Questline error; anything else is an ERROR."""
    if isinstance(exc, QuestlineError):
        return exc.severity
    return ErrorSeverity.ERROR
