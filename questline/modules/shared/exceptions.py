"""
Domain exceptions for Questline.

Purpose
-------
Structured exceptions for business-rule failures: unknown quests, invalid
catalog definitions, missing identity, bad input. Infrastructure failures
(database, write conflicts, configuration) live in `questline.core.exceptions`.

The progress engine never lets these escape `update_progress`: precondition
failures are logged and turned into no-ops so quest tracking cannot break the
user action that triggered it. They do surface from explicit calls such as
catalog loading and `QuestCatalog.require`.
"""

from __future__ import annotations

from typing import Any, Optional

from questline.core.exceptions import ErrorSeverity, QuestlineError


class QuestlineDomainException(QuestlineError):
    """Base for business-rule failures; never retryable."""


class NotFoundError(QuestlineDomainException):
    """
    Raised when a requested quest or profile does not exist.

    Args:
        resource_type: Type of resource (e.g., "Quest", "Profile")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(QuestlineDomainException):
    """
    Raised when a value fails domain validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class UnauthenticatedError(QuestlineDomainException):
    """Raised when an operation needs a user identity and none was supplied."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"No authenticated user for {operation}",
            details={"operation": operation},
            error_code="UNAUTHENTICATED",
        )


class CatalogError(QuestlineDomainException):
    """
    Raised when a quest catalog source is malformed.

    Args:
        source: Where the catalog came from (file path or "<inline>")
        message: What is wrong with it
        quest_id: Offending quest, when the problem is quest-specific
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, source: str, message: str, quest_id: Optional[str] = None) -> None:
        self.source = source
        self.quest_id = quest_id
        prefix = f"{source} [{quest_id}]" if quest_id else source
        super().__init__(
            f"Invalid quest catalog {prefix}: {message}",
            details={"source": source, "quest_id": quest_id, "problem": message},
            error_code="CATALOG_INVALID",
        )
