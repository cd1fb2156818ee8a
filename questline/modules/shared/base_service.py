"""
Base Service Foundation

Purpose
-------
Common base for the quest engine, the reward ledger and the verification
gate: structured logging helpers, config access and event emission.

Design Notes
------------
What this class does NOT do:
- Manage store transactions (the ProgressStore owns those)
- Retry (RetryPolicy owns that)
- Contain quest rules

Usage
-----
    class RewardLedger(BaseService):
        def __init__(self, store, event_bus):
            super().__init__(event_bus, get_logger(__name__))
            self._store = store
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from questline.core.config.config import Config
from questline.core.exceptions import (
    ConfigurationError,
    ErrorSeverity,
    EventBusError,
    get_error_severity,
    is_transient_error,
)

if TYPE_CHECKING:
    from logging import Logger

    from questline.core.event.bus import EventBus

_SEVERITY_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class BaseService:
    """
    Base class for domain services.

    Args:
        event_bus: Event bus for notifications; None disables emission
        logger: Module logger of the concrete service
    """

    def __init__(self, event_bus: Optional[EventBus], logger: Logger) -> None:
        self._events = event_bus
        self.log = logger

    def get_config(self, key: str, default: Optional[Any] = None, required: bool = False) -> Any:
        """
        Read a Config attribute.

        Raises:
            ConfigurationError: If required=True and the key is missing
        """
        value = getattr(Config, key, default)
        if required and value is None:
            raise ConfigurationError(key, f"Required configuration key '{key}' is missing")
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Publish an event.

        Listener failures are isolated by the bus; a failing publish is
        logged and never reaches the caller, since events go out after the
        state change has committed.
        """
        if self._events is None:
            return
        try:
            await self._events.publish(event_type, {**data, **(context or {})})
        except Exception as exc:
            self.log_error("emit_event", EventBusError("publish", event_type, exc))

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: BaseException, **context: Any) -> None:
        """Log a failure at ERROR, or CRITICAL for critical errors; includes the traceback."""
        level = max(logging.ERROR, _SEVERITY_LEVELS[get_error_severity(error)])
        self.log.log(
            level,
            f"Service error during {operation}: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                "retryable": is_transient_error(error),
                **context,
            },
            exc_info=error,
        )
