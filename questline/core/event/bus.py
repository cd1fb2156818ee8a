"""
In-process event bus for quest notifications.

The engine announces what happened (`quest.completed`, `quest.reset`,
`player.level_up`, ...) and never learns who is listening. A listener takes
one argument, the payload dict, and may be sync or async.

Priority decides how a listener runs:

    CRITICAL, HIGH   one at a time, in that order, each under a timeout
    NORMAL           together via asyncio.gather, awaited by publish()
    LOW              detached tasks; publish() does not wait for them

A listener that raises or times out is logged and counted; the others still
run and publish() itself never raises for it. Each QuestlineApp owns its own
bus, so nothing is shared between tests.
"""

from __future__ import annotations

import asyncio
import inspect
from fnmatch import fnmatchcase
from typing import Any, Optional

from questline.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from questline.core.logging.logger import get_logger

logger = get_logger(__name__)

_SEQUENTIAL = (ListenerPriority.CRITICAL, ListenerPriority.HIGH)


def matches(event_name: str, pattern: str) -> bool:
    """
    Glob-style match where `*` spans any run of characters, dots included.

    >>> matches("quest.completed", "*.completed")
    True
    >>> matches("player.level_up", "quest.*")
    False
    """
    return fnmatchcase(event_name, pattern)


class EventBus:
    """
    >>> bus = EventBus()
    >>> bus.subscribe("quest.*", on_quest_event, priority=ListenerPriority.HIGH)
    >>> await bus.publish("quest.completed", {"user_id": "u1", "quest_id": "daily_login"})
    """

    def __init__(
        self,
        *,
        critical_timeout_seconds: float = 5.0,
        high_timeout_seconds: float = 5.0,
    ) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._pending: set[asyncio.Task[Any]] = set()
        self._timeouts: dict[ListenerPriority, float] = {
            ListenerPriority.CRITICAL: critical_timeout_seconds,
            ListenerPriority.HIGH: high_timeout_seconds,
        }
        self._published: dict[str, int] = {}
        self._errors: dict[str, int] = {}

    # --- subscriptions -------------------------------------------------

    @staticmethod
    def _check_arity(callback: CallbackType) -> None:
        try:
            arity = len(inspect.signature(callback).parameters)
        except (TypeError, ValueError):
            # Some builtins have no introspectable signature
            return
        if arity != 1:
            name = getattr(callback, "__qualname__", repr(callback))
            raise ValueError(f"Listener '{name}' must take one payload argument, takes {arity}")

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Register `callback` for an event name or glob pattern.

        Returns the listener id. A second registration with an id already
        present under the same name is ignored.
        """
        self._check_arity(callback)
        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        bucket = self._listeners.setdefault(event_name, [])
        if listener.identifier in {existing.identifier for existing in bucket}:
            logger.warning(
                "Listener already registered; ignoring",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        bucket.sort(key=lambda item: item.priority.value)
        logger.debug(
            "Listener registered",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
                "once": once,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.pop(event_name, [])
        kept = [item for item in bucket if item.identifier != identifier]
        if kept:
            self._listeners[event_name] = kept
        removed = len(kept) < len(bucket)
        if removed:
            logger.debug("Listener removed", extra={"event_name": event_name, "listener_id": identifier})
        return removed

    def clear(self) -> None:
        count = self.get_listener_count()
        self._listeners = {}
        logger.info("All listeners removed", extra={"removed_listeners": count})

    def _take_listeners(self, event_name: str) -> list[EventListener]:
        """Matching listeners by priority; one-shot listeners are unregistered."""
        found: list[EventListener] = []
        for pattern in [p for p in self._listeners if matches(event_name, p)]:
            bucket = self._listeners[pattern]
            found += bucket
            survivors = [item for item in bucket if not item.once]
            if survivors:
                self._listeners[pattern] = survivors
            else:
                del self._listeners[pattern]
        return sorted(found, key=lambda item: item.priority.value)

    # --- publishing ----------------------------------------------------

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Deliver `data` to every matching listener.

        Returns the return values of CRITICAL, HIGH and NORMAL listeners
        (None for a listener that failed). LOW listeners contribute nothing.
        """
        self._published[event_name] = self._published.get(event_name, 0) + 1

        listeners = self._take_listeners(event_name)
        logger.debug(
            "Publishing event",
            extra={"event_name": event_name, "listener_count": len(listeners), "payload_keys": sorted(data)},
        )
        if not listeners:
            return []

        tiers: dict[ListenerPriority, list[EventListener]] = {level: [] for level in ListenerPriority}
        for listener in listeners:
            tiers[listener.priority].append(listener)

        results: list[Any] = []
        for level in _SEQUENTIAL:
            for listener in tiers[level]:
                results.append(await self._invoke_bounded(listener, event_name, data, self._timeouts[level]))

        if tiers[ListenerPriority.NORMAL]:
            gathered = await asyncio.gather(
                *(self._invoke(listener, event_name, data) for listener in tiers[ListenerPriority.NORMAL])
            )
            results += gathered

        for listener in tiers[ListenerPriority.LOW]:
            task = asyncio.ensure_future(self._invoke(listener, event_name, data))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return results

    async def _invoke_bounded(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: float,
    ) -> Any:
        if timeout <= 0:
            return await self._invoke(listener, event_name, payload)
        try:
            return await asyncio.wait_for(self._invoke(listener, event_name, payload), timeout=timeout)
        except asyncio.TimeoutError:
            self._count_error(event_name)
            logger.error(
                "Listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def _invoke(self, listener: EventListener, event_name: str, payload: EventPayload) -> Any:
        try:
            outcome = listener.callback(payload)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            self._count_error(event_name)
            logger.error(
                "Listener raised",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None
        return outcome

    def _count_error(self, event_name: str) -> None:
        self._errors[event_name] = self._errors.get(event_name, 0) + 1

    # --- introspection -------------------------------------------------

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        return sum(
            len(bucket)
            for pattern, bucket in self._listeners.items()
            if event_name is None or matches(event_name, pattern)
        )

    def get_metrics_summary(self) -> dict[str, Any]:
        published = sum(self._published.values())
        failed = sum(self._errors.values())
        return {
            "total_events_published": published,
            "events_by_type": dict(self._published),
            "total_errors": failed,
            "errors_by_event": dict(self._errors),
            "total_listeners": self.get_listener_count(),
            "error_rate": round(100 * failed / published, 2) if published else 0.0,
        }

    async def drain(self) -> None:
        """Wait for LOW-priority listeners still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
