"""
Questline Logging Subsystem

Purpose
-------
Structured, async-safe logging for the quest engine:

- JSON records for aggregation, colored or plain text for local runs.
- Per-task context (user, quest, operation, correlation id) carried in a
  ContextVar and stamped on every record by `ContextFilter`.
- Handler I/O moved off the event loop through a bounded QueueHandler and a
  QueueListener thread.

Usage
-----
>>> setup_logging()
>>> logger = get_logger(__name__)
>>> async with LogContext(user_id="u1", quest_id="daily_chat_5", operation="update_progress"):
...     logger.info("Progress applied", extra={"progress": 3})
>>> shutdown_logging()

Notes
-----
- Importing this module never touches the root logger; the host process (or
  QuestlineApp) calls setup_logging().
- Values passed through `extra={...}` win over the ambient context and land in
  the JSON "extra" block unless they are context fields.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from questline.core.config.config import Config

CONTEXT_FIELDS = ("user_id", "quest_id", "operation", "correlation_id", "component")
UNSET = "N/A"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "questline.json.log"
QUEUE_MAX_SIZE = 10_000

_log_context: ContextVar[Dict[str, Any]] = ContextVar("questline_log_context", default={})

_ROOT_FLAG = "_questline_logging_initialized"


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True)
class LoggerConfig:
    """Logging settings resolved from Config when setup_logging() runs."""

    level: int
    json: bool
    colors: bool
    to_file: bool
    logs_dir: Path

    @classmethod
    def from_config(cls, enable_file: Optional[bool] = None) -> LoggerConfig:
        production = str(Config.ENVIRONMENT).lower() == "production"
        level = logging.getLevelName(str(Config.LOG_LEVEL).upper())
        use_json = production if Config.LOG_JSON is None else bool(Config.LOG_JSON)
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            json=use_json,
            colors=not use_json and sys.stdout.isatty(),
            to_file=production if enable_file is None else enable_file,
            logs_dir=Path(Config.LOGS_DIR).resolve(),
        )


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Stamp context fields on the record; explicit extras are left alone."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        bound = _log_context.get()
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                continue
            if name == "component":
                value = bound.get(name) or record.name.partition(".")[0]
            else:
                value = bound.get(name, UNSET)
            setattr(record, name, value)
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[1;91m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        plain = record.levelname
        color = self.LEVEL_COLORS.get(plain)
        if color is None:
            return super().format(record)

        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


# Attributes every LogRecord carries; anything else arrived through `extra`.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset context fields are omitted."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value not in (None, UNSET):
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Handlers
# ============================================================================


class QuestlineQueueHandler(QueueHandler):
    """Never blocks the producer; a full queue drops the record."""

    dropped = 0

    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            QuestlineQueueHandler.dropped += 1
            sys.stderr.write("Questline log queue full; record dropped\n")


def _console_handler(settings: LoggerConfig) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if settings.json:
        handler.setFormatter(JSONFormatter())
    else:
        formatter_cls = ColoredFormatter if settings.colors else logging.Formatter
        handler.setFormatter(formatter_cls(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _file_handler(settings: LoggerConfig) -> logging.Handler:
    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(settings.logs_dir / LOG_FILE_NAME),
        when="midnight",
        backupCount=1,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JSONFormatter())
    return handler


_listener: Optional[QueueListener] = None


def setup_logging(enable_file: Optional[bool] = None) -> None:
    """
    Route the root logger through a bounded queue to console (and file) handlers.

    Idempotent. The daily-rotated JSON file is written in production unless
    `enable_file` says otherwise.
    """
    global _listener

    root = logging.getLogger()
    if getattr(root, _ROOT_FLAG, False):
        return

    settings = LoggerConfig.from_config(enable_file)
    handlers: List[logging.Handler] = [_console_handler(settings)]
    if settings.to_file:
        handlers.append(_file_handler(settings))
    for handler in handlers:
        handler.setLevel(settings.level)

    records: "queue.Queue[logging.LogRecord]" = queue.Queue(QUEUE_MAX_SIZE)
    _listener = QueueListener(records, *handlers, respect_handler_level=True)
    _listener.start()

    front = QuestlineQueueHandler(records)
    front.setLevel(settings.level)
    # Runs on the producing task so the ContextVar is still visible
    front.addFilter(ContextFilter())

    root.handlers.clear()
    root.filters.clear()
    root.setLevel(settings.level)
    root.addHandler(front)
    setattr(root, _ROOT_FLAG, True)

    for noisy in ("asyncio", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(settings.level),
            "json": settings.json,
            "file": settings.to_file,
        },
    )


def shutdown_logging() -> None:
    """Flush the queue and detach every root handler. Safe to call twice."""
    global _listener

    root = logging.getLogger()
    if not getattr(root, _ROOT_FLAG, False):
        return

    if _listener is not None:
        _listener.stop()
        _listener = None

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.flush()
        handler.close()
    setattr(root, _ROOT_FLAG, False)


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


# ============================================================================
# Context
# ============================================================================


def _new_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class LogContext:
    """
    Bind context fields for the duration of a block (sync or async).

    Nested contexts inherit unspecified fields, including the correlation
    id, so one progress chain shares a single id across its cascades.

    >>> with LogContext(user_id="u1", operation="attempt"):
    ...     logger.info("Verifying")
    """

    def __init__(
        self,
        user_id: Optional[Any] = None,
        quest_id: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        parent = _log_context.get()
        given = {
            "user_id": str(user_id) if user_id is not None else None,
            "quest_id": quest_id,
            "component": component,
            "operation": operation,
            "correlation_id": correlation_id,
        }

        self.context: Dict[str, Any] = dict(parent)
        for name, value in given.items():
            if value:
                self.context[name] = value
            elif name not in self.context:
                self.context[name] = None if name == "component" else UNSET
        if self.context["correlation_id"] == UNSET:
            self.context["correlation_id"] = _new_correlation_id()
        self.context.update(extra)

        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(
    user_id: Optional[Any] = None,
    quest_id: Optional[str] = None,
    component: Optional[str] = None,
    operation: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra: Any,
) -> None:
    """Merge fields into the current context without a scope; None is ignored."""
    merged = dict(_log_context.get())
    if user_id is not None:
        merged["user_id"] = str(user_id)
    merged.update(
        (name, value)
        for name, value in (
            ("quest_id", quest_id),
            ("component", component),
            ("operation", operation),
            ("correlation_id", correlation_id),
        )
        if value
    )
    merged.update(extra)
    _log_context.set(merged)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def clear_log_context() -> None:
    _log_context.set({})
