"""Structured logging configuration for the planning poker bot.

Every record emitted while a chat event or a planning round is being handled
carries the room, the person who triggered it and the task being estimated.
JSON output for production, human-readable output for local development.

Environment Variables:
    LOG_FORMAT: Set to "json" for JSON output, anything else for human-readable.
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
"""

import copy
import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import jsonlogger

# Event-scoped data. Planning tasks copy the context they were started from,
# so values set inside the loop never leak into command handlers.
_room_id: ContextVar[str | None] = ContextVar("room_id", default=None)
_actor: ContextVar[str | None] = ContextVar("actor", default=None)
_task_id: ContextVar[str | None] = ContextVar("task_id", default=None)

# Environment configuration
LOG_FORMAT = os.getenv("LOG_FORMAT", "").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_room_id() -> str | None:
    """Get the room being handled in the current context."""
    return _room_id.get()


def set_room_id(room_id: str | None) -> None:
    _room_id.set(room_id)


def get_actor() -> str | None:
    """Get the handle of the person whose message is being handled."""
    return _actor.get()


def set_actor(handle: str | None) -> None:
    _actor.set(handle)


def get_task_id() -> str | None:
    """Get the id of the work item currently being estimated."""
    return _task_id.get()


def set_task_id(task_id: str | None) -> None:
    _task_id.set(task_id)


def context_fields() -> dict[str, str]:
    """Non-empty context values, keyed by their JSON field name."""
    fields = {
        "room_id": get_room_id(),
        "actor": get_actor(),
        "task_id": get_task_id(),
    }
    return {key: value for key, value in fields.items() if value}


def context_prefix() -> str:
    """Context rendered as e.g. ``[room:abc] [@mia] [task:#100] ``."""
    fields = context_fields()
    parts = []
    if "room_id" in fields:
        parts.append(f"[room:{fields['room_id']}]")
    if "actor" in fields:
        parts.append(f"[@{fields['actor']}]")
    if "task_id" in fields:
        parts.append(f"[task:#{fields['task_id']}]")
    return " ".join(parts) + " " if parts else ""


class ContextAwareJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds the room, actor and task as fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["message"] = record.getMessage()
        log_record.update(context_fields())


class ContextAwareFormatter(logging.Formatter):
    """Human-readable formatter that prefixes the room, actor and task."""

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so other handlers see the original message
        record = copy.copy(record)
        record.msg = f"{context_prefix()}{record.getMessage()}"
        record.args = ()
        return super().format(record)


def setup_logging() -> None:
    """Configure logging based on environment.

    Call once at startup before any logging occurs.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if LOG_FORMAT == "json":
        formatter = ContextAwareJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
    else:
        formatter = ContextAwareFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).info(
        "Logging configured. Format: %s, Level: %s",
        "json" if LOG_FORMAT == "json" else "human-readable",
        LOG_LEVEL,
    )
