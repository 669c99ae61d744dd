"""
Structured JSON logging for the fiscal kernel.

Every record is one JSON line.  Request-scoped fields (correlation id, the
acting user, the account being invoiced, the document being modified) are
carried in a ContextVar so they follow the request across threads started
with ``contextvars.copy_context`` and across async tasks.

Secrets never belong in ``extra``: credential values, envelopes and the
master key are not logged anywhere in the kernel.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import IO, Any
from uuid import UUID

ROOT_LOGGER = "fiscal_kernel"

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "account_id", "document_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("fiscal_log_context", default={})


class LogContext:
    """Request-scoped fields merged into every record."""

    @staticmethod
    def _known(fields: Mapping[str, Any]) -> dict[str, str]:
        return {
            name: str(value)
            for name, value in fields.items()
            if name in _CONTEXT_FIELDS and value is not None
        }

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Update the given fields; None leaves a field unchanged."""
        _context.set({**_context.get(), **cls._known(fields)})

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a block, then restore the previous ones."""
        token = _context.set({**_context.get(), **cls._known(fields)})
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, bytes)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message, and the structured attributes of kernel errors."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED:
                entry.setdefault(name, value)

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry.update(_exception_fields(exc))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Child of the ``fiscal_kernel`` logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_state_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: IO[str] | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``fiscal_kernel`` logger.

    Only the first call has an effect; later calls return immediately.
    """
    global _configured
    with _state_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``.  Tests only."""
    global _configured
    with _state_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
