"""
billing_kernel.logging_config -- JSON line logging for billing calculations.

Every record is rendered as one JSON object carrying:
    ts, level, logger, message     always
    booking context fields          whatever LogContext currently holds
    extra fields                    anything passed through ``extra={...}``
    exc_* fields                    for records logged with exc_info

Event messages are snake_case event names (``breakdown_computed``,
``booking_sale_total_rejected``); the data lives in the extra fields.

Booking context is kept in a single ContextVar so it follows both threads
and asyncio tasks without leaking between them.
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
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any

ROOT_LOGGER_NAME = "billing_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "agency_id",
    "booking_id",
    "service_id",
    "actor_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar(
    "billing_log_context", default=_EMPTY
)


def _merged(current: Mapping[str, str], fields: dict[str, Any]) -> Mapping[str, str]:
    updated = dict(current)
    for name, value in fields.items():
        if name not in CONTEXT_FIELDS:
            raise KeyError(f"Unknown log context field: {name}")
        if value is not None:
            updated[name] = str(value)
    return MappingProxyType(updated)


class LogContext:
    """Booking-scoped fields attached to every record of the current context."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set context fields. None values leave the field untouched."""
        _context.set(_merged(_context.get(), fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Set fields for the duration of a block, then restore the previous ones."""
        token = _context.set(_merged(_context.get(), fields))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    match value:
        case Enum():
            return value.value
        case Decimal():
            return str(value)
        case datetime() | date():
            return value.isoformat()
        case _:
            return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_to_json)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # BillingEngineError subclasses carry structured attributes
        # (field, value, currencies, ...).
        for name, value in vars(exc).items():
            if name != "code" and not name.startswith("_"):
                fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``billing_kernel`` namespace, e.g. ``engines.breakdown``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``billing_kernel`` logger.

    Only the first call has any effect; later calls return immediately.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging. Used by tests."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
