"""
Structured JSON logging for the costing kernel.

One JSON object per line.  Besides ts / level / logger / message, a record
carries:

- the costing context bound around the work in flight: the sales terminal
  and actor behind it, and the allocation, consumption or production run it
  belongs to (LogContext.bind);
- the call's ``extra`` fields;
- for CostingError exceptions, the error code and structured attributes.

Decimals are written as strings so costs and quantities keep every digit.

Usage::

    with LogContext.bind(terminal_id="pos-3", consuming_reference="sale-88"):
        logger.info("fifo_consumption_completed", extra={"total_cost": cost})
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

_LOGGER_PREFIX = "costing_kernel"

# Context fields, in the order they appear in a record
CONTEXT_FIELDS = (
    "terminal_id",
    "actor_id",
    "allocation_id",
    "consuming_reference",
    "production_reference",
)

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"costing_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name}") from None


class LogContext:
    """
    Costing context attached to every record logged by the current thread
    or task.

    ``None`` never overwrites a value, so a nested bind (a FIFO consumption
    inside a production run) adds its own fields and keeps the outer ones.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        values = ((name, _context[name].get()) for name in CONTEXT_FIELDS)
        return {name: value for name, value in values if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of the block, then restore them."""
        tokens = [
            (var, var.set(str(value)))
            for var, value in ((_context_var(name), value) for name, value in fields.items())
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        # CostingError subclasses keep their data as public attributes
        fields.update(
            (f"exc_{name}", value)
            for name, value in vars(exc).items()
            if not name.startswith("_")
        )
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRIBUTES:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the costing_kernel namespace (``services.layer_ledger`` etc.)."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the costing_kernel logger.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    handler = handler or logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
