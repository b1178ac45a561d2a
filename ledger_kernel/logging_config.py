"""
Structured JSON logging for the ledger reconciliation core.

Every record under the ``ledger`` logger tree is written as one JSON
object.  Operation-scoped identifiers (correlation, actor, batch,
document, template, trace) live in context variables and are merged
into every line emitted while they are bound, so a bulk payment's
``batch_id`` reaches the engine trace and the commit event alike.

Amounts are logged as strings so ``Decimal("0.10")`` never becomes a
float.
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
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "batch_id",
    "document_id",
    "template_id",
    "trace_id",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"ledger_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name!r}") from None


class LogContext:
    """Context-local identifiers merged into every ledger log line."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set context fields. None values leave the field untouched."""
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        """Bound fields in ``CONTEXT_FIELDS`` order."""
        bound: dict[str, str] = {}
        for name, var in _CONTEXT_VARS.items():
            value = var.get()
            if value is not None:
                bound[name] = value
        return bound

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """
        Bind fields for the duration of a block, restoring prior values.

        Unknown field names raise TypeError before anything is bound.
        """
        targets = [(_context_var(name), value) for name, value in fields.items()]
        tokens = [(var, var.set(value)) for var, value in targets if value is not None]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal | UUID):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, frozenset | set):
        return sorted(str(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message and the public attributes of a raised error."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for key, value in vars(exc).items():
        if not key.startswith("_") and key != "code":
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "ledger"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ledger namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``ledger`` logger (idempotent).

    ``level`` accepts a name such as ``"DEBUG"`` so it can come straight
    from configuration.  Later calls are no-ops until ``reset_logging``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        ledger_logger.setLevel(level.upper() if isinstance(level, str) else level)
        ledger_logger.propagate = False

        target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        ledger_logger.addHandler(target)


def reset_logging() -> None:
    """Detach every ledger handler. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
        ledger_logger = logging.getLogger(_LOGGER_PREFIX)
        for existing in list(ledger_logger.handlers):
            ledger_logger.removeHandler(existing)
        ledger_logger.setLevel(logging.WARNING)
