"""
Structured logging for the obligation kernel.

Every record under the ``obligation_kernel`` logger is written as one JSON
object per line.  Fields bound with ``LogContext.bind()`` are merged into
every line emitted while the binding is active: the engine binds
``root_id`` and ``run_id`` around a distribution, the reconciler binds
``payment_ref`` around a payment, and the CLI binds ``actor_id``.  One
distribute() or apply_payment() call can therefore be followed by
filtering on a single field.

Money is written as a decimal string, never a float.  Kernel errors logged
with ``exc_info`` contribute their ``code`` and structured attributes as
``exc_*`` fields.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LOGGER_NAMESPACE",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, is_dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

LOGGER_NAMESPACE = "obligation_kernel"

CONTEXT_FIELDS = ("correlation_id", "run_id", "root_id", "payment_ref", "actor_id")

_bound: ContextVar[dict[str, str] | None] = ContextVar("obligation_log_context", default=None)


def _checked(fields: dict[str, Any]) -> dict[str, str]:
    unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(unknown)}")
    return {name: str(value) for name, value in fields.items() if value is not None}


class LogContext:
    """
    Fields attached to every log line of the current thread or task.

    Values are stringified on the way in.  ``None`` leaves a field as it
    was; an unknown field name is a TypeError.
    """

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get() or {})

    @staticmethod
    def set(**fields: Any) -> None:
        _bound.set({**LogContext.get_all(), **_checked(fields)})

    @staticmethod
    def clear() -> None:
        _bound.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block, then restore."""
        token = _bound.set({**LogContext.get_all(), **_checked(fields)})
        try:
            yield
        finally:
            _bound.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Exception)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return repr(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """
    Render a record as ``{"ts", "level", "logger", "message", ...}``.

    Bound context comes next, then ``extra`` fields.  An extra never
    overwrites a bound field of the same name.
    """

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.get_all())
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS and name not in line:
                line[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_error_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``obligation_kernel`` logger.

    Only the first call takes effect until ``reset_logging()``.  Records
    stop at the namespace logger and do not reach the root logger.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    namespace = logging.getLogger(LOGGER_NAMESPACE)
    namespace.setLevel(level)
    namespace.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    namespace.addHandler(target)


def reset_logging() -> None:
    """Undo configure_logging().  Used by tests."""
    global _configured
    with _configure_lock:
        _configured = False
    namespace = logging.getLogger(LOGGER_NAMESPACE)
    for attached in list(namespace.handlers):
        namespace.removeHandler(attached)
    namespace.setLevel(logging.NOTSET)
    namespace.propagate = True
