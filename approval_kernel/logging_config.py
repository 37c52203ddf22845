"""
Structured JSON logging for the approval kernel.

Every record is one JSON line carrying ``ts``, ``level``, ``logger`` and
``message``, the approval context bound by the caller (request, actor,
operation type, operation id) and any ``extra`` fields.  Kernel
exceptions contribute their ``code`` and public attributes as ``exc_*``.
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
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

_LOGGER_PREFIX = "approval_kernel"
_HANDLER_NAME = "approval_kernel.structured"

# ---------------------------------------------------------------------------
# Approval context
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default=_EMPTY)


class LogContext:
    """Approval fields stamped on every record logged inside a ``bind`` block."""

    FIELDS = ("request_id", "actor_id", "operation_type", "operation_id")

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Bind fields for the duration of a ``with`` block.

        Unknown names and None values are ignored; nested binds override
        the outer value and restore it on exit.
        """
        return _Binding({
            name: str(value)
            for name, value in fields.items()
            if name in cls.FIELDS and value is not None
        })

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)


class _Binding:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> None:
        merged = {**_context.get(), **self._fields}
        self._token = _context.set(MappingProxyType(merged))

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


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

        for key, val in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # ApprovalKernelError subclasses keep their details as attributes.
        for name, val in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = val
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the approval_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the approval_kernel logger.

    Idempotent: once a structured handler is attached, later calls change
    nothing until ``reset_logging`` removes it.
    """
    root = logging.getLogger(_LOGGER_PREFIX)
    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return

    h = handler if handler is not None else logging.StreamHandler(sys.stderr)
    h.set_name(_HANDLER_NAME)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Remove every approval_kernel handler. FOR TESTING ONLY."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
    root.propagate = True
