"""
Structured JSON logging for the ledger kernel and everything built on it.

Responsibility:
    One JSON object per log record, carrying the run-scoped identifiers
    (account, import batch, reconciliation run, delta) that let an operator
    follow a single row from import through construction to a fix.

Architecture position:
    Kernel > Logging.  Imported by every layer; imports nothing from the
    ledger packages.

Invariants:
    - Messages are snake_case event names; data goes in ``extra``.
    - Context fields come from ``LogContext`` and never override an
      explicit ``extra`` key of the same name.
    - ``configure_logging`` installs exactly one handler however often
      it is called.
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
from typing import Any, TextIO
from uuid import UUID

_ROOT = "ledger_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})

_context: ContextVar[Mapping[str, str]] = ContextVar("ledger_log_context", default=_EMPTY)


class LogContext:
    """Run-scoped identifiers merged into every record on this context.

    Worker threads start with an empty context; the construction service
    rebinds the caller's fields, plus the account, inside each task.
    """

    FIELDS = ("correlation_id", "account_id", "batch_id", "run_id", "delta_id")

    @classmethod
    def _accepted(cls, values: Mapping[str, Any]) -> dict[str, str]:
        return {k: str(v) for k, v in values.items() if k in cls.FIELDS and v is not None}

    @classmethod
    def set(cls, **values: Any) -> None:
        """Merge non-None known fields into the current context."""
        _context.set(MappingProxyType({**_context.get(), **cls._accepted(values)}))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        token = _context.set(MappingProxyType({**_context.get(), **cls._accepted(values)}))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # LedgerError subclasses keep their locating data as public attributes.
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        payload.update((k, v) for k, v in LogContext.get_all().items() if k not in extra)
        payload.update(extra)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the ledger_kernel hierarchy."""
    return logging.getLogger(f"{_ROOT}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ledger_kernel logger (idempotent)."""
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop installed handlers so tests can reconfigure."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
