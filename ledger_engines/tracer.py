"""
ledger_engines.tracer -- one LEDGER_ENGINE_TRACE record per engine call.

Responsibility:
    ``@traced_engine`` wraps the pure entry points (grouping, coverage,
    checkpoint folding, detection) and logs engine name, version, a
    fingerprint of selected arguments and the wall time.  Two runs over the
    same rows produce the same fingerprint, which is how an operator
    confirms a rerun saw identical input.

Invariants enforced:
    - Fingerprints depend only on argument values: mapping keys are sorted,
      Decimals are normalized, dataclasses are rendered field by field.
    - Arguments are never mutated.
    - A raising engine logs ``LEDGER_ENGINE_FAILED`` and re-raises.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from ledger_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_TYPE = "LEDGER_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    match value:
        case None:
            return "~"
        case bool():
            return "T" if value else "F"
        case Decimal():
            return format(value.normalize(), "f")
        case Enum():
            return str(value.value)
        case str() | int() | float():
            return str(value)
        case date():
            return value.isoformat()
        case Mapping():
            pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
            return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
        case set() | frozenset():
            return "{" + ",".join(sorted(_canonical(v) for v in value)) + "}"
        case list() | tuple():
            return "[" + ",".join(_canonical(v) for v in value) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        inner = ",".join(f"{f.name}={_canonical(getattr(value, f.name))}" for f in dataclasses.fields(value))
        return f"{type(value).__name__}({inner})"
    return type(value).__name__


def compute_input_fingerprint(fields: tuple[str, ...], arguments: Mapping[str, Any]) -> str:
    """First 16 hex chars of SHA-256 over ``name=value`` for each field."""
    text = "|".join(f"{name}={_canonical(arguments.get(name))}" for name in fields)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)
            trace = {
                "trace_type": TRACE_TYPE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }

            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
                _logger.warning("LEDGER_ENGINE_FAILED", extra={**trace, "error": type(exc).__name__})
                raise
            trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            _logger.info(TRACE_TYPE, extra=trace)
            return result

        return wrapper

    return decorator
