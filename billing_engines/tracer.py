"""
billing_engines.tracer -- BILLING_ENGINE_TRACE records for engine entry points.

Every public engine function is decorated with ``@traced_engine``.  Each call
emits one INFO record on ``billing_kernel.engines.tracer`` with:

    engine_name, engine_version   which calculation ran
    input_fingerprint             16-char SHA-256 prefix over selected arguments
    duration_ms                   wall time of the call
    outcome                       "ok", or "error" when the engine raised

Two calls with equal inputs produce equal fingerprints regardless of argument
style (positional or keyword), dict key order or Decimal scale, so traces of
a recalculated service can be compared to spot input changes.

Usage:
    @traced_engine("adjustments", "1.0", fingerprint_fields=("configs", "sale", "cost"))
    def evaluate_adjustments(configs, sale, cost):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from billing_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_EVENT = "BILLING_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    match value:
        case None:
            return "null"
        case bool():
            return str(value).lower()
        case Enum():
            return str(value.value)
        case Decimal():
            # 10 and 10.00 hash the same.
            return str(value.normalize()) if value else "0"
        case str() | int() | float():
            return str(value)
        case Mapping():
            pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
            return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
        case list() | tuple():
            return "[" + ",".join(_canonical(v) for v in value) + "]"
        case _ if dataclasses.is_dataclass(value) and not isinstance(value, type):
            fields = ",".join(
                f"{f.name}:{_canonical(getattr(value, f.name))}"
                for f in dataclasses.fields(value)
            )
            return f"{type(value).__name__}({fields})"
        case _:
            return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Fingerprint the named arguments; absent ones count as None."""
    canonical = "|".join(
        f"{name}={_canonical(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[Callable], Callable]:
    """Wrap an engine function so every call emits a trace record."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.perf_counter()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                logger.info(TRACE_EVENT, extra={
                    "trace_type": TRACE_EVENT,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                    "outcome": outcome,
                    "function": func.__qualname__,
                })

        return wrapper

    return decorator
