"""
dues_engines.tracer -- DUES_ENGINE_TRACE records for pure engine calls.

``@traced_engine`` logs, at DEBUG, which engine ran, its version, a
fingerprint of the keyword inputs that determine the result and how long it
took.  Two calls with the same fingerprint and version must produce the
same output, which is what makes a fee or schedule dispute reproducible
from logs alone.

    @traced_engine("fees", "1.0", fingerprint_fields=("amount", "method_class"))
    def calculate_fees(*, amount, method_class, schedule):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from dues_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{k}:{_canonicalize(value[k])}" for k in sorted(value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    """16-char SHA-256 prefix over ``fields`` of ``kwargs``; missing ones count as null."""
    canonical = "|".join(f"{name}={_canonicalize(kwargs.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                _logger.debug(
                    "DUES_ENGINE_TRACE",
                    extra={
                        "trace_type": "DUES_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": (
                            compute_input_fingerprint(fingerprint_fields, kwargs)
                            if fingerprint_fields else ""
                        ),
                        "outcome": outcome,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                    },
                )

        return wrapper

    return decorator
