"""
settlement_engines.tracer -- call trace for pure engines.

``@traced_engine(name, version)`` logs one ``engine_trace`` DEBUG record
per call: engine name and version, the wrapped function, elapsed
milliseconds and, when ``fingerprint_fields`` is given, a short hash of
those arguments so two calls with the same inputs can be matched in logs.
Arguments and results pass through untouched.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from settlement_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def input_fingerprint(fields: Iterable[str], arguments: Mapping[str, Any]) -> str:
    """First 16 hex chars of a SHA-256 over the named arguments (missing ones are null)."""
    payload = json.dumps(
        {name: arguments.get(name) for name in fields},
        sort_keys=True,
        default=str,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 3)

            fingerprint = None
            if fingerprint_fields:
                bound = signature.bind(*args, **kwargs)
                bound.apply_defaults()
                fingerprint = input_fingerprint(fingerprint_fields, bound.arguments)

            _logger.debug(
                "engine_trace",
                extra={
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "duration_ms": elapsed_ms,
                    "input_fingerprint": fingerprint,
                },
            )
            return result

        return wrapper

    return decorator
