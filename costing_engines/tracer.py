"""
costing_engines.tracer -- Engine invocation tracer emitting COSTING_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure engine call with one structured log
    record: engine name and version, a deterministic fingerprint of the
    selected keyword inputs, and the call duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.  Uses the plain
    ``logging`` module under the ``costing_kernel.engines.tracer`` name so
    the engines do not depend on logging configuration.

Invariants enforced:
    - Fingerprints are deterministic: Decimals are normalised, dict keys
      are sorted, dataclasses are canonicalised field by field, and the
      SHA-256 digest is truncated to 16 hex chars.
    - The decorator never mutates inputs.

Failure modes:
    - A fingerprint field that was not passed as a keyword is recorded as
      "null".
    - Exceptions raised by the engine propagate unchanged; no trace record
      is emitted for a failed call.

Usage:
    from costing_engines.tracer import traced_engine

    @traced_engine("landed_cost", "1.0", fingerprint_fields=("lines", "charges"))
    def calculate(self, *, lines, charges, exchange_rate, ...):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

_logger = logging.getLogger("costing_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        # 1.50 and 1.5 fingerprint identically
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-char SHA-256 prefix over the canonical form of the selected kwargs."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits COSTING_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g. "landed_cost").
        engine_version: Engine version (e.g. "1.0").
        fingerprint_fields: Keyword argument names included in the
            input fingerprint.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                fingerprint = compute_input_fingerprint(fingerprint_fields, kwargs)

            started = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - started) * 1000, 2)

            _logger.info(
                "COSTING_ENGINE_TRACE",
                extra={
                    "trace_type": "COSTING_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
