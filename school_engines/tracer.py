"""
school_engines.tracer -- one SCHOOL_ENGINE_TRACE debug record per engine call.

    @traced_engine(
        "eligibility", "1.0",
        fingerprint_fields=("thresholds", "metrics"),
        outcome=lambda decision: {"is_eligible": decision.is_eligible},
    )
    def evaluate(self, thresholds, metrics):
        ...

The record names the engine and its version, fingerprints the listed
keyword arguments and carries whatever ``outcome`` extracts from the
result.  Equal inputs always give equal fingerprints (``Decimal("50")`` and
``Decimal("50.00")`` included), so a balance or eligibility decision in the
logs can be matched to the inputs it was computed from.

Positional arguments are not fingerprinted.  An engine that raises still
emits its record, with ``outcome: "error"``, before the exception
propagates.  Engines stay pure: the decorator reads kwargs and writes one
log line.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

# Child of the kernel logger so the JSON handler applies, without the
# engines importing kernel logging.
_logger = logging.getLogger("school_kernel.engines.tracer")

TRACE_TYPE = "SCHOOL_ENGINE_TRACE"


@functools.singledispatch
def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    return str(value)


@_canonicalize.register
def _(value: bool) -> str:
    return "true" if value else "false"


@_canonicalize.register
def _(value: Decimal) -> str:
    return format(value.normalize(), "f")


@_canonicalize.register
def _(value: Enum) -> str:
    return _canonicalize(value.value)


@_canonicalize.register
def _(value: date) -> str:
    return value.isoformat()


@_canonicalize.register
def _(value: Mapping) -> str:
    items = sorted(value.items(), key=lambda kv: str(kv[0]))
    return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"


@_canonicalize.register(list)
@_canonicalize.register(tuple)
def _(value) -> str:
    return "[" + ",".join(_canonicalize(v) for v in value) + "]"


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the named kwargs; missing ones are "null"."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    outcome: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable:
    """
    Args:
        engine_name: e.g. "ledger", "carry_forward", "eligibility".
        engine_version: bumped when the engine's arithmetic changes.
        fingerprint_fields: keyword arguments to hash.
        outcome: summarises the result for the trace record.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            started = time.monotonic()
            summary: Any = "error"
            try:
                result = func(*args, **kwargs)
                summary = outcome(result) if outcome is not None else None
                return result
            finally:
                _logger.debug(
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "function": func.__qualname__,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "outcome": summary,
                    },
                )

        return wrapper

    return decorator
