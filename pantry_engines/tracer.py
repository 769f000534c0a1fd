"""
pantry_engines.tracer -- one trace record per pure engine call.

Responsibility:
    ``@traced_engine`` logs ``PANTRY_ENGINE_TRACE`` after an engine call:
    engine name and version, a short fingerprint of selected arguments, the
    size of the input batch and the duration.  Two calls with the same
    fingerprint were asked the same question, which is how a plan shown to
    a volunteer is matched to the checkout that followed.

Architecture position:
    Engines -- support for the pure calculation layer.  Uses the plain
    ``logging`` module under the ``pantry_kernel.engines`` namespace so the
    engines stay free of kernel infrastructure imports.

Failure modes:
    - None raised.  An argument absent from the call is fingerprinted as
      "null"; the wrapped function's own exceptions propagate untouched and
      produce no trace record.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

_logger = logging.getLogger("pantry_kernel.engines.tracer")

TRACE_TYPE = "PANTRY_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{key}:{_canonical(value[key])}" for key in sorted(value, key=str)
        ) + "}"
    if isinstance(value, Sequence) and not isinstance(value, str):
        return "[" + ",".join(_canonical(item) for item in value) + "]"
    return str(value)


def fingerprint(arguments: Mapping[str, Any], fields: Sequence[str]) -> str:
    """16-hex-char SHA-256 prefix over the named arguments, in field order."""
    canonical = "|".join(f"{name}={_canonical(arguments.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    batch_field: str | None = "lots",
) -> Callable:
    """
    Decorate an engine method.

    Arguments are matched to parameter names whether they were passed by
    position or by keyword.  ``batch_field`` names the sequence whose length
    is reported as ``input_count``.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            bound = signature.bind_partial(*args, **kwargs).arguments
            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            batch = bound.get(batch_field) if batch_field else None
            _logger.debug(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint(bound, fingerprint_fields),
                    "input_count": len(batch) if batch is not None else None,
                    "duration_ms": elapsed_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
