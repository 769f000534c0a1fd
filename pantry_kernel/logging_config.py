"""
Structured JSON logging for the pantry kernel.

Responsibility:
    One JSON object per line for every record under the ``pantry_kernel``
    logger namespace, carrying request-scoped context (tenant, correlation
    id, actor, operation) and the structured attributes of kernel errors.

Architecture position:
    Kernel > infrastructure.  Imported by every layer; imports nothing from
    the kernel itself so it can never create an import cycle.

Invariants enforced:
    - Context is carried in a ContextVar, so concurrent requests on threads
      or tasks never see each other's tenant.
    - The tenant id in the log context is for correlation only.  Operations
      still take ``tenant_id`` explicitly.
    - ``configure_logging`` installs exactly one handler however often it is
      called; ``reset_logging`` undoes it for tests.

Usage::

    logger = get_logger("services.lot")
    with LogContext.bind(tenant_id=tenant_id, operation="ingest_lot"):
        logger.info("lot_created", extra={"lot_id": str(lot_id)})
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import IO, Any
from uuid import UUID

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

LOGGER_NAMESPACE = "pantry_kernel"

CONTEXT_FIELDS = ("tenant_id", "correlation_id", "actor_id", "operation")

_context: ContextVar[Mapping[str, str]] = ContextVar("pantry_log_context", default={})


class LogContext:
    """Request-scoped fields merged into every record."""

    @staticmethod
    def _merged(fields: Mapping[str, str | None]) -> dict[str, str]:
        current = dict(_context.get())
        for name, value in fields.items():
            if name in CONTEXT_FIELDS and value is not None:
                current[name] = value
        return current

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Update the known fields that are not None; others are ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type[LogContext]]:
        """Set fields for the duration of a block, then restore the previous ones."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message and public attributes of an exception, prefixed ``exc_``."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    for attr in ("code", "category", "retryable"):
        if hasattr(exc, attr):
            fields[f"exc_{attr}"] = getattr(exc, attr)
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields.setdefault(f"exc_{name}", value)
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``pantry_kernel`` namespace, e.g. ``get_logger("services.lot")``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: IO[str] | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the ``pantry_kernel`` logger (first call wins).

    ``level`` accepts a number or a name such as ``"DEBUG"`` (the form
    ``Settings.log_level`` carries).
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Remove the handler and allow reconfiguration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
