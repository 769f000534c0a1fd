"""
SideEffects -- best-effort execution of fire-and-forget follow-ups.

Responsibility:
    Runs the follow-up writes that must never undo or fail the primary
    mutation they follow: audit entries, barcode cache refreshes, quota
    counter increments.

Invariants enforced:
    - ``run`` never raises.  Any exception is logged as
      ``side_effect_failed`` with its type and kernel error code.
    - The primary mutation has already committed when a side effect runs,
      so a failure here cannot reverse it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pantry_kernel.logging_config import get_logger

logger = get_logger("services.side_effects")


class SideEffects:
    """Executes callables on a best-effort basis and records failures."""

    def __init__(self) -> None:
        self.failure_count = 0

    def run(self, name: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> bool:
        """
        Call ``fn(*args, **kwargs)``.

        Returns:
            True if it completed, False if it raised (the error is logged).
        """
        try:
            fn(*args, **kwargs)
        except Exception as exc:
            self.failure_count += 1
            logger.warning(
                "side_effect_failed",
                extra={
                    "side_effect": name,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                    "error": str(exc),
                },
            )
            return False
        return True
