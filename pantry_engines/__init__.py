"""
Module: pantry_engines
Responsibility:
    Re-exports the pure calculation engines: FIFO allocation planning and
    audit impact metrics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pantry_kernel/domain (and sibling engine modules).
    MUST NOT import pantry_kernel services, selectors or models.

Invariants enforced:
    - Purity: engines never read the clock.  ``as_of`` dates are passed in.
    - Decimal-only arithmetic for quantities and metrics.
"""

from pantry_engines.allocation import (
    AllocationEngine,
    AllocationLine,
    AllocationPlan,
    is_expired,
)
from pantry_engines.impact import (
    VALUE_PER_POUND,
    WEIGHT_FACTORS,
    compute_impact,
    standardized_weight,
    tags_for,
)

__all__ = [
    "AllocationEngine",
    "AllocationLine",
    "AllocationPlan",
    "is_expired",
    "compute_impact",
    "standardized_weight",
    "tags_for",
    "VALUE_PER_POUND",
    "WEIGHT_FACTORS",
]
