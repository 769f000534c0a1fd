"""
Module: pantry_engines.impact
Responsibility:
    Derive the reporting metrics attached to every audit entry: people
    served, standardized weight in pounds, estimated value, the waste
    diverted flag, and tags.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Never NaN, never raises.  Missing, non-numeric, NaN or infinite inputs
      coerce to 0 (household size to 1).
    - Weight and value are rounded to 2 decimal places (ROUND_HALF_UP).
    - people_served is non-zero only for ``distributed`` entries.
    - waste_diverted is True only for ``added`` entries.

Usage:
    from pantry_engines.impact import compute_impact

    metrics = compute_impact(
        action=ActionType.DISTRIBUTED, quantity=Decimal("16"), unit="oz",
        household_size=3,
    )
    # metrics.standardized_weight == Decimal("1.00")
    # metrics.estimated_value == Decimal("2.50")
"""

from __future__ import annotations

from decimal import Decimal

from pantry_kernel.db.types import round_metric
from pantry_kernel.domain.dtos import ImpactMetrics
from pantry_kernel.domain.values import ActionType, Unit, coerce_decimal
from pantry_kernel.exceptions import InvalidUnitError

# Pounds per one unit of each measure.  "units" count as one pound each.
WEIGHT_FACTORS: dict[Unit, Decimal] = {
    Unit.LBS: Decimal("1"),
    Unit.KG: Decimal("2.20462"),
    Unit.OZ: Decimal("1") / Decimal("16"),
    Unit.UNITS: Decimal("1"),
}

# Estimated retail value per standardized pound
VALUE_PER_POUND = Decimal("2.50")

EMERGENCY_REASON = "emergency"
URGENT_TAG = "Urgent"


def _weight_factor(unit: object) -> Decimal:
    try:
        return WEIGHT_FACTORS[Unit.parse(unit)]
    except InvalidUnitError:
        return WEIGHT_FACTORS[Unit.UNITS]


def _household(value: object) -> int:
    size = coerce_decimal(value, Decimal("1"))
    if size < 1:
        return 1
    return int(size)


def standardized_weight(quantity: object, unit: object) -> Decimal:
    """Quantity converted to pounds, rounded to 2 places; bad input -> 0.00."""
    qty = coerce_decimal(quantity)
    return round_metric(abs(qty) * _weight_factor(unit))


def tags_for(reason: str | None) -> tuple[str, ...]:
    """Tags derived from a distribution reason."""
    if reason and reason.strip().lower() == EMERGENCY_REASON:
        return (URGENT_TAG,)
    return ()


def compute_impact(
    action: ActionType | str,
    quantity: object,
    unit: object,
    household_size: object = 1,
) -> ImpactMetrics:
    """
    Impact metrics for one audit entry.

    ``quantity`` is the magnitude of the change (sign is ignored).  ``unit``
    is the unit the change was expressed in, which for a distribution line
    may differ from the Lot's own unit.
    """
    try:
        action = ActionType(action)
    except ValueError:
        action = None

    weight = standardized_weight(quantity, unit)
    return ImpactMetrics(
        people_served=_household(household_size) if action is ActionType.DISTRIBUTED else 0,
        estimated_value=round_metric(weight * VALUE_PER_POUND),
        standardized_weight=weight,
        waste_diverted=action is ActionType.ADDED,
    )
