"""
Module: pantry_kernel.db.types
Responsibility: Annotated type aliases and the rounding helper for stock
    quantities.  Centralizes precision so every model and service uses the
    same definition.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Quantities carry exactly QUANTITY_DECIMAL_PLACES decimal places.
      ``round_quantity`` is the only sanctioned rounding for stock amounts
      (it trims artifacts such as 0.30000000004 left by repeated increments).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# Stock quantity, 3 decimal places
Quantity = Annotated[Decimal, Numeric(18, 3)]

# Derived metrics (weight, value), 2 decimal places
Metric = Annotated[Decimal, Numeric(18, 2)]

# Tenant identifiers come from the identity provider
TenantId = Annotated[str, String(64)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

QUANTITY_DECIMAL_PLACES = 3
METRIC_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTITY_EXPONENT = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
_METRIC_EXPONENT = Decimal(1).scaleb(-METRIC_DECIMAL_PLACES)


def round_quantity(value: Decimal) -> Decimal:
    """Round a stock quantity to QUANTITY_DECIMAL_PLACES."""
    return Decimal(value).quantize(_QUANTITY_EXPONENT, rounding=DEFAULT_ROUNDING)


def round_metric(value: Decimal) -> Decimal:
    """Round a derived metric to METRIC_DECIMAL_PLACES."""
    return Decimal(value).quantize(_METRIC_EXPONENT, rounding=DEFAULT_ROUNDING)
