"""
Values -- Pure value types and normalizers for the inventory domain.

Responsibility:
    Units of measure, audit action types, the Product Group key, and the
    normalizers every entry point runs before touching storage: quantity
    parsing (strict), numeric coercion (lenient, for metrics), expiration
    normalization, and the internal-barcode convention.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Expiration dates are plain UTC calendar dates (or None).  An aware
      datetime is converted to UTC before its date is taken; a naive one is
      read as UTC.
    - ``expiration_key`` is never NULL: "" for "no expiration", ISO date
      otherwise.  It is the storage form of the Lot identity key.
    - Internally generated barcodes carry a fixed prefix and are never
      written to the barcode cache.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import uuid4

from pantry_kernel.db.types import round_quantity
from pantry_kernel.exceptions import (
    InvalidQuantityError,
    InvalidUnitError,
    MissingFieldError,
    ValidationError,
)


class Unit(str, Enum):
    """Units a Lot quantity can be expressed in."""

    UNITS = "units"
    LBS = "lbs"
    KG = "kg"
    OZ = "oz"

    @classmethod
    def parse(cls, value: "Unit | str | None") -> "Unit":
        """Parse a unit, case-insensitively.  None means ``units``."""
        if value is None or value == "":
            return cls.UNITS
        if isinstance(value, Unit):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidUnitError(value, tuple(u.value for u in cls)) from None


class ActionType(str, Enum):
    """Kinds of mutation recorded in the audit log."""

    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"
    DISTRIBUTED = "distributed"


# Barcodes minted by the system itself (no external product behind them)
INTERNAL_BARCODE_PREFIXES = ("SYS-", "INT-")
GENERATED_BARCODE_PREFIX = "SYS-"

# Recipient ids that stand for "nobody in particular"
ANONYMOUS_RECIPIENT_CODES = frozenset({"SYS", "anonymous"})
ANONYMOUS_RECIPIENT_CODE = "SYS"
ANONYMOUS_RECIPIENT_NAME = "Walk-in"
ADJUSTMENT_RECIPIENT_NAME = "General Inventory Adjustment"


def is_internal_barcode(barcode: str | None) -> bool:
    """True for barcodes the system generated itself."""
    return bool(barcode) and barcode.startswith(INTERNAL_BARCODE_PREFIXES)


def generate_internal_barcode() -> str:
    """Mint a barcode for an item ingested without one."""
    return f"{GENERATED_BARCODE_PREFIX}{uuid4().hex[:12].upper()}"


def clean_barcode(barcode: str | None) -> str | None:
    """Strip whitespace; blank means no barcode."""
    if barcode is None:
        return None
    cleaned = str(barcode).strip()
    return cleaned or None


def is_anonymous_recipient(recipient_code: str | None) -> bool:
    if recipient_code is None or not recipient_code.strip():
        return True
    return recipient_code.strip() in ANONYMOUS_RECIPIENT_CODES


def normalize_expiration(value: date | datetime | str | None) -> date | None:
    """
    Normalize an expiration input to a UTC calendar date.

    Accepts ``date``, ``datetime`` (aware or naive-as-UTC), an ISO-8601
    string, or None / "" for "never expires".

    Raises:
        ValidationError: If a string cannot be parsed as a date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("expiration_date", f"cannot parse {value!r} as a date") from None
    return normalize_expiration(parsed)


def expiration_key(expiration: date | None) -> str:
    """Storage form of the expiration part of the Lot identity key."""
    return expiration.isoformat() if expiration is not None else ""


def parse_quantity(value: object, field: str = "quantity") -> Decimal:
    """
    Strictly parse a positive, finite quantity (rounded to 3 places).

    Raises:
        InvalidQuantityError: On None, non-numeric, NaN, infinite, or a
            value that rounds to <= 0.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQuantityError(value, field)
    try:
        qty = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise InvalidQuantityError(value, field) from None
    if not qty.is_finite():
        raise InvalidQuantityError(value, field)
    qty = round_quantity(qty)
    if qty <= 0:
        raise InvalidQuantityError(value, field)
    return qty


def coerce_decimal(value: object, default: Decimal = Decimal("0")) -> Decimal:
    """
    Leniently coerce a number for metric computation.

    Missing, non-numeric, NaN and infinite inputs become ``default``; this
    never raises and never returns NaN.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        return Decimal(str(value))
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def require_text(value: str | None, field: str) -> str:
    """Return the stripped value, or raise MissingFieldError when blank."""
    if value is None or not str(value).strip():
        raise MissingFieldError(field)
    return str(value).strip()


@dataclass(frozen=True)
class ProductKey:
    """
    Identifies a Product Group: all Lots sharing a barcode, or a name when
    the product has no barcode.
    """

    barcode: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if not self.barcode and not self.name:
            raise MissingFieldError("product_key")

    @classmethod
    def for_barcode(cls, barcode: str) -> "ProductKey":
        return cls(barcode=barcode)

    @classmethod
    def for_name(cls, name: str) -> "ProductKey":
        return cls(name=name)
