"""
Typed Exception Hierarchy for the Pantry Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The presentation layer reacts differently to each kind of rejection: an
inline form error, an upgrade prompt, or a retry banner.  Parsing message
strings for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a CATEGORY attribute (validation / quota /
     not_found / storage) that maps onto the presentation behavior
  4. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        lots.ingest_lot(tenant_id, name="Rice", category="grains", quantity=5)
    except QuotaExceededError as e:
        show_upgrade_prompt(resource=e.resource, limit=e.limit)
    except ValidationError as e:
        show_inline_error(field=e.field, code=e.code)
    except StorageUnavailableError:
        show_retry_banner()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PantryKernelError (base)
    |
    +-- ValidationError                 category=validation
    |   +-- MissingFieldError
    |   +-- InvalidQuantityError
    |   +-- InvalidUnitError
    |   +-- InsufficientStockError
    |   +-- LotKeyConflictError
    |   +-- EmptyCartError
    |
    +-- QuotaExceededError              category=quota
    |
    +-- NotFoundError                   category=not_found
    |   +-- LotNotFoundError
    |   +-- RecipientNotFoundError
    |   +-- TenantQuotaNotFoundError
    |
    +-- StorageUnavailableError         category=storage (retryable)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                   | When Raised
------------|------------------------|--------------------------------------------
Validation  | INVALID_INPUT          | Generic bad input, rejected pre-write
            | MISSING_FIELD          | name / category / recipient id absent
            | INVALID_QUANTITY       | quantity <= 0, NaN or infinite
            | INVALID_UNIT           | unit not in {units, lbs, kg, oz}
            | INSUFFICIENT_STOCK     | line asks for more than the Lot holds
            | LOT_KEY_CONFLICT       | edit collides with another Lot's key
            | EMPTY_CART             | checkout without lines
------------|------------------------|--------------------------------------------
Quota       | LIMIT_REACHED          | tier ceiling met on a creation event
------------|------------------------|--------------------------------------------
Not found   | LOT_NOT_FOUND          | Lot id absent for the tenant
            | RECIPIENT_NOT_FOUND    | recipient profile absent
            | TENANT_QUOTA_NOT_FOUND | tenant has no quota ledger row
------------|------------------------|--------------------------------------------
Storage     | STORAGE_UNAVAILABLE    | backend timeout / connection failure

PartialCheckoutFailure is NOT an exception: a checkout where some lines
failed returns a CheckoutResult whose ``is_partial`` flag is set.
"""


class PantryKernelError(Exception):
    """
    Base exception for all pantry kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification and a `category` for presentation routing.
    """

    code: str = "PANTRY_KERNEL_ERROR"
    category: str = "internal"
    retryable: bool = False


# Validation


class ValidationError(PantryKernelError):
    """Bad input, rejected before any storage write."""

    code: str = "INVALID_INPUT"
    category: str = "validation"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class MissingFieldError(ValidationError):
    """A required field is absent or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        super().__init__(field, "is required")


class InvalidQuantityError(ValidationError):
    """Quantity is not a finite positive number."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, field: str = "quantity"):
        self.value = str(value)
        super().__init__(field, f"must be a finite number greater than zero, got {value!r}")


class InvalidUnitError(ValidationError):
    """Unit is not one of the supported measures."""

    code: str = "INVALID_UNIT"

    def __init__(self, unit: object, allowed: tuple[str, ...]):
        self.unit = str(unit)
        self.allowed = list(allowed)
        super().__init__("unit", f"{unit!r} is not one of {', '.join(allowed)}")


class InsufficientStockError(ValidationError):
    """A line requests more than the Lot currently holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, lot_id: str, requested: str, available: str):
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        super().__init__(
            "quantity",
            f"lot {lot_id} holds {available}, cannot distribute {requested}",
        )


class LotKeyConflictError(ValidationError):
    """Edit would give a Lot the identity key of another Lot."""

    code: str = "LOT_KEY_CONFLICT"

    def __init__(self, lot_id: str, barcode: str | None, expiration_key: str):
        self.lot_id = lot_id
        self.barcode = barcode
        self.expiration_key = expiration_key
        super().__init__(
            "barcode",
            f"another lot already holds barcode {barcode} "
            f"with expiration {expiration_key or 'none'}",
        )


class EmptyCartError(ValidationError):
    """Checkout called without any lines."""

    code: str = "EMPTY_CART"

    def __init__(self):
        super().__init__("lines", "cart has no lines")


# Quota


class QuotaExceededError(PantryKernelError):
    """
    Tier ceiling reached on a creation event.

    No retry expected; the caller should present an upgrade path.
    """

    code: str = "LIMIT_REACHED"
    category: str = "quota"

    def __init__(self, tenant_id: str, resource: str, limit: int, current: int, tier: str):
        self.tenant_id = tenant_id
        self.resource = resource
        self.limit = limit
        self.current = current
        self.tier = tier
        super().__init__(
            f"Limit reached for {resource} on {tier} plan ({current}/{limit})"
        )


# Not found


class NotFoundError(PantryKernelError):
    """Referenced entity absent; no state changed."""

    code: str = "NOT_FOUND"
    category: str = "not_found"


class LotNotFoundError(NotFoundError):
    """Lot with given id was not found for the tenant."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class RecipientNotFoundError(NotFoundError):
    """Recipient profile was not found for the tenant."""

    code: str = "RECIPIENT_NOT_FOUND"

    def __init__(self, recipient_code: str):
        self.recipient_code = recipient_code
        super().__init__(f"Recipient not found: {recipient_code}")


class TenantQuotaNotFoundError(NotFoundError):
    """Tenant has no row in the quota ledger."""

    code: str = "TENANT_QUOTA_NOT_FOUND"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"No quota ledger for tenant {tenant_id}")


# Storage


class StorageUnavailableError(PantryKernelError):
    """Transient backend failure.  Retry policy is owned by the caller."""

    code: str = "STORAGE_UNAVAILABLE"
    category: str = "storage"
    retryable: bool = True

    def __init__(self, store: str, operation: str, detail: str = ""):
        self.store = store
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Storage '{store}' unavailable during {operation}"
            + (f": {detail}" if detail else "")
        )
