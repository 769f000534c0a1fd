"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the service boundary: Lot snapshots,
    barcode lookups, checkout inputs (recipient spec, cart lines, removal
    metadata) and outputs (per-line outcomes, CheckoutResult), audit and
    distribution views, impact summaries and quota counters.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model`` class methods are
    boundary converters invoked only from services and selectors.

Invariants enforced:
    - Services and selectors return DTOs, never ORM instances, so callers
      cannot mutate persisted state by accident.
    - CheckoutResult: every line number appears in exactly one of
      ``succeeded`` / ``failed``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pantry_kernel.domain.values import (
    ADJUSTMENT_RECIPIENT_NAME,
    ANONYMOUS_RECIPIENT_CODE,
    ANONYMOUS_RECIPIENT_NAME,
    Unit,
    is_anonymous_recipient,
)

if TYPE_CHECKING:
    from pantry_kernel.models.audit_entry import AuditEntry
    from pantry_kernel.models.distribution import DistributionRecord
    from pantry_kernel.models.lot import BarcodeCacheEntry, Lot
    from pantry_kernel.models.quota import TenantQuota
    from pantry_kernel.models.recipient import Recipient


# ---------------------------------------------------------------------------
# Lots and barcode lookup
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LotSnapshot:
    """Read-only copy of a Lot row."""

    lot_id: UUID
    tenant_id: str
    name: str
    category: str
    quantity: Decimal
    unit: Unit
    barcode: str | None
    expiration_date: date | None
    storage_location: str = ""
    notes: str = ""
    last_modified: datetime | None = None

    @classmethod
    def from_model(cls, lot: "Lot") -> "LotSnapshot":
        return cls(
            lot_id=lot.id,
            tenant_id=lot.tenant_id,
            name=lot.name,
            category=lot.category,
            quantity=lot.quantity,
            unit=Unit(lot.unit),
            barcode=lot.barcode,
            expiration_date=lot.expiration_date,
            storage_location=lot.storage_location or "",
            notes=lot.notes or "",
            last_modified=lot.last_modified,
        )

    def as_item_snapshot(self) -> dict[str, Any]:
        """JSON-safe item description stored on audit entries."""
        return {
            "lot_id": str(self.lot_id),
            "name": self.name,
            "category": self.category,
            "unit": self.unit.value,
            "barcode": self.barcode,
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
            "storage_location": self.storage_location,
        }


class LookupSource(str, Enum):
    """Where a barcode lookup was answered from."""

    CACHE = "cache"
    LIVE_LOT = "live_lot"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class BarcodeLookup:
    """Result of ``lookup_barcode``: cache entry, live Lot match, or nothing."""

    barcode: str
    source: LookupSource
    name: str | None = None
    category: str | None = None
    storage_location: str | None = None
    lot_id: UUID | None = None

    @property
    def found(self) -> bool:
        return self.source is not LookupSource.NOT_FOUND

    @classmethod
    def from_cache(cls, entry: "BarcodeCacheEntry") -> "BarcodeLookup":
        return cls(
            barcode=entry.barcode,
            source=LookupSource.CACHE,
            name=entry.name,
            category=entry.category,
            storage_location=entry.storage_location,
        )

    @classmethod
    def from_lot(cls, lot: "Lot") -> "BarcodeLookup":
        return cls(
            barcode=lot.barcode or "",
            source=LookupSource.LIVE_LOT,
            name=lot.name,
            category=lot.category,
            storage_location=lot.storage_location,
            lot_id=lot.id,
        )

    @classmethod
    def not_found(cls, barcode: str) -> "BarcodeLookup":
        return cls(barcode=barcode, source=LookupSource.NOT_FOUND)


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecipientSpec:
    """
    Who a checkout is for.

    ``recipient_code`` None, "SYS" or "anonymous" is the anonymous sentinel;
    anonymous checkouts never create a profile and never count against the
    family ceiling.
    """

    recipient_code: str | None = None
    first_name: str = ""
    last_name: str = ""
    household_size: int | None = None
    address: str | None = None
    email: str | None = None
    phone: str | None = None

    @classmethod
    def anonymous(cls) -> "RecipientSpec":
        return cls(recipient_code=None)

    @classmethod
    def adjustment(cls) -> "RecipientSpec":
        """Stock written off with no household behind it."""
        return cls(recipient_code=ANONYMOUS_RECIPIENT_CODE, first_name=ADJUSTMENT_RECIPIENT_NAME)

    @property
    def is_anonymous(self) -> bool:
        return is_anonymous_recipient(self.recipient_code)

    @property
    def code(self) -> str:
        if self.is_anonymous:
            return ANONYMOUS_RECIPIENT_CODE
        return self.recipient_code.strip()

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        if full:
            return full
        return ANONYMOUS_RECIPIENT_NAME if self.is_anonymous else self.code


@dataclass(frozen=True)
class RecipientView:
    recipient_id: UUID
    tenant_id: str
    recipient_code: str
    first_name: str
    last_name: str
    household_size: int
    address: str
    email: str | None
    phone: str | None
    is_active: bool
    last_visit: datetime | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, recipient: "Recipient") -> "RecipientView":
        return cls(
            recipient_id=recipient.id,
            tenant_id=recipient.tenant_id,
            recipient_code=recipient.recipient_code,
            first_name=recipient.first_name,
            last_name=recipient.last_name or "",
            household_size=recipient.household_size,
            address=recipient.address or "",
            email=recipient.email,
            phone=recipient.phone,
            is_active=recipient.is_active,
            last_visit=recipient.last_visit,
            created_at=recipient.created_at,
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class RecipientUpsert:
    """Outcome of the profile upsert done at the start of a checkout."""

    recipient: RecipientView | None
    created: bool

    @property
    def household_size(self) -> int:
        return self.recipient.household_size if self.recipient else 1


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

DEFAULT_DISTRIBUTION_REASON = "distribution-regular"


@dataclass(frozen=True)
class CartLine:
    """
    One line of a checkout cart.

    ``unit`` overrides the Lot's unit for impact metrics (a line can hand out
    16 oz of an item counted in ``units``).
    """

    lot_id: UUID
    quantity: Decimal | int | str
    reason: str = DEFAULT_DISTRIBUTION_REASON
    unit: Unit | str | None = None


@dataclass(frozen=True)
class RemovalMetadata:
    """Optional metadata turning a manual Lot removal into a distribution."""

    recipient_name: str | None = None
    recipient_code: str | None = None
    reason: str | None = None
    removed_quantity: Decimal | int | str | None = None
    unit: Unit | str | None = None
    household_size: int | None = None

    @property
    def has_recipient(self) -> bool:
        return bool(self.recipient_name and self.recipient_name.strip())


@dataclass(frozen=True)
class LineSuccess:
    line_number: int
    lot_id: UUID
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    lot_deleted: bool
    distribution_record_id: UUID


@dataclass(frozen=True)
class LineFailure:
    line_number: int
    lot_id: UUID | None
    code: str
    category: str
    message: str
    retryable: bool = False


@dataclass(frozen=True)
class CheckoutResult:
    """
    Per-line outcome of ``commit_distribution``.

    A result with both successes and failures is the PartialCheckoutFailure
    case: reported as data, never raised.
    """

    tenant_id: str
    recipient_code: str
    recipient_created: bool
    succeeded: tuple[LineSuccess, ...] = field(default_factory=tuple)
    failed: tuple[LineFailure, ...] = field(default_factory=tuple)

    @property
    def succeeded_lines(self) -> list[int]:
        return [s.line_number for s in self.succeeded]

    @property
    def failed_lines(self) -> list[int]:
        return [f.line_number for f in self.failed]

    @property
    def distribution_record_ids(self) -> list[UUID]:
        return [s.distribution_record_id for s in self.succeeded]

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


# ---------------------------------------------------------------------------
# Audit / distribution read side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImpactMetrics:
    """Derived reporting metrics attached to every audit entry."""

    people_served: int = 0
    estimated_value: Decimal = Decimal("0.00")
    standardized_weight: Decimal = Decimal("0.00")
    waste_diverted: bool = False


@dataclass(frozen=True)
class AuditEntryView:
    entry_id: UUID
    tenant_id: str
    action_type: str
    item_id: UUID | None
    item_name: str
    category: str
    item_snapshot: dict[str, Any]
    changes: dict[str, Any] | None
    previous_quantity: Decimal
    quantity_changed: Decimal
    new_quantity: Decimal
    unit: str
    distribution_reason: str
    recipient_name: str
    recipient_code: str
    impact: ImpactMetrics
    tags: tuple[str, ...]
    timestamp: datetime

    @classmethod
    def from_model(cls, entry: "AuditEntry") -> "AuditEntryView":
        return cls(
            entry_id=entry.id,
            tenant_id=entry.tenant_id,
            action_type=entry.action_type,
            item_id=entry.item_id,
            item_name=entry.item_name,
            category=entry.category,
            item_snapshot=dict(entry.item_snapshot or {}),
            changes=dict(entry.changes) if entry.changes else None,
            previous_quantity=entry.previous_quantity,
            quantity_changed=entry.quantity_changed,
            new_quantity=entry.new_quantity,
            unit=entry.unit,
            distribution_reason=entry.distribution_reason or "",
            recipient_name=entry.recipient_name or "",
            recipient_code=entry.recipient_code or "",
            impact=ImpactMetrics(
                people_served=entry.people_served,
                estimated_value=entry.estimated_value,
                standardized_weight=entry.standardized_weight,
                waste_diverted=entry.waste_diverted,
            ),
            tags=tuple(entry.tags or ()),
            timestamp=entry.timestamp,
        )


@dataclass(frozen=True)
class DistributionView:
    record_id: UUID
    tenant_id: str
    recipient_code: str
    recipient_name: str
    item_id: UUID | None
    item_name: str
    category: str
    quantity_distributed: Decimal
    unit: str
    reason: str
    distributed_at: datetime

    @classmethod
    def from_model(cls, record: "DistributionRecord") -> "DistributionView":
        return cls(
            record_id=record.id,
            tenant_id=record.tenant_id,
            recipient_code=record.recipient_code,
            recipient_name=record.recipient_name,
            item_id=record.item_id,
            item_name=record.item_name,
            category=record.category,
            quantity_distributed=record.quantity_distributed,
            unit=record.unit,
            reason=record.reason,
            distributed_at=record.distributed_at,
        )


@dataclass(frozen=True)
class ImpactSummary:
    """Totals over ``distributed`` audit entries for reporting."""

    tenant_id: str
    distribution_count: int
    quantity_distributed: Decimal
    people_served: int
    standardized_weight: Decimal
    estimated_value: Decimal
    since: datetime | None = None


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuotaCounters:
    tenant_id: str
    tier: str
    total_items_created: int
    total_families_created: int
    max_items_limit: int
    max_clients_limit: int
    max_users_limit: int

    @classmethod
    def from_model(cls, row: "TenantQuota") -> "QuotaCounters":
        return cls(
            tenant_id=row.tenant_id,
            tier=row.tier,
            total_items_created=row.total_items_created,
            total_families_created=row.total_families_created,
            max_items_limit=row.max_items_limit,
            max_clients_limit=row.max_clients_limit,
            max_users_limit=row.max_users_limit,
        )
