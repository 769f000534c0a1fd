"""
LotService -- the Lot Store: merge-or-create ingestion, edits, removals and
the guarded withdrawal used by checkout.

Responsibility:
    Owns every write to the ``lots`` table.  Stock comes in through
    ``ingest_lot`` (restock an existing Lot or create a new one), goes out
    through ``withdraw`` (one checkout line) or ``delete_lot`` (manual
    removal), and is corrected through ``update_lot``.

Architecture position:
    Kernel > Services.  Inventory store.  Calls the quota gatekeeper before
    a Lot is created, and fans out best-effort side effects (quota counter,
    barcode cache, audit log) after its own transaction has committed.

Invariants enforced:
    - Merge law: ingestion of an existing (tenant, barcode, expiration) key
      is a single ``UPDATE ... SET quantity = quantity + :d`` statement.  A
      missing row is inserted inside a savepoint; losing the unique-index
      race rolls back the savepoint and retries the increment, so
      concurrent restocks never lose an update and never create two Lots.
    - Positive stock: a withdrawal is a single guarded
      ``UPDATE ... SET quantity = quantity - :q WHERE quantity >= :q``.  If
      the result is <= 0 the Lot is deleted in the same transaction.
    - Quantities are rounded to 3 decimal places in the UPDATE itself.
    - Exactly one quota item increment per brand-new Lot.

Failure modes:
    - ValidationError subclasses before any write (missing name/category,
      bad quantity or unit, unparseable expiration).
    - QuotaExceededError before any write when a new Lot would pass the
      item ceiling of a constrained tier.
    - LotNotFoundError, InsufficientStockError, LotKeyConflictError.
    - StorageUnavailableError when the inventory store is unreachable.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pantry_kernel.db.types import QUANTITY_DECIMAL_PLACES, round_quantity
from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import LotSnapshot, RemovalMetadata
from pantry_kernel.domain.values import (
    ANONYMOUS_RECIPIENT_CODE,
    ActionType,
    Unit,
    clean_barcode,
    expiration_key,
    generate_internal_barcode,
    normalize_expiration,
    parse_quantity,
    require_text,
)
from pantry_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    LotKeyConflictError,
    LotNotFoundError,
    ValidationError,
)
from pantry_kernel.logging_config import LogContext, get_logger
from pantry_kernel.models.distribution import DistributionRecord
from pantry_kernel.models.lot import Lot
from pantry_kernel.services.audit_service import AuditLogService
from pantry_kernel.services.barcode_cache_service import BarcodeCacheService
from pantry_kernel.services.base import BaseService
from pantry_kernel.services.quota_service import QuotaGatekeeper, QuotaLedger, QuotaResource
from pantry_kernel.services.side_effects import SideEffects

logger = get_logger("services.lot")

ZERO = Decimal("0")

DELETED_REASON = "deleted"

# Fields update_lot accepts
EDITABLE_FIELDS = frozenset(
    {
        "name",
        "category",
        "quantity",
        "unit",
        "barcode",
        "expiration_date",
        "storage_location",
        "notes",
    }
)


@dataclass(frozen=True)
class DistributionTarget:
    """Who a withdrawal goes to, as written on the DistributionRecord."""

    recipient_code: str
    recipient_name: str
    reason: str
    unit: Unit | None = None


@dataclass(frozen=True)
class Withdrawal:
    """
    Committed outcome of one guarded withdrawal.

    ``lot`` is the Lot as it stood before the withdrawal.
    """

    lot: LotSnapshot
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    lot_deleted: bool
    distribution_record_id: UUID | None


def _rounded(expr):
    return func.round(expr, QUANTITY_DECIMAL_PLACES)


def record_distribution_in(
    session: Session,
    *,
    tenant_id: str,
    lot: LotSnapshot,
    quantity: Decimal,
    target: DistributionTarget,
    at: datetime,
) -> UUID:
    """Insert one DistributionRecord in the caller's transaction (flush only)."""
    record = DistributionRecord(
        tenant_id=tenant_id,
        recipient_code=target.recipient_code,
        recipient_name=target.recipient_name,
        item_id=lot.lot_id,
        item_name=lot.name,
        category=lot.category,
        quantity_distributed=round_quantity(quantity),
        unit=(target.unit or lot.unit).value,
        reason=target.reason,
        distributed_at=at,
    )
    session.add(record)
    session.flush()
    return record.id


class LotService(BaseService):
    """
    Lot lifecycle: create on first ingestion, mutate by +/- quantity,
    destroy at zero.

    Contract:
        Every public operation takes ``tenant_id`` explicitly and touches
        only that tenant's rows.
    Guarantees:
        - No read-modify-write of ``quantity`` on the ingestion and
          withdrawal paths.
        - Side-effect failures never undo a committed mutation.
    Non-goals:
        - Does not order or choose Lots for a distribution; see
          AllocationService.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gatekeeper: QuotaGatekeeper,
        ledger: QuotaLedger,
        barcode_cache: BarcodeCacheService,
        audit: AuditLogService,
        clock: Clock | None = None,
        side_effects: SideEffects | None = None,
    ):
        super().__init__(session_factory, clock)
        self._gatekeeper = gatekeeper
        self._ledger = ledger
        self._barcode_cache = barcode_cache
        self._audit = audit
        self._side_effects = side_effects or SideEffects()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_lot(
        self,
        tenant_id: str,
        *,
        name: str,
        category: str,
        quantity: Decimal | int | str,
        unit: Unit | str | None = Unit.UNITS,
        barcode: str | None = None,
        expiration_date: date | datetime | str | None = None,
        storage_location: str = "",
        notes: str = "",
    ) -> LotSnapshot:
        """
        Add stock: restock the Lot with the same identity key, or create one.

        Preconditions:
            - name and category non-blank, quantity > 0 and finite, unit in
              {units, lbs, kg, oz}.
        Postconditions:
            - Exactly one Lot holds the key, with quantity increased by the
              ingested amount.
            - One ``added`` audit entry (best-effort).
        Raises:
            ValidationError: on bad input; nothing written.
            QuotaExceededError: new Lot on a tenant at its item ceiling.
        """
        name = require_text(name, "name")
        category = require_text(category, "category")
        qty = parse_quantity(quantity)
        lot_unit = Unit.parse(unit)
        expiration = normalize_expiration(expiration_date)
        key = expiration_key(expiration)
        code = clean_barcode(barcode) or generate_internal_barcode()
        location = (storage_location or "").strip()

        with LogContext.bind(tenant_id=tenant_id, operation="ingest_lot"):
            refresh = {
                "name": name,
                "category": category,
                "storage_location": location,
            }
            with self._transaction("lot.restock") as session:
                lot = self._increment_in(session, tenant_id, code, key, qty, refresh)

            created = False
            if lot is None:
                self._gatekeeper.check_can_create(tenant_id, QuotaResource.ITEMS)
                lot, created = self._create_or_increment(
                    tenant_id,
                    code=code,
                    key=key,
                    qty=qty,
                    refresh=refresh,
                    unit=lot_unit,
                    expiration=expiration,
                    notes=notes or "",
                )

            previous = ZERO if created else round_quantity(lot.quantity - qty)
            logger.info(
                "lot_created" if created else "lot_restocked",
                extra={
                    "lot_id": str(lot.lot_id),
                    "barcode": code,
                    "expiration_key": key,
                    "delta": str(qty),
                    "quantity": str(lot.quantity),
                },
            )

            if created:
                self._side_effects.run(
                    "quota.increment_items",
                    self._ledger.increment,
                    tenant_id,
                    QuotaResource.ITEMS,
                )
            self._side_effects.run(
                "barcode_cache.remember",
                self._barcode_cache.remember,
                tenant_id,
                code,
                name=name,
                category=category,
                storage_location=location,
            )
            self._audit.record_best_effort(
                tenant_id,
                ActionType.ADDED,
                lot,
                previous_quantity=previous,
                new_quantity=lot.quantity,
                quantity_changed=qty,
            )
        return lot

    def _increment_in(
        self,
        session: Session,
        tenant_id: str,
        barcode: str,
        key: str,
        qty: Decimal,
        refresh: dict[str, Any],
    ) -> LotSnapshot | None:
        """Atomic find-and-increment on the identity key; None when no Lot matches."""
        lot = session.scalars(
            update(Lot)
            .where(
                Lot.tenant_id == tenant_id,
                Lot.barcode == barcode,
                Lot.expiration_key == key,
            )
            .values(
                quantity=_rounded(Lot.quantity + qty),
                last_modified=self._clock.now(),
                **refresh,
            )
            .returning(Lot)
            .execution_options(populate_existing=True)
        ).one_or_none()
        return LotSnapshot.from_model(lot) if lot is not None else None

    def _create_or_increment(
        self,
        tenant_id: str,
        *,
        code: str,
        key: str,
        qty: Decimal,
        refresh: dict[str, Any],
        unit: Unit,
        expiration: date | None,
        notes: str,
    ) -> tuple[LotSnapshot, bool]:
        with self._transaction("lot.create") as session:
            # Created by someone else since the first attempt
            lot = self._increment_in(session, tenant_id, code, key, qty, refresh)
            if lot is not None:
                return lot, False

            savepoint = session.begin_nested()
            try:
                row = Lot(
                    tenant_id=tenant_id,
                    quantity=qty,
                    unit=unit.value,
                    barcode=code,
                    expiration_date=expiration,
                    expiration_key=key,
                    notes=notes,
                    last_modified=self._clock.now(),
                    **refresh,
                )
                session.add(row)
                session.flush()
                savepoint.commit()
                return LotSnapshot.from_model(row), True
            except IntegrityError:
                logger.debug(
                    "lot_create_race_retry",
                    extra={"barcode": code, "expiration_key": key},
                )
                savepoint.rollback()
                lot = self._increment_in(session, tenant_id, code, key, qty, refresh)
                if lot is None:
                    raise
                return lot, False

    # ------------------------------------------------------------------
    # Withdrawal (checkout line)
    # ------------------------------------------------------------------

    def withdraw(
        self,
        tenant_id: str,
        lot_id: UUID,
        quantity: Decimal | int | str,
        target: DistributionTarget,
    ) -> Withdrawal:
        """
        Take ``quantity`` out of one Lot and record who it went to, in ONE
        inventory transaction.

        Raises:
            InvalidQuantityError: quantity not > 0.
            LotNotFoundError: no such Lot for the tenant.
            InsufficientStockError: the Lot holds less than ``quantity``.
        """
        qty = parse_quantity(quantity)
        now = self._clock.now()
        with self._transaction("lot.withdraw") as session:
            after = session.scalars(
                update(Lot)
                .where(
                    Lot.id == lot_id,
                    Lot.tenant_id == tenant_id,
                    Lot.quantity >= qty,
                )
                .values(quantity=_rounded(Lot.quantity - qty), last_modified=now)
                .returning(Lot)
                .execution_options(populate_existing=True)
            ).one_or_none()

            if after is None:
                current = session.execute(
                    select(Lot.quantity).where(Lot.id == lot_id, Lot.tenant_id == tenant_id)
                ).scalar_one_or_none()
                if current is None:
                    raise LotNotFoundError(str(lot_id))
                raise InsufficientStockError(str(lot_id), str(qty), str(current))

            remaining = round_quantity(after.quantity)
            before = LotSnapshot.from_model(after)
            before = _with_quantity(before, round_quantity(remaining + qty))

            deleted = remaining <= ZERO
            if deleted:
                session.execute(delete(Lot).where(Lot.id == lot_id, Lot.tenant_id == tenant_id))
                remaining = ZERO

            record_id = record_distribution_in(
                session,
                tenant_id=tenant_id,
                lot=before,
                quantity=qty,
                target=target,
                at=now,
            )

        logger.info(
            "lot_withdrawn",
            extra={
                "lot_id": str(lot_id),
                "quantity": str(qty),
                "remaining": str(remaining),
                "lot_deleted": deleted,
            },
        )
        return Withdrawal(
            lot=before,
            quantity=qty,
            previous_quantity=before.quantity,
            new_quantity=remaining,
            lot_deleted=deleted,
            distribution_record_id=record_id,
        )

    # ------------------------------------------------------------------
    # Manual removal and edits
    # ------------------------------------------------------------------

    def delete_lot(
        self,
        tenant_id: str,
        lot_id: UUID,
        removal: RemovalMetadata | None = None,
    ) -> None:
        """
        Remove a Lot outright.

        With removal metadata naming a recipient, the removal is recorded as
        a distribution (DistributionRecord plus a ``distributed`` audit
        entry).  Otherwise a ``deleted`` audit entry is written.

        An unparseable ``removed_quantity`` means the whole Lot.

        Raises:
            LotNotFoundError: no such Lot for the tenant.
            InvalidQuantityError: ``removed_quantity`` exceeds the Lot (same
                unit); nothing is deleted.
        """
        removal = removal or RemovalMetadata()
        requested = None
        if removal.removed_quantity not in (None, ""):
            try:
                requested = parse_quantity(removal.removed_quantity, "removed_quantity")
            except InvalidQuantityError:
                pass
        removal_unit = Unit.parse(removal.unit) if removal.unit else None
        now = self._clock.now()
        with LogContext.bind(tenant_id=tenant_id, operation="delete_lot"):
            with self._transaction("lot.delete") as session:
                current = session.execute(
                    select(Lot).where(Lot.id == lot_id, Lot.tenant_id == tenant_id)
                ).scalar_one_or_none()
                if current is None:
                    raise LotNotFoundError(str(lot_id))
                metric_unit = removal_unit or Unit(current.unit)
                if (
                    requested is not None
                    and metric_unit.value == current.unit
                    and requested > current.quantity
                ):
                    raise InvalidQuantityError(requested, "removed_quantity")

                lot = LotSnapshot.from_model(current)
                session.execute(
                    delete(Lot)
                    .where(Lot.id == lot_id, Lot.tenant_id == tenant_id)
                    .execution_options(synchronize_session=False)
                )
                removed = requested if requested is not None else lot.quantity

                if removal.has_recipient:
                    target = DistributionTarget(
                        recipient_code=(removal.recipient_code or "").strip() or ANONYMOUS_RECIPIENT_CODE,
                        recipient_name=removal.recipient_name.strip(),
                        reason=removal.reason or DELETED_REASON,
                        unit=metric_unit,
                    )
                    record_distribution_in(
                        session,
                        tenant_id=tenant_id,
                        lot=lot,
                        quantity=removed,
                        target=target,
                        at=now,
                    )

            logger.info(
                "lot_deleted",
                extra={"lot_id": str(lot_id), "distributed": removal.has_recipient},
            )
            self._audit.record_best_effort(
                tenant_id,
                ActionType.DISTRIBUTED if removal.has_recipient else ActionType.DELETED,
                lot,
                previous_quantity=lot.quantity,
                new_quantity=ZERO,
                quantity_changed=removed,
                metric_unit=metric_unit,
                reason=removal.reason or "",
                recipient_name=(removal.recipient_name or "").strip(),
                recipient_code=(removal.recipient_code or "").strip(),
                household_size=removal.household_size or 1,
            )

    def update_lot(self, tenant_id: str, lot_id: UUID, /, **fields: Any) -> LotSnapshot:
        """
        Edit a Lot's attributes.

        Accepts any of: name, category, quantity (absolute, must stay > 0),
        unit, barcode, expiration_date, storage_location, notes.  Records an
        ``updated`` audit entry with an {field: {"old", "new"}} diff when
        anything changed.

        Raises:
            ValidationError: unknown field, blank name/category, bad quantity
                or unit.
            LotKeyConflictError: new barcode/expiration collides with
                another Lot of the tenant.
            LotNotFoundError: no such Lot for the tenant.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "is not an editable lot field")

        values = self._normalize_edit(fields)

        with LogContext.bind(tenant_id=tenant_id, operation="update_lot"):
            with self._transaction("lot.update") as session:
                row = session.execute(
                    select(Lot)
                    .where(Lot.id == lot_id, Lot.tenant_id == tenant_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    raise LotNotFoundError(str(lot_id))

                before = LotSnapshot.from_model(row)
                changes = {
                    name: {"old": _jsonable(getattr(before, name)), "new": _jsonable(value)}
                    for name, value in values.items()
                    if _comparable(getattr(before, name)) != _comparable(value)
                }
                if not changes:
                    return before

                new_barcode = values.get("barcode", before.barcode)
                new_key = expiration_key(values.get("expiration_date", before.expiration_date))

                # Key changes reach the database only inside the savepoint
                savepoint = session.begin_nested()
                try:
                    for name, value in values.items():
                        if name == "unit":
                            value = value.value
                        setattr(row, name, value)
                    row.expiration_key = new_key
                    row.last_modified = self._clock.now()
                    session.flush()
                    savepoint.commit()
                except IntegrityError:
                    savepoint.rollback()
                    logger.warning(
                        "lot_key_conflict",
                        extra={"lot_id": str(lot_id), "barcode": new_barcode},
                    )
                    raise LotKeyConflictError(str(lot_id), new_barcode, new_key) from None
                after = LotSnapshot.from_model(row)

            logger.info("lot_updated", extra={"lot_id": str(lot_id), "fields": sorted(changes)})
            self._audit.record_best_effort(
                tenant_id,
                ActionType.UPDATED,
                after,
                previous_quantity=before.quantity,
                new_quantity=after.quantity,
                changes=changes,
            )
        return after

    def _normalize_edit(self, fields: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name, raw in fields.items():
            if name in ("name", "category"):
                values[name] = require_text(raw, name)
            elif name == "quantity":
                values[name] = parse_quantity(raw)
            elif name == "unit":
                values[name] = Unit.parse(raw)
            elif name == "barcode":
                values[name] = clean_barcode(raw) or generate_internal_barcode()
            elif name == "expiration_date":
                values[name] = normalize_expiration(raw)
            else:
                values[name] = "" if raw is None else str(raw).strip()
        return values


def _with_quantity(lot: LotSnapshot, quantity: Decimal) -> LotSnapshot:
    return replace(lot, quantity=quantity)


def _comparable(value: Any) -> Any:
    if isinstance(value, Unit):
        return value.value
    if isinstance(value, Decimal):
        return round_quantity(value)
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, Unit):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
