"""
Module: pantry_engines.allocation
Responsibility:
    Plan which Lots of a Product Group a distribution should draw from,
    soonest-expiring first (FIFO by expiration), and flag plans that would
    hand out expired stock.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pantry_kernel/domain and pantry_kernel/db/types.

Invariants enforced:
    - FIFO order: ascending expiration date, Lots without expiration last,
      ties broken by name then lot id, so the order is total and stable.
    - No over-proposal: a line never proposes more than the Lot's quantity
      minus what the caller already reserved for it.
    - Conservation: sum(proposed) + shortfall == requested.
    - Purity: no clock access.  ``as_of`` (today, UTC) is passed in.
    - Never mutates the Lots it is given.

Failure modes:
    - InvalidQuantityError on a requested quantity that is not > 0.
    - LotNotFoundError when a manual pick names a Lot outside the group.

Usage:
    from pantry_engines.allocation import AllocationEngine

    engine = AllocationEngine()
    plan = engine.plan(lots=lots, requested_quantity=Decimal("4"), as_of=today)
    for line in plan.lines:
        print(line.lot_id, line.proposed_quantity, line.is_expired)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from pantry_engines.tracer import traced_engine
from pantry_kernel.db.types import round_quantity
from pantry_kernel.domain.dtos import LotSnapshot
from pantry_kernel.domain.values import parse_quantity
from pantry_kernel.exceptions import LotNotFoundError
from pantry_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

ZERO = Decimal("0")
SINGLE_UNIT = Decimal("1")


@dataclass(frozen=True)
class AllocationLine:
    """
    Proposed draw from one Lot.

    Guarantees:
        - 0 < proposed_quantity <= available_quantity.
        - ``is_expired`` is True when expiration_date < as_of.
    """

    lot_id: UUID
    name: str
    available_quantity: Decimal
    proposed_quantity: Decimal
    expiration_date: date | None
    is_expired: bool


@dataclass(frozen=True)
class AllocationPlan:
    """
    Outcome of a planning run.

    Contract:
        Advisory only.  Nothing is reserved; the Distribution Coordinator
        re-checks stock atomically when the cart is committed.
    Guarantees:
        - ``lines`` are in FIFO order.
        - total_proposed + shortfall == requested_quantity.
    """

    requested_quantity: Decimal
    lines: tuple[AllocationLine, ...]
    shortfall: Decimal
    as_of: date

    @property
    def total_proposed(self) -> Decimal:
        return sum((line.proposed_quantity for line in self.lines), ZERO)

    @property
    def is_satisfied(self) -> bool:
        return self.shortfall == ZERO

    @property
    def requires_expiry_confirmation(self) -> bool:
        """True when the plan would hand out expired stock; never a hard block."""
        return any(line.is_expired for line in self.lines)

    @property
    def lot_ids(self) -> list[UUID]:
        return [line.lot_id for line in self.lines]


def is_expired(expiration: date | None, as_of: date) -> bool:
    """Expired means the expiration date is strictly before ``as_of``."""
    return expiration is not None and expiration < as_of


def _fifo_key(lot: LotSnapshot) -> tuple:
    # None sorts after every date
    return (
        lot.expiration_date is None,
        lot.expiration_date or date.max,
        lot.name,
        str(lot.lot_id),
    )


class AllocationEngine:
    """
    FIFO batch selection over one Product Group.

    Contract:
        Pure functions over LotSnapshot sequences.  ``reserved`` maps lot_id
        to quantity the caller has already placed in a cart; it is
        subtracted from availability but never persisted.
    Non-goals:
        - Does not load Lots, check tenants or lock anything.  The caller
          passes one tenant's Product Group.
    """

    def order_fifo(self, lots: Sequence[LotSnapshot]) -> list[LotSnapshot]:
        """Lots in FIFO order (soonest expiration first, no-expiration last)."""
        return sorted(lots, key=_fifo_key)

    def available(
        self,
        lot: LotSnapshot,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> Decimal:
        """Quantity left in ``lot`` after the caller's reservations (never < 0)."""
        held = Decimal(str((reserved or {}).get(lot.lot_id, ZERO)))
        return max(round_quantity(lot.quantity - held), ZERO)

    @traced_engine("allocation", "1.0", fingerprint_fields=("requested_quantity", "as_of", "reserved"))
    def plan(
        self,
        lots: Sequence[LotSnapshot],
        requested_quantity: Decimal | int | str,
        as_of: date,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        """
        Propose draws for ``requested_quantity`` in FIFO order.

        Each Lot contributes min(available, remaining).  Lots with nothing
        available are skipped.  Any amount the group cannot cover is
        reported as ``shortfall``.
        """
        requested = parse_quantity(requested_quantity, "requested_quantity")
        remaining = requested
        lines: list[AllocationLine] = []

        for lot in self.order_fifo(lots):
            if remaining <= ZERO:
                break
            available = self.available(lot, reserved)
            if available <= ZERO:
                continue
            take = min(available, remaining)
            lines.append(
                AllocationLine(
                    lot_id=lot.lot_id,
                    name=lot.name,
                    available_quantity=available,
                    proposed_quantity=take,
                    expiration_date=lot.expiration_date,
                    is_expired=is_expired(lot.expiration_date, as_of),
                )
            )
            remaining = round_quantity(remaining - take)

        plan = AllocationPlan(
            requested_quantity=requested,
            lines=tuple(lines),
            shortfall=max(remaining, ZERO),
            as_of=as_of,
        )
        if plan.shortfall > ZERO:
            logger.info(
                "allocation_shortfall",
                extra={
                    "requested": str(requested),
                    "shortfall": str(plan.shortfall),
                    "lot_count": len(lots),
                },
            )
        if plan.requires_expiry_confirmation:
            logger.info(
                "allocation_includes_expired_stock",
                extra={"lot_ids": [str(line.lot_id) for line in lines if line.is_expired]},
            )
        return plan

    def smart_add(
        self,
        lots: Sequence[LotSnapshot],
        as_of: date,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationLine | None:
        """
        Single-unit pick: the first FIFO Lot with anything left after
        reservations, or None when the group is exhausted.
        """
        for lot in self.order_fifo(lots):
            available = self.available(lot, reserved)
            if available > ZERO:
                return AllocationLine(
                    lot_id=lot.lot_id,
                    name=lot.name,
                    available_quantity=available,
                    proposed_quantity=min(SINGLE_UNIT, available),
                    expiration_date=lot.expiration_date,
                    is_expired=is_expired(lot.expiration_date, as_of),
                )
        return None

    def manual_pick(
        self,
        lots: Sequence[LotSnapshot],
        lot_id: UUID,
        quantity: Decimal | int | str,
        as_of: date,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        """
        Draw from an explicitly chosen Lot, bypassing FIFO order.

        Raises:
            LotNotFoundError: if ``lot_id`` is not in ``lots``.
        """
        requested = parse_quantity(quantity)
        lot = next((candidate for candidate in lots if candidate.lot_id == lot_id), None)
        if lot is None:
            logger.warning("allocation_manual_pick_unknown_lot", extra={"lot_id": str(lot_id)})
            raise LotNotFoundError(str(lot_id))

        available = self.available(lot, reserved)
        take = min(available, requested)
        lines: tuple[AllocationLine, ...] = ()
        if take > ZERO:
            lines = (
                AllocationLine(
                    lot_id=lot.lot_id,
                    name=lot.name,
                    available_quantity=available,
                    proposed_quantity=take,
                    expiration_date=lot.expiration_date,
                    is_expired=is_expired(lot.expiration_date, as_of),
                ),
            )
        return AllocationPlan(
            requested_quantity=requested,
            lines=lines,
            shortfall=round_quantity(requested - take),
            as_of=as_of,
        )
