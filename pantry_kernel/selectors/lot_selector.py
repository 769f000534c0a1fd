"""
Module: pantry_kernel.selectors.lot_selector
Responsibility: Read-only Lot queries: single Lot, inventory listing, Product
    Group loading for allocation, and the expiry alerts shown on the dashboard.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Product Group: Lots sharing a barcode, or (for a name key) Lots whose
      name matches case-insensitively.
    - "Expired" is expiration_date < as_of; "expiring soon" is
      as_of <= expiration_date <= as_of + window.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pantry_kernel.domain.dtos import LotSnapshot
from pantry_kernel.domain.values import ProductKey
from pantry_kernel.exceptions import LotNotFoundError, ValidationError
from pantry_kernel.models.lot import Lot
from pantry_kernel.selectors.base import BaseSelector

SORTABLE_COLUMNS = {
    "name": Lot.name,
    "category": Lot.category,
    "quantity": Lot.quantity,
    "expiration_date": Lot.expiration_date,
    "last_modified": Lot.last_modified,
}


class LotSelector(BaseSelector):
    """Selector for Lot queries."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_lot(self, tenant_id: str, lot_id: UUID) -> LotSnapshot | None:
        lot = self.session.execute(
            select(Lot).where(Lot.id == lot_id, Lot.tenant_id == tenant_id)
        ).scalar_one_or_none()
        return LotSnapshot.from_model(lot) if lot is not None else None

    def require_lot(self, tenant_id: str, lot_id: UUID) -> LotSnapshot:
        lot = self.get_lot(tenant_id, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def list_lots(
        self,
        tenant_id: str,
        *,
        sort_by: str = "name",
        descending: bool = False,
        category: str | None = None,
        limit: int | None = None,
    ) -> list[LotSnapshot]:
        """
        Inventory listing.

        Raises:
            ValidationError: if ``sort_by`` is not a sortable column.
        """
        column = SORTABLE_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError("sort_by", f"cannot sort by {sort_by!r}")

        stmt = select(Lot).where(Lot.tenant_id == tenant_id)
        if category:
            stmt = stmt.where(Lot.category == category)
        stmt = stmt.order_by(column.desc() if descending else column.asc(), Lot.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [LotSnapshot.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def product_group(self, tenant_id: str, product_key: ProductKey) -> list[LotSnapshot]:
        """All Lots of one product, unordered (FIFO ordering is the engine's job)."""
        stmt = select(Lot).where(Lot.tenant_id == tenant_id)
        if product_key.barcode:
            stmt = stmt.where(Lot.barcode == product_key.barcode)
        else:
            stmt = stmt.where(func.lower(Lot.name) == product_key.name.strip().lower())
        return [LotSnapshot.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def expiring_soon(
        self,
        tenant_id: str,
        as_of: date,
        within_days: int = 7,
        limit: int = 5,
    ) -> list[LotSnapshot]:
        """Lots expiring between ``as_of`` and ``as_of + within_days``, soonest first."""
        stmt = (
            select(Lot)
            .where(
                Lot.tenant_id == tenant_id,
                Lot.expiration_date >= as_of,
                Lot.expiration_date <= as_of + timedelta(days=within_days),
            )
            .order_by(Lot.expiration_date, Lot.name)
            .limit(limit)
        )
        return [LotSnapshot.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def count_expired(self, tenant_id: str, as_of: date) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(Lot)
            .where(Lot.tenant_id == tenant_id, Lot.expiration_date < as_of)
        ).scalar_one()
