"""
Module: pantry_kernel.models.lot
Responsibility: ORM persistence for inventory Lots and the per-tenant barcode
    metadata cache.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Lot identity key.  (tenant_id, barcode, expiration_key) is UNIQUE, so
      two concurrent first-ingestions of the same key cannot both insert.
      ``expiration_key`` is "" when the Lot never expires and the ISO date
      otherwise; it is kept in step with ``expiration_date`` by the service.
    - Lot quantity is > 0 while the row exists.  The decrement that drives a
      Lot to <= 0 deletes it in the same transaction (service layer).
    - Cache key.  (tenant_id, barcode) is UNIQUE on the barcode cache.

Failure modes:
    - IntegrityError on a duplicate identity key; the ingestion service
      catches it inside a savepoint and retries the atomic increment.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pantry_kernel.db.base import Base
from pantry_kernel.db.types import Quantity, TenantId


class Lot(Base):
    """
    A discrete quantity of one product sharing barcode and expiration.

    Contract:
        Quantity changes only through single conditional UPDATE statements
        (increment on restock, guarded decrement on distribution).  Services
        never read-modify-write ``quantity``.

    Guarantees:
        - (tenant_id, barcode, expiration_key) is unique.
        - (tenant_id, expiration_date) index supports FIFO ordering.

    Non-goals:
        - This model does NOT validate quantity > 0; the services do.
    """

    __tablename__ = "lots"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "barcode", "expiration_key", name="uq_lot_identity_key"
        ),
        # Query: FIFO ordering within a tenant
        Index("idx_lot_tenant_expiration", "tenant_id", "expiration_date"),
        # Query: barcodeless product groups
        Index("idx_lot_tenant_name", "tenant_id", "name"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False)

    # > 0 while the row exists
    quantity: Mapped[Quantity] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(10), nullable=False, default="units")

    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)

    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # "" for no expiration; part of the unique identity key
    expiration_key: Mapped[str] = mapped_column(String(10), nullable=False, default="")

    storage_location: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    last_modified: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<Lot {self.name} {self.quantity} {self.unit} "
            f"barcode={self.barcode} exp={self.expiration_key or 'none'}>"
        )


class BarcodeCacheEntry(Base):
    """
    Product metadata remembered per (tenant, barcode).

    Contract:
        Written through on ingestion of an externally sourced barcode and
        read first on lookup.  Never authoritative for stock and never
        deleted by normal flow.
    """

    __tablename__ = "barcode_cache"

    __table_args__ = (
        UniqueConstraint("tenant_id", "barcode", name="uq_barcode_cache_key"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    barcode: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False)

    storage_location: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    last_modified: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<BarcodeCacheEntry {self.barcode} -> {self.name}>"
