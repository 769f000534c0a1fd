"""
Module: pantry_kernel.models.distribution
Responsibility: ORM persistence for distribution records, the immutable
    evidence that stock left the pantry for a recipient.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Write-once.  Records are inserted in the same transaction as the Lot
      decrement they describe and never updated afterwards.
    - item_id is a best-effort reference: the Lot may already be gone.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from pantry_kernel.db.base import Base, UUIDString
from pantry_kernel.db.types import Quantity, ShortCode, TenantId


class DistributionRecord(Base):
    """One line of stock handed to a recipient (or written off)."""

    __tablename__ = "distribution_records"

    __table_args__ = (
        Index("idx_distribution_tenant_time", "tenant_id", "distributed_at"),
        Index("idx_distribution_recipient", "tenant_id", "recipient_code"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    # "SYS" for anonymous
    recipient_code: Mapped[ShortCode] = mapped_column(nullable=False)

    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Not a foreign key: the Lot is deleted when it reaches zero
    item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    item_name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity_distributed: Mapped[Quantity] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(10), nullable=False)

    reason: Mapped[str] = mapped_column(String(50), nullable=False)

    distributed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<DistributionRecord {self.item_name} x{self.quantity_distributed} "
            f"-> {self.recipient_code}>"
        )
