"""
Module: pantry_kernel.models.audit_entry
Responsibility: ORM persistence for the inventory audit log.  Each row records
    one Lot mutation (added, updated, deleted, distributed) together with the
    impact metrics derived from it.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Write-once.  The audit service only inserts.
    - Metrics are never NULL and never NaN; the impact engine coerces bad
      inputs to zero before they reach this table.

Failure modes:
    - Write failures are swallowed by the audit service's best-effort path,
      so an entry may be missing for a committed mutation.  The reverse never
      happens: an entry is only written after its mutation committed.

Audit relevance:
    The "recent changes" feed and every impact report (people served,
    pounds distributed, estimated value) are read from this table.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pantry_kernel.db.base import Base, UUIDString
from pantry_kernel.db.types import Metric, Quantity, ShortCode, TenantId


class AuditEntry(Base):
    """
    Immutable record of one inventory mutation.

    Contract:
        ``previous_quantity``, ``quantity_changed`` and ``new_quantity`` are
        the before/delta/after of the Lot as seen by the mutation itself.
        ``changes`` holds a {field: {"old": x, "new": y}} diff for updates.

    Guarantees:
        - (tenant_id, timestamp) index serves "most recent first".
        - (tenant_id, action_type, timestamp) index serves impact reports.
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_tenant_time", "tenant_id", "timestamp"),
        Index("idx_audit_tenant_action_time", "tenant_id", "action_type", "timestamp"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    action_type: Mapped[str] = mapped_column(String(20), nullable=False)

    item_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    item_name: Mapped[str] = mapped_column(String(200), nullable=False)

    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    item_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    previous_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    quantity_changed: Mapped[Quantity] = mapped_column(nullable=False)

    new_quantity: Mapped[Quantity] = mapped_column(nullable=False)

    unit: Mapped[str] = mapped_column(String(10), nullable=False)

    distribution_reason: Mapped[str] = mapped_column(String(50), nullable=False, default="")

    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    recipient_code: Mapped[ShortCode] = mapped_column(nullable=False, default="")

    # Impact metrics
    people_served: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    estimated_value: Mapped[Metric] = mapped_column(nullable=False, default=Decimal("0"))

    standardized_weight: Mapped[Metric] = mapped_column(nullable=False, default=Decimal("0"))

    waste_diverted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action_type} {self.item_name} @ {self.timestamp}>"
