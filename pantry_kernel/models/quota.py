"""
Module: pantry_kernel.models.quota
Responsibility: ORM persistence for per-tenant quota counters and ceilings.
    Lives in the QUOTA store (QuotaBase), not next to the inventory tables.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per tenant (unique tenant_id).
    - total_items_created and total_families_created are monotonic: they are
      only ever changed by ``SET n = n + 1``.  Deleting a Lot or recipient
      never lowers them.
    - Ceilings are copied from the plan catalog whenever the tier changes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pantry_kernel.db.base import QuotaBase
from pantry_kernel.db.types import TenantId


class TenantQuota(QuotaBase):
    """
    Historical creation counters plus tier ceilings for one tenant.

    Non-goals:
        - Team seats are not counted here; the identity provider knows the
          active seat count and the gatekeeper compares it to max_users_limit.
    """

    __tablename__ = "tenant_quotas"

    __table_args__ = (UniqueConstraint("tenant_id", name="uq_tenant_quota_tenant"),)

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="pilot")

    total_items_created: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    total_families_created: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    max_items_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)

    max_clients_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)

    max_users_limit: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<TenantQuota {self.tenant_id} tier={self.tier} "
            f"items={self.total_items_created}/{self.max_items_limit} "
            f"families={self.total_families_created}/{self.max_clients_limit}>"
        )
