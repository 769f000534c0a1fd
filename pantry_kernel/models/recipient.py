"""
Module: pantry_kernel.models.recipient
Responsibility: ORM persistence for recipient households (client profiles).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (tenant_id, lower(recipient_code)) is UNIQUE.  The insert that wins this index
      is the one "new recipient" event, and the only caller allowed to bump
      the tenant's family counter.
    - household_size >= 1 (service layer).

Failure modes:
    - IntegrityError on duplicate recipient_code; the recipient service
      treats it as "someone else registered this household first".
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pantry_kernel.db.base import Base
from pantry_kernel.db.types import ShortCode, TenantId


class Recipient(Base):
    """
    A household that receives distributions.

    Guarantees:
        - recipient_code is unique per tenant, ignoring case.
        - created_at is set once; last_visit moves forward on each checkout.
    """

    __tablename__ = "recipients"

    __table_args__ = (
        Index("idx_recipient_tenant_last_name", "tenant_id", "last_name"),
    )

    tenant_id: Mapped[TenantId] = mapped_column(nullable=False)

    recipient_code: Mapped[ShortCode] = mapped_column(nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)

    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    email: Mapped[str | None] = mapped_column(String(200), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    address: Mapped[str] = mapped_column(String(300), nullable=False, default="")

    household_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_visit: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Recipient {self.recipient_code}: {self.first_name} {self.last_name}>"


# "AB-12" and "ab-12" are the same household
Index(
    "uq_recipient_code_ci",
    Recipient.tenant_id,
    func.lower(Recipient.recipient_code),
    unique=True,
)
