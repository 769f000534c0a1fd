"""
Module: pantry_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention and the type annotation map for consistent
    column types.  There are TWO bases because the kernel talks to two
    independent stores:

    - ``Base``       -- the inventory store (lots, barcode cache, recipients,
                        distribution records, audit entries).
    - ``QuotaBase``  -- the quota store (tenant quota counters and ceilings),
                        owned by the billing/identity side of the system.

    The two metadata collections are created, bound and committed separately.
    No transaction ever spans both.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Quantity precision: Decimal maps to Numeric(18, 3).  Stock quantities
      are kept to three decimal places system-wide.
    - Timestamps: datetime maps to UTCDateTime (aware, UTC on read).
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from pantry_kernel.db.types import Metric, Quantity, ShortCode, TenantId


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always reads back in UTC.

    Guarantees:
        - process_bind_param: aware datetimes are converted to UTC.
        - process_result_value: naive values (SQLite keeps no offset) are
          tagged UTC, so callers only ever see aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


_TYPE_ANNOTATION_MAP: dict = {
    # Stock quantities: three decimal places
    Decimal: Numeric(18, 3),
    datetime: UTCDateTime(),
    PyUUID: UUIDString(),
    int: BigInteger,
    # Annotated aliases from db.types
    Quantity: Numeric(18, 3),
    Metric: Numeric(18, 2),
    TenantId: String(64),
    ShortCode: String(50),
}


class Base(DeclarativeBase):
    """
    Declarative base for inventory-store models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Numeric(18, 3).
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = _TYPE_ANNOTATION_MAP

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class QuotaBase(DeclarativeBase):
    """
    Declarative base for quota-store models.

    Kept on a separate metadata so the quota tables are never created in, or
    joined against, the inventory store.
    """

    type_annotation_map: ClassVar[dict] = _TYPE_ANNOTATION_MAP

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


# Re-export UUID for convenience
UUID = PyUUID
