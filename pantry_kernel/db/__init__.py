"""Database layer - engines for both stores, base classes, types."""

from pantry_kernel.db.base import UUID, Base, QuotaBase, UTCDateTime, UUIDString
from pantry_kernel.db.engine import (
    INVENTORY_STORE,
    QUOTA_STORE,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
    storage_guard,
)
from pantry_kernel.db.types import Metric, Quantity, round_metric, round_quantity

__all__ = [
    "INVENTORY_STORE",
    "QUOTA_STORE",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "storage_guard",
    "create_tables",
    "Base",
    "QuotaBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Quantity",
    "Metric",
    "round_quantity",
    "round_metric",
]
