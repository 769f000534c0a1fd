"""
Pure domain layer.

Value types, DTOs and the clock.  No ORM, database or I/O dependencies;
``from_model`` converters only touch attributes of objects handed to them.
"""

from pantry_kernel.domain.clock import Clock, DeterministicClock, SystemClock, TickingClock
from pantry_kernel.domain.dtos import (
    AuditEntryView,
    BarcodeLookup,
    CartLine,
    CheckoutResult,
    DistributionView,
    ImpactMetrics,
    ImpactSummary,
    LineFailure,
    LineSuccess,
    LookupSource,
    LotSnapshot,
    QuotaCounters,
    RecipientSpec,
    RecipientUpsert,
    RecipientView,
    RemovalMetadata,
)
from pantry_kernel.domain.values import ActionType, ProductKey, Unit

__all__ = [
    "ActionType",
    "AuditEntryView",
    "BarcodeLookup",
    "CartLine",
    "CheckoutResult",
    "Clock",
    "DeterministicClock",
    "DistributionView",
    "ImpactMetrics",
    "ImpactSummary",
    "LineFailure",
    "LineSuccess",
    "LookupSource",
    "LotSnapshot",
    "ProductKey",
    "QuotaCounters",
    "RecipientSpec",
    "RecipientUpsert",
    "RecipientView",
    "RemovalMetadata",
    "SystemClock",
    "TickingClock",
    "Unit",
]
