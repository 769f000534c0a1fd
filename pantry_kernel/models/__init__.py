"""ORM models for the inventory and quota stores."""

from pantry_kernel.models.audit_entry import AuditEntry
from pantry_kernel.models.distribution import DistributionRecord
from pantry_kernel.models.lot import BarcodeCacheEntry, Lot
from pantry_kernel.models.quota import TenantQuota
from pantry_kernel.models.recipient import Recipient

__all__ = [
    "Lot",
    "BarcodeCacheEntry",
    "Recipient",
    "DistributionRecord",
    "AuditEntry",
    "TenantQuota",
]
