"""Services for the inventory kernel (write side)."""

from pantry_kernel.services.allocation_service import AllocationService
from pantry_kernel.services.audit_service import AuditLogService
from pantry_kernel.services.barcode_cache_service import BarcodeCacheService
from pantry_kernel.services.distribution_service import DistributionCoordinator
from pantry_kernel.services.lot_service import DistributionTarget, LotService, Withdrawal
from pantry_kernel.services.quota_service import (
    QuotaGatekeeper,
    QuotaLedger,
    QuotaResource,
    QuotaUsage,
    UsageStatus,
)
from pantry_kernel.services.recipient_service import RecipientService
from pantry_kernel.services.side_effects import SideEffects

__all__ = [
    "AllocationService",
    "AuditLogService",
    "BarcodeCacheService",
    "DistributionCoordinator",
    "DistributionTarget",
    "LotService",
    "QuotaGatekeeper",
    "QuotaLedger",
    "QuotaResource",
    "QuotaUsage",
    "RecipientService",
    "SideEffects",
    "UsageStatus",
    "Withdrawal",
]
