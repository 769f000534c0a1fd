"""Read-only selectors over the inventory store."""

from pantry_kernel.selectors.audit_selector import AuditSelector
from pantry_kernel.selectors.base import BaseSelector
from pantry_kernel.selectors.distribution_selector import DistributionSelector
from pantry_kernel.selectors.lot_selector import LotSelector

__all__ = [
    "BaseSelector",
    "AuditSelector",
    "DistributionSelector",
    "LotSelector",
]
