"""
Pantry Inventory Kernel

Multi-tenant perishable-inventory core:
- Merge-or-create Lot ingestion with atomic restocks
- FIFO allocation planning over Product Groups
- Per-line checkout with guarded, never-negative withdrawals
- Append-only audit log with impact metrics
- Tier ceilings enforced from a separate quota store
"""

__version__ = "0.1.0"
