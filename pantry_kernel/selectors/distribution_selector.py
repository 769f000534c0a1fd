"""
Module: pantry_kernel.selectors.distribution_selector
Responsibility: Read-only distribution history, tenant-wide or per recipient,
    most recent first.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pantry_kernel.domain.dtos import DistributionView
from pantry_kernel.models.distribution import DistributionRecord
from pantry_kernel.selectors.base import BaseSelector

DEFAULT_RECENT_LIMIT = 100


class DistributionSelector(BaseSelector):
    """Selector for distribution records."""

    def __init__(self, session: Session):
        super().__init__(session)

    def list_recent(
        self,
        tenant_id: str,
        limit: int = DEFAULT_RECENT_LIMIT,
        recipient_code: str | None = None,
    ) -> list[DistributionView]:
        stmt = select(DistributionRecord).where(DistributionRecord.tenant_id == tenant_id)
        if recipient_code is not None:
            stmt = stmt.where(
                func.lower(DistributionRecord.recipient_code) == recipient_code.strip().lower()
            )
        stmt = stmt.order_by(
            DistributionRecord.distributed_at.desc(), DistributionRecord.id.desc()
        ).limit(limit)
        return [DistributionView.from_model(r) for r in self.session.execute(stmt).scalars()]

    def for_recipient(self, tenant_id: str, recipient_code: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[DistributionView]:
        """A household's history."""
        return self.list_recent(tenant_id, limit=limit, recipient_code=recipient_code)
