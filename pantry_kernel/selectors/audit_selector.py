"""
Module: pantry_kernel.selectors.audit_selector
Responsibility: Read-only audit log queries: the "recent changes" feed and the
    impact report totals (people served, pounds and value distributed).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Most recent first: ``list_recent`` orders by timestamp DESC with the
      entry id as tiebreaker.
    - Impact totals are computed at query time from ``distributed`` entries;
      there are no stored totals.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pantry_kernel.db.types import round_metric, round_quantity
from pantry_kernel.domain.dtos import AuditEntryView, ImpactSummary
from pantry_kernel.domain.values import ActionType
from pantry_kernel.exceptions import ValidationError
from pantry_kernel.models.audit_entry import AuditEntry
from pantry_kernel.selectors.base import BaseSelector

DEFAULT_RECENT_LIMIT = 50


class AuditSelector(BaseSelector):
    """
    Selector for audit log queries.

    Non-goals:
        - Export formatting (CSV/XLSX) is the presentation layer's concern.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def list_recent(
        self,
        tenant_id: str,
        limit: int = DEFAULT_RECENT_LIMIT,
        action_type: ActionType | None = None,
    ) -> list[AuditEntryView]:
        """
        Newest audit entries for a tenant.

        Raises:
            ValidationError: if ``limit`` < 1.
        """
        if limit < 1:
            raise ValidationError("limit", "must be at least 1")
        stmt = select(AuditEntry).where(AuditEntry.tenant_id == tenant_id)
        if action_type is not None:
            stmt = stmt.where(AuditEntry.action_type == ActionType(action_type).value)
        stmt = stmt.order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc()).limit(limit)
        return [AuditEntryView.from_model(e) for e in self.session.execute(stmt).scalars()]

    def impact_summary(self, tenant_id: str, since: datetime | None = None) -> ImpactSummary:
        """Totals over ``distributed`` entries, optionally from ``since`` on."""
        stmt = select(
            func.count(AuditEntry.id),
            func.coalesce(func.sum(AuditEntry.quantity_changed), 0),
            func.coalesce(func.sum(AuditEntry.people_served), 0),
            func.coalesce(func.sum(AuditEntry.standardized_weight), 0),
            func.coalesce(func.sum(AuditEntry.estimated_value), 0),
        ).where(
            AuditEntry.tenant_id == tenant_id,
            AuditEntry.action_type == ActionType.DISTRIBUTED.value,
        )
        if since is not None:
            stmt = stmt.where(AuditEntry.timestamp >= since)

        count, quantity, people, weight, value = self.session.execute(stmt).one()
        return ImpactSummary(
            tenant_id=tenant_id,
            distribution_count=int(count),
            quantity_distributed=round_quantity(Decimal(str(quantity))),
            people_served=int(people),
            standardized_weight=round_metric(Decimal(str(weight))),
            estimated_value=round_metric(Decimal(str(value))),
            since=since,
        )
