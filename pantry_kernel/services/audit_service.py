"""
AuditLogService -- append-only audit entries with impact metrics.

Responsibility:
    Writes one AuditEntry per committed Lot mutation, attaching the impact
    metrics computed by ``pantry_engines.impact``.

Architecture position:
    Kernel > Services.  Inventory store, but always in its OWN transaction,
    opened after the mutation it describes has committed.

Invariants enforced:
    - Append-only: entries are inserted, never updated or deleted.
    - ``record_best_effort`` never raises.  A failed audit write is logged
      and the caller's mutation stands.
    - Metrics are computed on the magnitude of the change, in the unit the
      change was expressed in (which may differ from the Lot's unit).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from pantry_engines.impact import compute_impact, tags_for
from pantry_kernel.db.types import round_quantity
from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import AuditEntryView, LotSnapshot
from pantry_kernel.domain.values import ActionType, Unit
from pantry_kernel.logging_config import get_logger
from pantry_kernel.models.audit_entry import AuditEntry
from pantry_kernel.services.base import BaseService
from pantry_kernel.services.side_effects import SideEffects

logger = get_logger("services.audit")


class AuditLogService(BaseService):
    """
    Writer for the inventory audit log.

    Contract:
        Callers invoke ``record_best_effort`` after their own transaction
        has committed.  ``record`` is the raising variant used by it.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        side_effects: SideEffects | None = None,
    ):
        super().__init__(session_factory, clock)
        self._side_effects = side_effects or SideEffects()

    def record(
        self,
        tenant_id: str,
        action: ActionType,
        lot: LotSnapshot,
        *,
        previous_quantity: Decimal,
        new_quantity: Decimal,
        quantity_changed: Decimal | None = None,
        metric_unit: Unit | str | None = None,
        reason: str = "",
        recipient_name: str = "",
        recipient_code: str = "",
        household_size: int | None = 1,
        changes: dict[str, Any] | None = None,
    ) -> AuditEntryView:
        """
        Insert one audit entry and return its view.

        ``quantity_changed`` defaults to |new - previous|.
        """
        action = ActionType(action)
        if quantity_changed is None:
            quantity_changed = abs(new_quantity - previous_quantity)
        unit = Unit.parse(metric_unit) if metric_unit else lot.unit
        metrics = compute_impact(action, quantity_changed, unit, household_size)

        with self._transaction("audit.record") as session:
            entry = AuditEntry(
                tenant_id=tenant_id,
                action_type=action.value,
                item_id=lot.lot_id,
                item_name=lot.name,
                category=lot.category,
                item_snapshot=lot.as_item_snapshot(),
                changes=changes,
                previous_quantity=round_quantity(previous_quantity),
                quantity_changed=round_quantity(quantity_changed),
                new_quantity=round_quantity(new_quantity),
                unit=unit.value,
                distribution_reason=reason or "",
                recipient_name=recipient_name or "",
                recipient_code=recipient_code or "",
                people_served=metrics.people_served,
                estimated_value=metrics.estimated_value,
                standardized_weight=metrics.standardized_weight,
                waste_diverted=metrics.waste_diverted,
                tags=list(tags_for(reason)),
                timestamp=self._clock.now(),
            )
            session.add(entry)
            session.flush()
            view = AuditEntryView.from_model(entry)

        logger.debug(
            "audit_entry_recorded",
            extra={
                "tenant_id": tenant_id,
                "action_type": action.value,
                "item_id": str(lot.lot_id),
            },
        )
        return view

    def record_best_effort(self, tenant_id: str, action: ActionType, lot: LotSnapshot, **kwargs: Any) -> bool:
        """
        ``record`` without the raise.

        Returns:
            True if the entry was written.
        """
        return self._side_effects.run(
            f"audit.{ActionType(action).value}",
            self.record,
            tenant_id,
            action,
            lot,
            **kwargs,
        )
