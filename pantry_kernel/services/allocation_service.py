"""
AllocationService -- loads a Product Group and asks the FIFO engine for a plan.

Responsibility:
    The imperative shell around ``pantry_engines.allocation``: reads the
    tenant's Lots for one product, reads "today" from the clock, and returns
    the engine's plan.  Never writes.

Architecture position:
    Kernel > Services.  Inventory store, read-only transactions.

Invariants enforced:
    - Plans are proposals.  Nothing is reserved or locked; the checkout's
      guarded decrement is the only authority on stock.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from pantry_engines.allocation import AllocationEngine, AllocationLine, AllocationPlan
from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import LotSnapshot
from pantry_kernel.domain.values import ProductKey
from pantry_kernel.logging_config import LogContext, get_logger
from pantry_kernel.selectors.lot_selector import LotSelector
from pantry_kernel.services.base import BaseService

logger = get_logger("services.allocation")


class AllocationService(BaseService):
    """FIFO batch selection against live Lots."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        engine: AllocationEngine | None = None,
    ):
        super().__init__(session_factory, clock)
        self._engine = engine or AllocationEngine()

    def load_product_group(self, tenant_id: str, product_key: ProductKey) -> list[LotSnapshot]:
        with self._transaction("allocation.load_group") as session:
            return LotSelector(session).product_group(tenant_id, product_key)

    def plan_allocation(
        self,
        tenant_id: str,
        product_key: ProductKey,
        requested_quantity: Decimal | int | str,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        """
        Propose which Lots cover ``requested_quantity``, soonest-expiring first.

        ``reserved`` carries quantities the caller's cart already holds.
        """
        with LogContext.bind(tenant_id=tenant_id, operation="plan_allocation"):
            lots = self.load_product_group(tenant_id, product_key)
            plan = self._engine.plan(lots, requested_quantity, self._clock.today(), reserved)
            logger.debug(
                "allocation_planned",
                extra={
                    "product_key": product_key.barcode or product_key.name,
                    "lines": len(plan.lines),
                    "shortfall": str(plan.shortfall),
                },
            )
            return plan

    def smart_add(
        self,
        tenant_id: str,
        product_key: ProductKey,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationLine | None:
        lots = self.load_product_group(tenant_id, product_key)
        return self._engine.smart_add(lots, self._clock.today(), reserved)

    def manual_pick(
        self,
        tenant_id: str,
        product_key: ProductKey,
        lot_id: UUID,
        quantity: Decimal | int | str,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        """Draw from one chosen Lot of the group; raises LotNotFoundError if it is not in it."""
        lots = self.load_product_group(tenant_id, product_key)
        return self._engine.manual_pick(lots, lot_id, quantity, self._clock.today(), reserved)
