"""
pantry_services.kernel -- Central DI container and operation surface.

Responsibility:
    Creates every kernel service exactly once and wires them together over
    the two stores.  Exposes the transport-agnostic operations the
    presentation layer and the billing webhook call.

Architecture position:
    Services -- top of the stack.  This module is the only place where
    kernel services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one SideEffects runner, one quota ledger
      and gatekeeper, one audit writer shared by every service.
    - Store separation: inventory services receive the inventory session
      factory, quota services the quota factory.  No object holds both.
    - Explicit tenancy: every operation takes ``tenant_id`` as its first
      argument.

Usage:
    from pantry_services.kernel import PantryKernel

    kernel = PantryKernel.from_settings()
    kernel.ingest_lot("tenant-1", name="Beans", category="Canned", quantity=10, barcode="123")
    result = kernel.commit_distribution("tenant-1", RecipientSpec.anonymous(), [CartLine(lot_id, 2)])
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from pantry_config import PlanCatalog, Settings, get_plan_catalog, get_settings
from pantry_engines.allocation import AllocationEngine, AllocationLine, AllocationPlan
from pantry_kernel.db.engine import (
    INVENTORY_STORE,
    QUOTA_STORE,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from pantry_kernel.domain.clock import Clock, SystemClock
from pantry_kernel.domain.dtos import (
    AuditEntryView,
    BarcodeLookup,
    CartLine,
    CheckoutResult,
    DistributionView,
    ImpactSummary,
    LotSnapshot,
    QuotaCounters,
    RecipientSpec,
    RecipientView,
    RemovalMetadata,
)
from pantry_kernel.domain.values import ProductKey
from pantry_kernel.logging_config import configure_logging, get_logger
from pantry_kernel.selectors.audit_selector import DEFAULT_RECENT_LIMIT, AuditSelector
from pantry_kernel.selectors.distribution_selector import DistributionSelector
from pantry_kernel.selectors.lot_selector import LotSelector
from pantry_kernel.services.allocation_service import AllocationService
from pantry_kernel.services.audit_service import AuditLogService
from pantry_kernel.services.barcode_cache_service import BarcodeCacheService
from pantry_kernel.services.distribution_service import DistributionCoordinator
from pantry_kernel.services.lot_service import LotService
from pantry_kernel.services.quota_service import QuotaGatekeeper, QuotaLedger, QuotaUsage
from pantry_kernel.services.recipient_service import RecipientService
from pantry_kernel.services.side_effects import SideEffects

logger = get_logger("services.kernel")

EXPIRING_SOON_DAYS = 7
EXPIRING_SOON_LIMIT = 5


@dataclass(frozen=True)
class InventoryAlerts:
    """Dashboard notifications: stock about to expire, expired stock, ceilings."""

    tenant_id: str
    expiring_soon: tuple[LotSnapshot, ...]
    expired_count: int
    quota: tuple[QuotaUsage, ...]

    @property
    def has_alerts(self) -> bool:
        return bool(self.expiring_soon) or self.expired_count > 0 or any(
            usage.status.value in ("near", "reached") for usage in self.quota
        )


class PantryKernel:
    """Central factory for kernel services.

    Contract:
        Receives one session factory per store and an optional Clock and
        plan catalog.  Constructs every service once, in dependency order,
        and exposes them as public attributes alongside the operation
        methods.

    Non-goals:
        - Does NOT authenticate callers; ``tenant_id`` is trusted.
        - Does NOT hold a session; every operation opens its own.
    """

    def __init__(
        self,
        inventory_sessions: sessionmaker[Session],
        quota_sessions: sessionmaker[Session],
        clock: Clock | None = None,
        catalog: PlanCatalog | None = None,
    ) -> None:
        self._inventory_sessions = inventory_sessions
        self._quota_sessions = quota_sessions
        self._clock = clock or SystemClock()
        self.catalog = catalog or get_plan_catalog()
        self.side_effects = SideEffects()

        # Quota store
        self.ledger = QuotaLedger(quota_sessions, self._clock, self.catalog)
        self.gatekeeper = QuotaGatekeeper(quota_sessions, self._clock, self.catalog)

        # Inventory store, leaf services first
        self.audit = AuditLogService(inventory_sessions, self._clock, self.side_effects)
        self.barcode_cache = BarcodeCacheService(inventory_sessions, self._clock)
        self.recipients = RecipientService(
            inventory_sessions,
            self.gatekeeper,
            self.ledger,
            self._clock,
            self.side_effects,
        )
        self.lots = LotService(
            inventory_sessions,
            self.gatekeeper,
            self.ledger,
            self.barcode_cache,
            self.audit,
            self._clock,
            self.side_effects,
        )
        self.allocation = AllocationService(inventory_sessions, self._clock, AllocationEngine())
        self.distribution = DistributionCoordinator(
            inventory_sessions,
            self.lots,
            self.recipients,
            self.audit,
            self._clock,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> "PantryKernel":
        """Initialize both store engines from settings and build the kernel."""
        settings = settings or get_settings()
        configure_logging(level=settings.log_level)
        for store, url in (
            (INVENTORY_STORE, settings.inventory_database_url),
            (QUOTA_STORE, settings.quota_database_url),
        ):
            init_engine_from_url(
                url,
                store=store,
                pool_size=settings.pool_size,
                statement_timeout_seconds=settings.storage_timeout_seconds,
            )
        logger.info("kernel_initialized", extra={"log_level": settings.log_level})
        return cls(
            get_session_factory(INVENTORY_STORE),
            get_session_factory(QUOTA_STORE),
            clock=clock,
        )

    @property
    def clock(self) -> Clock:
        return self._clock

    # ------------------------------------------------------------------
    # Lot store
    # ------------------------------------------------------------------

    def ingest_lot(self, tenant_id: str, **fields: Any) -> LotSnapshot:
        return self.lots.ingest_lot(tenant_id, **fields)

    def update_lot(self, tenant_id: str, lot_id: UUID, /, **fields: Any) -> LotSnapshot:
        return self.lots.update_lot(tenant_id, lot_id, **fields)

    def delete_lot(
        self,
        tenant_id: str,
        lot_id: UUID,
        removal: RemovalMetadata | None = None,
    ) -> None:
        self.lots.delete_lot(tenant_id, lot_id, removal)

    def get_lot(self, tenant_id: str, lot_id: UUID) -> LotSnapshot:
        with self._read("lot.get") as session:
            return LotSelector(session).require_lot(tenant_id, lot_id)

    def list_lots(self, tenant_id: str, **options: Any) -> list[LotSnapshot]:
        with self._read("lot.list") as session:
            return LotSelector(session).list_lots(tenant_id, **options)

    def lookup_barcode(self, tenant_id: str, barcode: str) -> BarcodeLookup:
        return self.barcode_cache.lookup(tenant_id, barcode)

    # ------------------------------------------------------------------
    # Allocation and checkout
    # ------------------------------------------------------------------

    def plan_allocation(
        self,
        tenant_id: str,
        product_key: ProductKey,
        requested_quantity: Decimal | int | str,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        return self.allocation.plan_allocation(tenant_id, product_key, requested_quantity, reserved)

    def smart_add(
        self,
        tenant_id: str,
        product_key: ProductKey,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationLine | None:
        return self.allocation.smart_add(tenant_id, product_key, reserved)

    def manual_pick(
        self,
        tenant_id: str,
        product_key: ProductKey,
        lot_id: UUID,
        quantity: Decimal | int | str,
        reserved: Mapping[UUID, Decimal] | None = None,
    ) -> AllocationPlan:
        return self.allocation.manual_pick(tenant_id, product_key, lot_id, quantity, reserved)

    def commit_distribution(
        self,
        tenant_id: str,
        recipient: RecipientSpec,
        lines: Sequence[CartLine],
    ) -> CheckoutResult:
        return self.distribution.commit_distribution(tenant_id, recipient, lines)

    # ------------------------------------------------------------------
    # Recipients
    # ------------------------------------------------------------------

    def register_recipient(self, tenant_id: str, spec: RecipientSpec) -> RecipientView:
        return self.recipients.register_recipient(tenant_id, spec)

    def list_recipients(self, tenant_id: str, **options: Any) -> list[RecipientView]:
        return self.recipients.list_recipients(tenant_id, **options)

    def deactivate_recipient(self, tenant_id: str, recipient_code: str) -> None:
        self.recipients.deactivate_recipient(tenant_id, recipient_code)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def list_recent_audit(self, tenant_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[AuditEntryView]:
        with self._read("audit.list_recent") as session:
            return AuditSelector(session).list_recent(tenant_id, limit)

    def impact_summary(self, tenant_id: str, since: datetime | None = None) -> ImpactSummary:
        with self._read("audit.impact_summary") as session:
            return AuditSelector(session).impact_summary(tenant_id, since)

    def list_recent_distributions(
        self,
        tenant_id: str,
        limit: int = 100,
        recipient_code: str | None = None,
    ) -> list[DistributionView]:
        with self._read("distribution.list_recent") as session:
            return DistributionSelector(session).list_recent(tenant_id, limit, recipient_code)

    def inventory_alerts(self, tenant_id: str) -> InventoryAlerts:
        """Expiring-soon Lots, expired count and ceiling usage for the dashboard."""
        today = self._clock.today()
        with self._read("lot.alerts") as session:
            selector = LotSelector(session)
            expiring = selector.expiring_soon(
                tenant_id, today, within_days=EXPIRING_SOON_DAYS, limit=EXPIRING_SOON_LIMIT
            )
            expired = selector.count_expired(tenant_id, today)
        return InventoryAlerts(
            tenant_id=tenant_id,
            expiring_soon=tuple(expiring),
            expired_count=expired,
            quota=tuple(self.gatekeeper.usage(tenant_id)),
        )

    # ------------------------------------------------------------------
    # Quota (billing webhook and team management)
    # ------------------------------------------------------------------

    def provision_tenant(self, tenant_id: str, tier: str | None = None) -> QuotaCounters:
        return self.ledger.provision_tenant(tenant_id, tier)

    def apply_subscription(self, tenant_id: str, tier: str | None) -> QuotaCounters:
        return self.ledger.apply_subscription(tenant_id, tier)

    def cancel_subscription(self, tenant_id: str) -> QuotaCounters:
        return self.ledger.cancel_subscription(tenant_id)

    def quota_counters(self, tenant_id: str) -> QuotaCounters:
        return self.ledger.get_counters(tenant_id)

    def quota_usage(self, tenant_id: str) -> list[QuotaUsage]:
        return self.gatekeeper.usage(tenant_id)

    def check_seat_available(self, tenant_id: str, active_seats: int) -> None:
        self.gatekeeper.check_seat_available(tenant_id, active_seats)

    def _read(self, operation: str):
        return session_scope(self._inventory_sessions, store=INVENTORY_STORE, operation=operation)


__all__ = ["InventoryAlerts", "PantryKernel"]
