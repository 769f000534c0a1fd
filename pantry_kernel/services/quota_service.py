"""
Quota services -- the ledger of historical creation counts and the
gatekeeper that compares them with tier ceilings.

Responsibility:
    ``QuotaLedger`` owns the TenantQuota rows: provisioning, atomic counter
    increments, and applying subscription changes pushed by the billing
    provider.  ``QuotaGatekeeper`` answers "may this tenant create one more
    X?" before an inventory write happens.

Architecture position:
    Kernel > Services.  Talks to the QUOTA store only.  Inventory services
    call the gatekeeper before a creation and the ledger after it, never
    inside their own inventory transaction.

Invariants enforced:
    - Counters are monotonic.  The only write to a counter is
      ``SET n = n + 1`` in a single UPDATE; nothing decrements.
    - Only constrained tiers are gated on items and families.  A ceiling at
      or above the catalog's unlimited threshold is never enforced.
    - Check and increment are separate calls.  Two concurrent creators can
      both pass the check and overshoot a ceiling by the number of racers.

Failure modes:
    - QuotaExceededError (LIMIT_REACHED) when a gated ceiling is met.
    - TenantQuotaNotFoundError when the tenant was never provisioned.
    - StorageUnavailableError when the quota store is unreachable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pantry_config import PlanCatalog, get_plan_catalog
from pantry_kernel.db.engine import QUOTA_STORE
from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import QuotaCounters
from pantry_kernel.exceptions import QuotaExceededError, TenantQuotaNotFoundError
from pantry_kernel.logging_config import get_logger
from pantry_kernel.models.quota import TenantQuota
from pantry_kernel.services.base import BaseService

logger = get_logger("services.quota")

# Share of a ceiling at which usage is reported as "near"
NEAR_LIMIT_RATIO = 0.9


class QuotaResource(str, Enum):
    """Resources with a cumulative creation ceiling."""

    ITEMS = "items"
    FAMILIES = "families"


_COUNTER_COLUMNS = {
    QuotaResource.ITEMS: TenantQuota.total_items_created,
    QuotaResource.FAMILIES: TenantQuota.total_families_created,
}

_LIMIT_COLUMNS = {
    QuotaResource.ITEMS: TenantQuota.max_items_limit,
    QuotaResource.FAMILIES: TenantQuota.max_clients_limit,
}


class UsageStatus(str, Enum):
    OK = "ok"
    NEAR = "near"
    REACHED = "reached"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class QuotaUsage:
    """Current usage of one ceiling, for billing banners and alerts."""

    resource: str
    current: int
    limit: int
    status: UsageStatus
    enforced: bool


def _load_row(session: Session, tenant_id: str) -> TenantQuota:
    row = session.execute(
        select(TenantQuota).where(TenantQuota.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if row is None:
        raise TenantQuotaNotFoundError(tenant_id)
    return row


class QuotaLedger(BaseService):
    """
    Per-tenant creation counters and ceilings.

    Contract:
        ``increment`` is called as a best-effort side effect after the
        creation it counts has committed in the inventory store.
    Guarantees:
        - ``increment`` is a single atomic UPDATE; concurrent increments
          never lose a count.
        - ``apply_subscription`` changes tier and ceilings only, never the
          counters.
    """

    store = QUOTA_STORE

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        catalog: PlanCatalog | None = None,
    ):
        super().__init__(session_factory, clock)
        self._catalog = catalog or get_plan_catalog()

    def provision_tenant(self, tenant_id: str, tier: str | None = None) -> QuotaCounters:
        """
        Create the tenant's ledger row with the tier's ceilings.

        Idempotent: an existing row is returned unchanged.
        """
        plan = self._catalog.get(tier)
        with self._transaction("quota.provision") as session:
            existing = session.execute(
                select(TenantQuota).where(TenantQuota.tenant_id == tenant_id)
            ).scalar_one_or_none()
            if existing is not None:
                return QuotaCounters.from_model(existing)

            savepoint = session.begin_nested()
            try:
                row = TenantQuota(
                    tenant_id=tenant_id,
                    tier=plan.tier,
                    total_items_created=0,
                    total_families_created=0,
                    max_items_limit=plan.limits.items,
                    max_clients_limit=plan.limits.clients,
                    max_users_limit=plan.limits.users,
                    updated_at=self._clock.now(),
                )
                session.add(row)
                session.flush()
                savepoint.commit()
            except IntegrityError:
                # Provisioned concurrently
                savepoint.rollback()
                row = _load_row(session, tenant_id)
                return QuotaCounters.from_model(row)

            logger.info("tenant_quota_provisioned", extra={"tenant_id": tenant_id, "tier": plan.tier})
            return QuotaCounters.from_model(row)

    def get_counters(self, tenant_id: str) -> QuotaCounters:
        with self._transaction("quota.read") as session:
            return QuotaCounters.from_model(_load_row(session, tenant_id))

    def increment(self, tenant_id: str, resource: QuotaResource) -> int:
        """
        Atomically add one to a creation counter.

        Returns:
            The counter value after the increment.
        Raises:
            TenantQuotaNotFoundError: if the tenant has no ledger row.
        """
        resource = QuotaResource(resource)
        column = _COUNTER_COLUMNS[resource]
        with self._transaction("quota.increment") as session:
            new_value = session.execute(
                update(TenantQuota)
                .where(TenantQuota.tenant_id == tenant_id)
                .values({column: column + 1, TenantQuota.updated_at: self._clock.now()})
                .returning(column)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if new_value is None:
                raise TenantQuotaNotFoundError(tenant_id)

        logger.info(
            "quota_counter_incremented",
            extra={"tenant_id": tenant_id, "resource": resource.value, "value": new_value},
        )
        return new_value

    def apply_subscription(self, tenant_id: str, tier: str | None) -> QuotaCounters:
        """
        Apply a tier change from the billing provider.

        Checkout completed and invoice paid pass the purchased tier; a
        deleted subscription passes None and drops back to the default
        tier.  Unknown tier names also fall back to the default tier.
        Counters are untouched.  A tenant without a ledger row is
        provisioned on the new tier.
        """
        plan = self._catalog.get(tier)
        with self._transaction("quota.apply_subscription") as session:
            updated = session.execute(
                update(TenantQuota)
                .where(TenantQuota.tenant_id == tenant_id)
                .values(
                    tier=plan.tier,
                    max_items_limit=plan.limits.items,
                    max_clients_limit=plan.limits.clients,
                    max_users_limit=plan.limits.users,
                    updated_at=self._clock.now(),
                )
                .returning(TenantQuota.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()

        if updated is None:
            logger.info("subscription_for_unprovisioned_tenant", extra={"tenant_id": tenant_id})
            self.provision_tenant(tenant_id, plan.tier)

        logger.info(
            "subscription_applied",
            extra={"tenant_id": tenant_id, "requested_tier": tier, "tier": plan.tier},
        )
        return self.get_counters(tenant_id)

    def cancel_subscription(self, tenant_id: str) -> QuotaCounters:
        """Subscription deleted: back to the default (free) tier."""
        return self.apply_subscription(tenant_id, None)


class QuotaGatekeeper(BaseService):
    """
    Admission checks against tier ceilings.

    Non-goals:
        - Does not reserve capacity.  A passed check is advisory until the
          creation commits and the ledger is incremented.
    """

    store = QUOTA_STORE

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        catalog: PlanCatalog | None = None,
    ):
        super().__init__(session_factory, clock)
        self._catalog = catalog or get_plan_catalog()

    def _ceiling(self, row: TenantQuota, column, plan_field: str) -> int:
        # A zeroed ceiling reads as "not set": use the plan's
        return getattr(row, column.key) or getattr(self._catalog.get(row.tier).limits, plan_field)

    def _limit(self, row: TenantQuota, resource: QuotaResource) -> int:
        plan_field = "items" if resource is QuotaResource.ITEMS else "clients"
        return self._ceiling(row, _LIMIT_COLUMNS[resource], plan_field)

    def _enforced(self, row: TenantQuota, limit: int) -> bool:
        return self._catalog.get(row.tier).constrained and not self._catalog.is_unlimited(limit)

    def check_can_create(self, tenant_id: str, resource: QuotaResource) -> None:
        """
        Raise if creating one more ``resource`` would pass the ceiling.

        Raises:
            QuotaExceededError: constrained tier with current >= limit.
            TenantQuotaNotFoundError: tenant never provisioned.
        """
        resource = QuotaResource(resource)
        with self._transaction("quota.check") as session:
            row = _load_row(session, tenant_id)
            current = getattr(row, _COUNTER_COLUMNS[resource].key)
            limit = self._limit(row, resource)
            tier = row.tier
            enforced = self._enforced(row, limit)

        if enforced and current >= limit:
            logger.warning(
                "quota_exceeded",
                extra={
                    "tenant_id": tenant_id,
                    "resource": resource.value,
                    "limit": limit,
                    "current": current,
                    "tier": tier,
                },
            )
            raise QuotaExceededError(tenant_id, resource.value, limit, current, tier)

    def check_seat_available(self, tenant_id: str, active_seats: int) -> None:
        """
        Raise if adding a team member would pass the seat ceiling.

        Seats are the active membership count supplied by the identity
        provider, not a historical counter, and are gated on every tier.
        """
        with self._transaction("quota.check_seats") as session:
            row = _load_row(session, tenant_id)
            limit = self._ceiling(row, TenantQuota.max_users_limit, "users")
            tier = row.tier

        if not self._catalog.is_unlimited(limit) and active_seats >= limit:
            logger.warning(
                "quota_exceeded",
                extra={
                    "tenant_id": tenant_id,
                    "resource": "users",
                    "limit": limit,
                    "current": active_seats,
                    "tier": tier,
                },
            )
            raise QuotaExceededError(tenant_id, "users", limit, active_seats, tier)

    def usage(self, tenant_id: str) -> list[QuotaUsage]:
        """Usage of each creation ceiling: ok, near (>= 90%), reached, or unlimited."""
        with self._transaction("quota.usage") as session:
            row = _load_row(session, tenant_id)
            report = []
            for resource in QuotaResource:
                current = getattr(row, _COUNTER_COLUMNS[resource].key)
                limit = self._limit(row, resource)
                if self._catalog.is_unlimited(limit):
                    status = UsageStatus.UNLIMITED
                elif current >= limit:
                    status = UsageStatus.REACHED
                elif current >= limit * NEAR_LIMIT_RATIO:
                    status = UsageStatus.NEAR
                else:
                    status = UsageStatus.OK
                report.append(
                    QuotaUsage(
                        resource=resource.value,
                        current=current,
                        limit=limit,
                        status=status,
                        enforced=self._enforced(row, limit),
                    )
                )
            return report
