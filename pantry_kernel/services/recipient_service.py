"""
RecipientService -- the tenant's directory of recipient households.

Responsibility:
    Registers households, refreshes them on each visit, and reports whether
    a checkout introduced a new one (the event that counts against the
    family ceiling).

Architecture position:
    Kernel > Services.  Inventory store for profiles; calls the quota
    gatekeeper before, and the quota ledger after, a profile is created.

Invariants enforced:
    - (tenant_id, recipient_code) is unique, ignoring case; every lookup
      matches codes case-insensitively.  When two callers register the
      same household at once, the one whose INSERT wins the unique index is
      the only one that increments the family counter.
    - Anonymous sentinels (``SYS`` / ``anonymous``) never create a profile.
    - household_size >= 1.

Failure modes:
    - QuotaExceededError before any write when a new household would pass a
      constrained tier's family ceiling.
    - RecipientNotFoundError from ``get_recipient``.
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import RecipientSpec, RecipientUpsert, RecipientView
from pantry_kernel.domain.values import coerce_decimal
from pantry_kernel.exceptions import MissingFieldError, RecipientNotFoundError, ValidationError
from pantry_kernel.logging_config import get_logger
from pantry_kernel.models.recipient import Recipient
from pantry_kernel.services.base import BaseService
from pantry_kernel.services.quota_service import QuotaGatekeeper, QuotaLedger, QuotaResource
from pantry_kernel.services.side_effects import SideEffects

logger = get_logger("services.recipient")


def _same_code(code: str):
    return func.lower(Recipient.recipient_code) == code.strip().lower()


def _household_size(value: object) -> int:
    size = coerce_decimal(value, default=None)
    if size is None or size < 1 or size != size.to_integral_value():
        raise ValidationError("household_size", f"must be a whole number >= 1, got {value!r}")
    return int(size)


class RecipientService(BaseService):
    """
    Recipient profile management.

    Guarantees:
        - ``upsert_for_checkout`` reports ``created=True`` for exactly one
          caller per new household.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gatekeeper: QuotaGatekeeper,
        ledger: QuotaLedger,
        clock: Clock | None = None,
        side_effects: SideEffects | None = None,
    ):
        super().__init__(session_factory, clock)
        self._gatekeeper = gatekeeper
        self._ledger = ledger
        self._side_effects = side_effects or SideEffects()

    def exists(self, tenant_id: str, recipient_code: str) -> bool:
        with self._transaction("recipient.exists") as session:
            count = session.execute(
                select(func.count())
                .select_from(Recipient)
                .where(Recipient.tenant_id == tenant_id, _same_code(recipient_code))
            ).scalar_one()
        return count > 0

    def get_recipient(self, tenant_id: str, recipient_code: str) -> RecipientView:
        with self._transaction("recipient.get") as session:
            recipient = session.execute(
                select(Recipient).where(
                    Recipient.tenant_id == tenant_id,
                    _same_code(recipient_code),
                )
            ).scalar_one_or_none()
            if recipient is None:
                raise RecipientNotFoundError(recipient_code)
            return RecipientView.from_model(recipient)

    def list_recipients(
        self,
        tenant_id: str,
        *,
        search: str | None = None,
        active_only: bool = True,
        limit: int = 100,
    ) -> list[RecipientView]:
        """Profiles sorted by last name, optionally filtered by a name/code fragment."""
        stmt = select(Recipient).where(Recipient.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(Recipient.is_active.is_(True))
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                func.lower(Recipient.first_name).like(pattern)
                | func.lower(Recipient.last_name).like(pattern)
                | func.lower(Recipient.recipient_code).like(pattern)
            )
        stmt = stmt.order_by(Recipient.last_name, Recipient.first_name).limit(limit)
        with self._transaction("recipient.list") as session:
            return [RecipientView.from_model(r) for r in session.execute(stmt).scalars()]

    def register_recipient(self, tenant_id: str, spec: RecipientSpec) -> RecipientView:
        """
        Register a household explicitly (client directory).

        An existing profile with the same code is refreshed, not duplicated.
        """
        outcome = self.upsert_for_checkout(tenant_id, spec, touch_visit=False)
        if outcome.recipient is None:
            raise MissingFieldError("recipient_code")
        return outcome.recipient

    def upsert_for_checkout(
        self,
        tenant_id: str,
        spec: RecipientSpec,
        *,
        touch_visit: bool = True,
    ) -> RecipientUpsert:
        """
        Create the household's profile on first visit, refresh it otherwise.

        Only the fields set on the RecipientSpec are refreshed on an
        existing profile; a returning household can be identified by code
        alone.

        Returns:
            RecipientUpsert(recipient=None, created=False) for anonymous
            checkouts.
        Raises:
            MissingFieldError: new household without a first name.
            QuotaExceededError: when the household is new and the family
                ceiling is met.  Nothing is written.
        """
        if spec.is_anonymous:
            return RecipientUpsert(recipient=None, created=False)

        code = spec.code
        profile: dict = {}
        if spec.first_name.strip():
            profile["first_name"] = spec.first_name.strip()
            profile["last_name"] = spec.last_name.strip()
        if spec.household_size is not None:
            profile["household_size"] = _household_size(spec.household_size)
        for name in ("address", "email", "phone"):
            value = getattr(spec, name)
            if value is not None:
                profile[name] = value

        if not self.exists(tenant_id, code):
            if "first_name" not in profile:
                raise MissingFieldError("first_name")
            self._gatekeeper.check_can_create(tenant_id, QuotaResource.FAMILIES)

        now = self._clock.now()
        visit = now if touch_visit else None
        created = False
        with self._transaction("recipient.upsert") as session:
            if not self._refresh_in(session, tenant_id, code, profile, visit):
                if "first_name" not in profile:
                    # Profile vanished between the existence check and here
                    raise RecipientNotFoundError(code)
                savepoint = session.begin_nested()
                try:
                    session.add(
                        Recipient(
                            tenant_id=tenant_id,
                            recipient_code=code,
                            first_name=profile["first_name"],
                            last_name=profile.get("last_name", ""),
                            household_size=profile.get("household_size", 1),
                            address=profile.get("address") or "",
                            email=profile.get("email"),
                            phone=profile.get("phone"),
                            is_active=True,
                            last_visit=visit,
                            created_at=now,
                        )
                    )
                    session.flush()
                    savepoint.commit()
                    created = True
                except IntegrityError:
                    logger.debug(
                        "recipient_insert_race_retry",
                        extra={"tenant_id": tenant_id, "recipient_code": code},
                    )
                    savepoint.rollback()
                    self._refresh_in(session, tenant_id, code, profile, visit)

            recipient = session.execute(
                select(Recipient).where(
                    Recipient.tenant_id == tenant_id,
                    _same_code(code),
                )
            ).scalar_one()
            view = RecipientView.from_model(recipient)

        if created:
            logger.info("recipient_created", extra={"tenant_id": tenant_id, "recipient_code": code})
            self._side_effects.run(
                "quota.increment_families",
                self._ledger.increment,
                tenant_id,
                QuotaResource.FAMILIES,
            )
        return RecipientUpsert(recipient=view, created=created)

    def _refresh_in(self, session, tenant_id, code, profile, visit) -> bool:
        values = dict(profile)
        values["is_active"] = True
        if visit is not None:
            values["last_visit"] = visit
        refreshed = session.execute(
            update(Recipient)
            .where(Recipient.tenant_id == tenant_id, _same_code(code))
            .values(**values)
            .returning(Recipient.id)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()
        return refreshed is not None

    def deactivate_recipient(self, tenant_id: str, recipient_code: str) -> None:
        """Hide a household from the directory.  The family counter is not lowered."""
        with self._transaction("recipient.deactivate") as session:
            hit = session.execute(
                update(Recipient)
                .where(Recipient.tenant_id == tenant_id, _same_code(recipient_code))
                .values(is_active=False)
                .returning(Recipient.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if hit is None:
                raise RecipientNotFoundError(recipient_code)
        logger.info(
            "recipient_deactivated",
            extra={"tenant_id": tenant_id, "recipient_code": recipient_code},
        )
