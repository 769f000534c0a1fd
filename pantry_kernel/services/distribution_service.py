"""
DistributionCoordinator -- multi-line checkout.

Responsibility:
    Turns a cart (recipient + lines) into committed withdrawals, one
    DistributionRecord and one ``distributed`` audit entry per line, and
    reports the outcome line by line.

Architecture position:
    Kernel > Services.  Orchestrates RecipientService (profile upsert and
    family ceiling), LotService (guarded withdrawal) and AuditLogService
    (best-effort).  Owns no transaction of its own.

Invariants enforced:
    - Fail-fast before any line: an empty cart, a bad recipient spec or a
      met family ceiling aborts the call with zero writes.
    - No cross-line atomicity: each line is its own inventory transaction.
      A failing line is reported, never raised, and never rolls back the
      lines before it.
    - Every succeeded line has exactly one DistributionRecord (written in
      the withdrawal's transaction) and one attempted audit entry.

Failure modes:
    - EmptyCartError, ValidationError, QuotaExceededError raised before any
      line is processed.
    - StorageUnavailableError on a line is reported as a retryable
      LineFailure; re-issuing only the failed lines is safe.
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session, sessionmaker

from pantry_kernel.domain.clock import Clock
from pantry_kernel.domain.dtos import (
    CartLine,
    CheckoutResult,
    LineFailure,
    LineSuccess,
    RecipientSpec,
    RecipientUpsert,
)
from pantry_kernel.domain.values import ActionType, Unit
from pantry_kernel.exceptions import EmptyCartError, PantryKernelError
from pantry_kernel.logging_config import LogContext, get_logger
from pantry_kernel.services.audit_service import AuditLogService
from pantry_kernel.services.base import BaseService
from pantry_kernel.services.lot_service import DistributionTarget, LotService
from pantry_kernel.services.recipient_service import RecipientService

logger = get_logger("services.distribution")


class DistributionCoordinator(BaseService):
    """
    Checkout orchestration.

    Contract:
        ``commit_distribution`` either raises before touching stock, or
        returns a CheckoutResult covering every line.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lots: LotService,
        recipients: RecipientService,
        audit: AuditLogService,
        clock: Clock | None = None,
    ):
        super().__init__(session_factory, clock)
        self._lots = lots
        self._recipients = recipients
        self._audit = audit

    def commit_distribution(
        self,
        tenant_id: str,
        recipient: RecipientSpec,
        lines: Sequence[CartLine],
    ) -> CheckoutResult:
        """
        Commit a cart for one recipient.

        Lines are numbered from 1 in the order given.

        Raises:
            EmptyCartError: no lines.
            QuotaExceededError: the recipient is new and the tenant is at
                its family ceiling.  No line is processed.
        """
        if not lines:
            raise EmptyCartError()

        with LogContext.bind(tenant_id=tenant_id, operation="commit_distribution"):
            upsert = self._recipients.upsert_for_checkout(tenant_id, recipient)
            recipient_name = self._recipient_name(recipient, upsert)
            # The stored profile decides the spelling of a returning code
            recipient_code = upsert.recipient.recipient_code if upsert.recipient else recipient.code

            logger.info(
                "checkout_started",
                extra={
                    "recipient_code": recipient_code,
                    "recipient_created": upsert.created,
                    "line_count": len(lines),
                },
            )

            succeeded: list[LineSuccess] = []
            failed: list[LineFailure] = []
            for number, line in enumerate(lines, start=1):
                try:
                    succeeded.append(
                        self._commit_line(tenant_id, number, line, recipient_code, recipient_name, upsert)
                    )
                except PantryKernelError as exc:
                    logger.warning(
                        "checkout_line_failed",
                        extra={
                            "line_number": number,
                            "lot_id": str(line.lot_id) if line.lot_id else None,
                            "error_code": exc.code,
                        },
                    )
                    failed.append(
                        LineFailure(
                            line_number=number,
                            lot_id=line.lot_id,
                            code=exc.code,
                            category=exc.category,
                            message=str(exc),
                            retryable=exc.retryable,
                        )
                    )

            result = CheckoutResult(
                tenant_id=tenant_id,
                recipient_code=recipient_code,
                recipient_created=upsert.created,
                succeeded=tuple(succeeded),
                failed=tuple(failed),
            )
            logger.info(
                "checkout_completed",
                extra={
                    "succeeded_lines": result.succeeded_lines,
                    "failed_lines": result.failed_lines,
                    "partial": result.is_partial,
                },
            )
            return result

    def _commit_line(
        self,
        tenant_id: str,
        number: int,
        line: CartLine,
        recipient_code: str,
        recipient_name: str,
        upsert: RecipientUpsert,
    ) -> LineSuccess:
        unit = Unit.parse(line.unit) if line.unit else None
        withdrawal = self._lots.withdraw(
            tenant_id,
            line.lot_id,
            line.quantity,
            DistributionTarget(
                recipient_code=recipient_code,
                recipient_name=recipient_name,
                reason=line.reason,
                unit=unit,
            ),
        )
        self._audit.record_best_effort(
            tenant_id,
            ActionType.DISTRIBUTED,
            withdrawal.lot,
            previous_quantity=withdrawal.previous_quantity,
            new_quantity=withdrawal.new_quantity,
            quantity_changed=withdrawal.quantity,
            metric_unit=unit,
            reason=line.reason,
            recipient_name=recipient_name,
            recipient_code=recipient_code,
            household_size=upsert.household_size,
        )
        return LineSuccess(
            line_number=number,
            lot_id=line.lot_id,
            quantity=withdrawal.quantity,
            previous_quantity=withdrawal.previous_quantity,
            new_quantity=withdrawal.new_quantity,
            lot_deleted=withdrawal.lot_deleted,
            distribution_record_id=withdrawal.distribution_record_id,
        )

    @staticmethod
    def _recipient_name(spec: RecipientSpec, upsert: RecipientUpsert) -> str:
        if upsert.recipient is not None and upsert.recipient.display_name:
            return upsert.recipient.display_name
        return spec.display_name
