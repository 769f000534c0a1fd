"""
Tests for DistributionCoordinator.commit_distribution.

Covers:
- Full-lot checkout deletes the Lot (one record, one audit entry)
- Per-line outcomes: a bad line never rolls back a good one
- Family ceiling aborts the whole call with zero writes
- Guarded decrement never drives a Lot negative
- Audit failure never reverses a committed line
- Recipient upsert counts a household exactly once
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from pantry_kernel.domain.dtos import CartLine, RecipientSpec
from pantry_kernel.domain.values import ActionType
from pantry_kernel.exceptions import (
    EmptyCartError,
    MissingFieldError,
    QuotaExceededError,
    StorageUnavailableError,
)


def jane(code="C-100", **fields):
    values = {"first_name": "Jane", "last_name": "Doe", "household_size": 4}
    values.update(fields)
    return RecipientSpec(recipient_code=code, **values)


class TestCommitDistribution:
    def test_full_lot_checkout_deletes_lot(self, kernel, tenant, ingest):
        lot = ingest(quantity=3, barcode="123")

        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 3)])

        assert result.succeeded_lines == [1]
        assert result.succeeded[0].lot_deleted
        assert kernel.list_lots(tenant) == []

        (record,) = kernel.list_recent_distributions(tenant)
        assert record.quantity_distributed == Decimal("3")
        assert result.distribution_record_ids == [record.record_id]

        distributed = [e for e in kernel.list_recent_audit(tenant) if e.action_type == ActionType.DISTRIBUTED.value]
        assert len(distributed) == 1
        assert distributed[0].new_quantity == Decimal("0")
        assert distributed[0].previous_quantity == Decimal("3")

    def test_partial_decrement(self, kernel, tenant, ingest):
        lot = ingest(quantity=10, barcode="123")

        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, "2.5")])

        line = result.succeeded[0]
        assert (line.previous_quantity, line.new_quantity) == (Decimal("10"), Decimal("7.5"))
        assert not line.lot_deleted
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("7.5")

    def test_line_against_deleted_lot_fails_alone(self, kernel, tenant, ingest):
        good = ingest(quantity=5, barcode="1")
        gone = ingest(quantity=5, barcode="2")
        kernel.delete_lot(tenant, gone.lot_id)

        result = kernel.commit_distribution(
            tenant,
            RecipientSpec.anonymous(),
            [CartLine(good.lot_id, 1), CartLine(gone.lot_id, 1)],
        )

        assert result.succeeded_lines == [1]
        assert result.failed_lines == [2]
        assert result.is_partial
        assert result.failed[0].code == "LOT_NOT_FOUND"
        assert result.failed[0].category == "not_found"
        assert not result.failed[0].retryable
        assert len(kernel.list_recent_distributions(tenant)) == 1
        distributed = [e for e in kernel.list_recent_audit(tenant) if e.action_type == ActionType.DISTRIBUTED.value]
        assert len(distributed) == 1

    def test_failure_on_first_line_does_not_stop_second(self, kernel, tenant, ingest):
        lot = ingest(quantity=2, barcode="1")

        result = kernel.commit_distribution(
            tenant,
            RecipientSpec.anonymous(),
            [CartLine(uuid4(), 1), CartLine(lot.lot_id, 2)],
        )

        assert result.failed_lines == [1]
        assert result.succeeded_lines == [2]

    def test_never_negative(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")

        result = kernel.commit_distribution(
            tenant,
            RecipientSpec.anonymous(),
            [CartLine(lot.lot_id, 3), CartLine(lot.lot_id, 3)],
        )

        assert result.succeeded_lines == [1]
        assert result.failed[0].code == "INSUFFICIENT_STOCK"
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("2")

    def test_invalid_line_quantity_reported(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 0)])
        assert result.failed[0].code == "INVALID_QUANTITY"
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("5")

    def test_empty_cart(self, kernel, tenant):
        with pytest.raises(EmptyCartError):
            kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [])

    def test_storage_failure_is_retryable_line(self, kernel, tenant, ingest, monkeypatch):
        lot = ingest(quantity=5, barcode="1")

        def unavailable(*args, **kwargs):
            raise StorageUnavailableError("inventory", "lot.withdraw", "OperationalError")

        monkeypatch.setattr(kernel.lots, "withdraw", unavailable)
        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 1)])

        assert result.failed[0].retryable
        assert result.failed[0].category == "storage"

    def test_audit_failure_does_not_reverse_line(self, kernel, tenant, ingest, monkeypatch, captured_logs):
        lot = ingest(quantity=5, barcode="1")

        def boom(*args, **kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr(kernel.audit, "record", boom)
        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 2)])

        assert result.all_succeeded
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("3")
        assert len(kernel.list_recent_distributions(tenant)) == 1
        assert any(r["message"] == "side_effect_failed" for r in captured_logs())


class TestCheckoutMetrics:
    def test_unit_override_drives_metrics(self, kernel, tenant, ingest):
        lot = ingest(name="Cheese", quantity=40, barcode="1", unit="units")

        kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 16, unit="oz")])

        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.unit == "oz"
        assert entry.impact.standardized_weight == Decimal("1.00")
        assert entry.impact.estimated_value == Decimal("2.50")
        (record,) = kernel.list_recent_distributions(tenant)
        assert record.unit == "oz"

    def test_people_served_from_household(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(tenant, jane(household_size=4), [CartLine(lot.lot_id, 1)])

        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.impact.people_served == 4
        assert entry.recipient_name == "Jane Doe"
        assert entry.recipient_code == "C-100"

    def test_anonymous_serves_one(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 1)])

        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.impact.people_served == 1
        (record,) = kernel.list_recent_distributions(tenant)
        assert (record.recipient_code, record.recipient_name) == ("SYS", "Walk-in")

    def test_emergency_reason_tagged(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(
            tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 1, reason="emergency")]
        )
        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.tags == ("Urgent",)
        assert entry.distribution_reason == "emergency"


class TestRecipientAndFamilyCeiling:
    def test_new_recipient_counted_once(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")

        first = kernel.commit_distribution(tenant, jane(), [CartLine(lot.lot_id, 1)])
        second = kernel.commit_distribution(tenant, RecipientSpec(recipient_code="C-100"), [CartLine(lot.lot_id, 1)])

        assert first.recipient_created
        assert not second.recipient_created
        assert kernel.quota_counters(tenant).total_families_created == 1

    def test_code_case_does_not_split_household(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")

        kernel.commit_distribution(tenant, jane("AB-12"), [CartLine(lot.lot_id, 1)])
        again = kernel.commit_distribution(tenant, jane("ab-12"), [CartLine(lot.lot_id, 1)])

        assert not again.recipient_created
        assert again.recipient_code == "AB-12"
        assert [r.recipient_code for r in kernel.list_recipients(tenant)] == ["AB-12"]
        assert kernel.quota_counters(tenant).total_families_created == 1
        assert {r.recipient_code for r in kernel.list_recent_distributions(tenant)} == {"AB-12"}
        assert len(kernel.list_recent_distributions(tenant, recipient_code="ab-12")) == 2

    def test_anonymous_never_counted(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 1)])
        kernel.commit_distribution(tenant, RecipientSpec(recipient_code="anonymous"), [CartLine(lot.lot_id, 1)])

        assert kernel.quota_counters(tenant).total_families_created == 0
        assert kernel.list_recipients(tenant) == []

    def test_family_ceiling_aborts_with_zero_writes(self, kernel, tenant, ingest, set_quota):
        lot = ingest(quantity=5, barcode="1")
        set_quota(tenant, total_families_created=100)
        audit_before = len(kernel.list_recent_audit(tenant))

        with pytest.raises(QuotaExceededError) as exc_info:
            kernel.commit_distribution(tenant, jane(), [CartLine(lot.lot_id, 1)])

        assert exc_info.value.resource == "families"
        assert kernel.list_recent_distributions(tenant) == []
        assert len(kernel.list_recent_audit(tenant)) == audit_before
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("5")
        assert kernel.list_recipients(tenant) == []

    def test_returning_recipient_allowed_at_ceiling(self, kernel, tenant, ingest, set_quota):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(tenant, jane(), [CartLine(lot.lot_id, 1)])
        set_quota(tenant, total_families_created=100)

        result = kernel.commit_distribution(tenant, jane(), [CartLine(lot.lot_id, 1)])
        assert result.all_succeeded

    def test_anonymous_allowed_at_ceiling(self, kernel, tenant, ingest, set_quota):
        lot = ingest(quantity=5, barcode="1")
        set_quota(tenant, total_families_created=100)
        result = kernel.commit_distribution(tenant, RecipientSpec.anonymous(), [CartLine(lot.lot_id, 1)])
        assert result.all_succeeded

    def test_new_recipient_needs_first_name(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        with pytest.raises(MissingFieldError):
            kernel.commit_distribution(tenant, RecipientSpec(recipient_code="C-9"), [CartLine(lot.lot_id, 1)])
        assert kernel.list_recent_distributions(tenant) == []

    def test_returning_visit_refreshes_profile(self, kernel, tenant, ingest):
        lot = ingest(quantity=5, barcode="1")
        kernel.commit_distribution(tenant, jane(household_size=2), [CartLine(lot.lot_id, 1)])
        kernel.commit_distribution(
            tenant, RecipientSpec(recipient_code="C-100", household_size=5), [CartLine(lot.lot_id, 1)]
        )

        (profile,) = kernel.list_recipients(tenant)
        assert profile.household_size == 5
        assert profile.first_name == "Jane"
        assert kernel.list_recent_audit(tenant)[0].impact.people_served == 5
