"""
Tests for LotService: merge-or-create ingestion, edits and manual removal.

Covers:
- Merge law (same key restocks one Lot) and distinct keys
- Validation before any write
- Item ceiling on new Lots only
- Write-through barcode cache, internal codes never cached
- Best-effort side effects never undo the ingestion
- update_lot diffs and key conflicts
- delete_lot with and without recipient metadata
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from pantry_kernel.domain.dtos import LookupSource, RemovalMetadata
from pantry_kernel.domain.values import ActionType, Unit, is_internal_barcode
from pantry_kernel.exceptions import (
    InvalidQuantityError,
    InvalidUnitError,
    LotKeyConflictError,
    LotNotFoundError,
    MissingFieldError,
    QuotaExceededError,
    TenantQuotaNotFoundError,
    ValidationError,
)
from pantry_kernel.services.side_effects import SideEffects
from tests.conftest import OTHER_TENANT


class TestMergeOrCreate:
    def test_restock_same_key_merges(self, kernel, tenant, ingest):
        first = ingest(quantity=10, barcode="123", expiration_date="2025-06-01")
        assert first.quantity == Decimal("10")

        second = ingest(quantity=5, barcode="123", expiration_date="2025-06-01")

        assert second.lot_id == first.lot_id
        assert second.quantity == Decimal("15")
        assert len(kernel.list_lots(tenant)) == 1

    def test_deltas_five_then_three(self, kernel, tenant, ingest):
        ingest(quantity=5, barcode="777", expiration_date=date(2025, 3, 1))
        lot = ingest(quantity=3, barcode="777", expiration_date=date(2025, 3, 1))
        assert lot.quantity == Decimal("8")
        assert len(kernel.list_lots(tenant)) == 1

    def test_expiration_normalized_to_utc_date(self, kernel, tenant, ingest):
        a = ingest(quantity=1, barcode="555", expiration_date="2025-06-01T00:00:00Z")
        b = ingest(
            quantity=1,
            barcode="555",
            expiration_date=datetime(2025, 6, 1, 8, 30, tzinfo=timezone.utc),
        )
        assert a.lot_id == b.lot_id
        assert b.expiration_date == date(2025, 6, 1)

    def test_different_expiration_creates_new_lot(self, kernel, tenant, ingest):
        a = ingest(quantity=1, barcode="123", expiration_date="2025-06-01")
        b = ingest(quantity=1, barcode="123", expiration_date="2025-07-01")
        c = ingest(quantity=1, barcode="123")

        assert len({a.lot_id, b.lot_id, c.lot_id}) == 3
        assert c.expiration_date is None

    def test_no_expiration_lots_merge(self, ingest):
        a = ingest(quantity=2, barcode="999")
        b = ingest(quantity=2, barcode="999", expiration_date="")
        assert a.lot_id == b.lot_id
        assert b.quantity == Decimal("4")

    def test_fractional_quantities_rounded_to_three_places(self, ingest):
        ingest(quantity="0.1", barcode="42", unit="kg")
        lot = ingest(quantity="0.2", barcode="42", unit="kg")
        assert lot.quantity == Decimal("0.300")

    def test_restock_refreshes_descriptive_fields(self, ingest):
        ingest(name="beans", category="Misc", quantity=1, barcode="321", storage_location="A1")
        lot = ingest(name="Black Beans", category="Canned", quantity=1, barcode="321", storage_location="B2")
        assert (lot.name, lot.category, lot.storage_location) == ("Black Beans", "Canned", "B2")

    def test_missing_barcode_gets_internal_code(self, ingest):
        lot = ingest(quantity=1)
        assert is_internal_barcode(lot.barcode)

    def test_tenants_are_isolated(self, kernel, tenant, ingest):
        kernel.provision_tenant(OTHER_TENANT)
        mine = ingest(quantity=1, barcode="123")
        theirs = kernel.ingest_lot(OTHER_TENANT, name="Beans", category="Canned", quantity=4, barcode="123")

        assert mine.lot_id != theirs.lot_id
        assert [lot.quantity for lot in kernel.list_lots(tenant)] == [Decimal("1")]


class TestIngestValidation:
    @pytest.mark.parametrize(
        "fields, error",
        [
            ({"name": "  "}, MissingFieldError),
            ({"category": ""}, MissingFieldError),
            ({"quantity": 0}, InvalidQuantityError),
            ({"quantity": -2}, InvalidQuantityError),
            ({"quantity": "NaN"}, InvalidQuantityError),
            ({"unit": "gallons"}, InvalidUnitError),
            ({"expiration_date": "next tuesday"}, ValidationError),
        ],
    )
    def test_rejected_before_write(self, kernel, tenant, fields, error):
        values = {"name": "Rice", "category": "Grains", "quantity": 1, "barcode": "1"}
        values.update(fields)

        with pytest.raises(error):
            kernel.ingest_lot(tenant, **values)

        assert kernel.list_lots(tenant) == []
        assert kernel.quota_counters(tenant).total_items_created == 0
        assert kernel.list_recent_audit(tenant) == []

    def test_validation_error_category(self, kernel, tenant):
        with pytest.raises(ValidationError) as exc_info:
            kernel.ingest_lot(tenant, name="Rice", category="Grains", quantity=0)
        assert exc_info.value.category == "validation"
        assert exc_info.value.code == "INVALID_QUANTITY"


class TestItemCeiling:
    def test_one_increment_per_new_lot(self, kernel, tenant, ingest):
        ingest(quantity=1, barcode="1")
        ingest(quantity=1, barcode="1")
        ingest(quantity=1, barcode="2")
        assert kernel.quota_counters(tenant).total_items_created == 2

    def test_new_lot_at_ceiling_rejected(self, kernel, tenant, ingest, set_quota):
        set_quota(tenant, total_items_created=50)

        with pytest.raises(QuotaExceededError) as exc_info:
            ingest(quantity=1, barcode="new")

        assert exc_info.value.resource == "items"
        assert exc_info.value.category == "quota"
        assert kernel.list_lots(tenant) == []

    def test_restock_at_ceiling_allowed(self, kernel, tenant, ingest, set_quota):
        ingest(quantity=1, barcode="old")
        set_quota(tenant, total_items_created=50)

        lot = ingest(quantity=4, barcode="old")
        assert lot.quantity == Decimal("5")
        assert kernel.quota_counters(tenant).total_items_created == 50

    def test_paid_tier_skips_check(self, kernel, paid_tenant, set_quota):
        set_quota(paid_tenant, total_items_created=5000)
        lot = kernel.ingest_lot(paid_tenant, name="Oats", category="Grains", quantity=1, barcode="9")
        assert lot.quantity == Decimal("1")

    def test_unprovisioned_tenant(self, kernel, stores):
        with pytest.raises(TenantQuotaNotFoundError):
            kernel.ingest_lot("ghost", name="Oats", category="Grains", quantity=1)

    def test_deleting_never_lowers_counter(self, kernel, tenant, ingest):
        lot = ingest(quantity=1, barcode="1")
        kernel.delete_lot(tenant, lot.lot_id)
        assert kernel.quota_counters(tenant).total_items_created == 1


class TestSideEffects:
    def test_runner_forwards_name_keyword(self):
        seen = {}

        def remember(barcode, *, name):
            seen[barcode] = name

        assert SideEffects().run("barcode_cache.remember", remember, "0123", name="Oats")
        assert seen == {"0123": "Oats"}

    def test_ingestion_writes_cache_and_audit(self, kernel, tenant, ingest):
        lot = ingest(name="Oats", quantity=3, barcode="123")

        assert kernel.lookup_barcode(tenant, "123").source is LookupSource.CACHE
        (entry,) = kernel.list_recent_audit(tenant)
        assert entry.action_type == ActionType.ADDED.value
        assert entry.item_id == lot.lot_id
        assert kernel.side_effects.failure_count == 0

    def test_external_barcode_cached(self, kernel, tenant, ingest):
        ingest(name="Peanut Butter", category="Spreads", quantity=1, barcode="0123", storage_location="Shelf 3")

        found = kernel.lookup_barcode(tenant, "0123")
        assert found.source is LookupSource.CACHE
        assert (found.name, found.category, found.storage_location) == ("Peanut Butter", "Spreads", "Shelf 3")

    def test_internal_barcode_not_cached(self, kernel, tenant, ingest):
        lot = ingest(quantity=1)
        found = kernel.lookup_barcode(tenant, lot.barcode)
        assert found.source is LookupSource.LIVE_LOT
        assert found.lot_id == lot.lot_id

    def test_added_audit_entries(self, kernel, tenant, ingest):
        ingest(quantity=10, barcode="123", unit="lbs")
        ingest(quantity=5, barcode="123", unit="lbs")

        restock, create = kernel.list_recent_audit(tenant)
        assert create.action_type == ActionType.ADDED.value
        assert (create.previous_quantity, create.new_quantity) == (Decimal("0"), Decimal("10"))
        assert (restock.previous_quantity, restock.quantity_changed, restock.new_quantity) == (
            Decimal("10"),
            Decimal("5"),
            Decimal("15"),
        )
        assert restock.impact.waste_diverted is True
        assert restock.impact.standardized_weight == Decimal("5.00")
        assert restock.impact.estimated_value == Decimal("12.50")
        assert restock.impact.people_served == 0

    def test_failing_cache_does_not_undo_ingestion(self, kernel, tenant, ingest, monkeypatch, captured_logs):
        def boom(*args, **kwargs):
            raise RuntimeError("cache down")

        monkeypatch.setattr(kernel.barcode_cache, "remember", boom)
        lot = ingest(quantity=3, barcode="123")

        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("3")
        failures = [r for r in captured_logs() if r["message"] == "side_effect_failed"]
        assert failures[0]["side_effect"] == "barcode_cache.remember"

    def test_failing_quota_increment_does_not_undo_ingestion(self, kernel, tenant, ingest, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("quota store down")

        monkeypatch.setattr(kernel.ledger, "increment", boom)
        lot = ingest(quantity=3, barcode="123")

        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("3")
        assert kernel.quota_counters(tenant).total_items_created == 0
        assert kernel.side_effects.failure_count == 1

    def test_failing_audit_does_not_undo_ingestion(self, kernel, tenant, ingest, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("audit down")

        monkeypatch.setattr(kernel.audit, "record", boom)
        lot = ingest(quantity=3, barcode="123")

        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("3")
        assert kernel.list_recent_audit(tenant) == []

    def test_lifecycle_logged(self, ingest, captured_logs):
        ingest(quantity=1, barcode="1")
        ingest(quantity=1, barcode="1")
        messages = [r["message"] for r in captured_logs()]
        assert "lot_created" in messages
        assert "lot_restocked" in messages


class TestUpdateLot:
    def test_records_old_new_diff(self, kernel, tenant, ingest):
        lot = ingest(quantity=10, barcode="123", storage_location="A1")

        updated = kernel.update_lot(tenant, lot.lot_id, quantity=12, storage_location="B2")

        assert updated.quantity == Decimal("12")
        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.action_type == ActionType.UPDATED.value
        assert set(entry.changes) == {"quantity", "storage_location"}
        assert Decimal(entry.changes["quantity"]["old"]) == Decimal("10")
        assert Decimal(entry.changes["quantity"]["new"]) == Decimal("12")
        assert entry.changes["storage_location"] == {"old": "A1", "new": "B2"}

    def test_noop_edit_writes_nothing(self, kernel, tenant, ingest):
        lot = ingest(quantity=10, barcode="123", storage_location="A1")
        before = len(kernel.list_recent_audit(tenant))

        same = kernel.update_lot(tenant, lot.lot_id, quantity="10", storage_location="A1")

        assert same.quantity == Decimal("10")
        assert len(kernel.list_recent_audit(tenant)) == before

    def test_unit_and_expiration_edit(self, kernel, tenant, ingest):
        lot = ingest(quantity=2, barcode="123")
        updated = kernel.update_lot(tenant, lot.lot_id, unit="KG", expiration_date="2025-09-01")
        assert updated.unit is Unit.KG
        assert updated.expiration_date == date(2025, 9, 1)

        # The moved Lot now merges with ingestions of its new key
        merged = ingest(quantity=1, barcode="123", expiration_date="2025-09-01")
        assert merged.lot_id == lot.lot_id

    def test_key_conflict(self, kernel, tenant, ingest):
        ingest(quantity=1, barcode="123", expiration_date="2025-06-01")
        other = ingest(quantity=1, barcode="123", expiration_date="2025-07-01")

        with pytest.raises(LotKeyConflictError):
            kernel.update_lot(tenant, other.lot_id, expiration_date="2025-06-01")

        assert kernel.get_lot(tenant, other.lot_id).expiration_date == date(2025, 7, 1)

    def test_barcode_key_conflict(self, kernel, tenant, ingest):
        ingest(quantity=1, barcode="AAA")
        other = ingest(quantity=2, barcode="BBB")

        with pytest.raises(LotKeyConflictError):
            kernel.update_lot(tenant, other.lot_id, barcode="AAA", notes="moved")

        kept = kernel.get_lot(tenant, other.lot_id)
        assert (kept.barcode, kept.notes) == ("BBB", "")
        assert all(e.action_type != ActionType.UPDATED.value for e in kernel.list_recent_audit(tenant))

    def test_unknown_field_rejected(self, kernel, tenant, ingest):
        lot = ingest(quantity=1)
        with pytest.raises(ValidationError):
            kernel.update_lot(tenant, lot.lot_id, tenant_id="someone-else")

    def test_lot_id_is_not_an_editable_field(self, kernel, tenant, ingest):
        lot = ingest(quantity=1)
        with pytest.raises(ValidationError) as exc_info:
            kernel.update_lot(tenant, lot.lot_id, lot_id=uuid4())
        assert exc_info.value.field == "lot_id"

    def test_quantity_must_stay_positive(self, kernel, tenant, ingest):
        lot = ingest(quantity=1)
        with pytest.raises(InvalidQuantityError):
            kernel.update_lot(tenant, lot.lot_id, quantity=0)

    def test_other_tenant_cannot_edit(self, kernel, tenant, ingest):
        lot = ingest(quantity=1)
        with pytest.raises(LotNotFoundError):
            kernel.update_lot(OTHER_TENANT, lot.lot_id, name="Stolen")


class TestDeleteLot:
    def test_plain_delete(self, kernel, tenant, ingest):
        lot = ingest(quantity=4, barcode="123")

        kernel.delete_lot(tenant, lot.lot_id)

        assert kernel.list_lots(tenant) == []
        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.action_type == ActionType.DELETED.value
        assert (entry.previous_quantity, entry.new_quantity) == (Decimal("4"), Decimal("0"))
        assert entry.impact.people_served == 0
        assert kernel.list_recent_distributions(tenant) == []

    def test_removal_as_distribution(self, kernel, tenant, ingest):
        lot = ingest(name="Rice", quantity=6, barcode="123", unit="lbs")

        kernel.delete_lot(
            tenant,
            lot.lot_id,
            RemovalMetadata(
                recipient_name="Jane Doe",
                recipient_code="C-100",
                reason="emergency",
                household_size=3,
            ),
        )

        (record,) = kernel.list_recent_distributions(tenant)
        assert record.recipient_code == "C-100"
        assert record.quantity_distributed == Decimal("6")
        assert record.item_name == "Rice"

        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.action_type == ActionType.DISTRIBUTED.value
        assert entry.impact.people_served == 3
        assert entry.tags == ("Urgent",)

    def test_removed_quantity_and_unit_override(self, kernel, tenant, ingest):
        lot = ingest(quantity=1, barcode="123")

        kernel.delete_lot(
            tenant,
            lot.lot_id,
            RemovalMetadata(recipient_name="Walk-in", removed_quantity="32", unit="oz"),
        )

        entry = kernel.list_recent_audit(tenant)[0]
        assert entry.quantity_changed == Decimal("32")
        assert entry.unit == "oz"
        assert entry.impact.standardized_weight == Decimal("2.00")
        (record,) = kernel.list_recent_distributions(tenant)
        assert record.recipient_code == "SYS"

    def test_missing_lot(self, kernel, tenant):
        with pytest.raises(LotNotFoundError):
            kernel.delete_lot(tenant, uuid4())

    def test_removed_quantity_cannot_exceed_lot(self, kernel, tenant, ingest):
        lot = ingest(quantity=3, barcode="123")

        with pytest.raises(InvalidQuantityError) as exc_info:
            kernel.delete_lot(
                tenant,
                lot.lot_id,
                RemovalMetadata(recipient_name="Ann", removed_quantity="100"),
            )

        assert exc_info.value.field == "removed_quantity"
        assert kernel.get_lot(tenant, lot.lot_id).quantity == Decimal("3")
        assert kernel.list_recent_distributions(tenant) == []

    def test_removed_quantity_up_to_lot_allowed(self, kernel, tenant, ingest):
        lot = ingest(quantity=3, barcode="123", unit="lbs")

        kernel.delete_lot(
            tenant,
            lot.lot_id,
            RemovalMetadata(recipient_name="Ann", removed_quantity="2", unit="LBS"),
        )

        (record,) = kernel.list_recent_distributions(tenant)
        assert record.quantity_distributed == Decimal("2")
        assert kernel.list_lots(tenant) == []
