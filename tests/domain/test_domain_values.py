"""
Tests for the pure domain layer.

These tests verify:
- Clocks are deterministic where tests need them to be
- Quantity parsing is strict, metric coercion is lenient
- Expirations normalize to UTC calendar dates
- Product and recipient identities behave at their edges
"""

import threading
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pantry_kernel.domain import ProductKey, RecipientSpec, Unit
from pantry_kernel.domain.clock import DEFAULT_START, DeterministicClock, TickingClock
from pantry_kernel.domain.values import (
    clean_barcode,
    coerce_decimal,
    expiration_key,
    generate_internal_barcode,
    is_anonymous_recipient,
    is_internal_barcode,
    normalize_expiration,
    parse_quantity,
    require_text,
)
from pantry_kernel.exceptions import (
    InvalidQuantityError,
    InvalidUnitError,
    MissingFieldError,
    ValidationError,
)


class TestClocks:
    def test_deterministic_clock_stands_still(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == DEFAULT_START

    def test_set_today_moves_to_noon_utc(self):
        clock = DeterministicClock()
        clock.set_today(date(2025, 3, 9))
        assert clock.now() == datetime(2025, 3, 9, 12, 0, tzinfo=timezone.utc)
        assert clock.today() == date(2025, 3, 9)

    def test_naive_set_time_is_read_as_utc(self):
        clock = DeterministicClock()
        clock.set_time(datetime(2025, 6, 1, 23, 30))
        assert clock.now().tzinfo is timezone.utc

    def test_today_uses_the_utc_date(self):
        late_evening_west = datetime(2025, 1, 1, 20, 0, tzinfo=timezone(timedelta(hours=-8)))
        clock = DeterministicClock(late_evening_west)
        assert clock.today() == date(2025, 1, 2)

    def test_advance_returns_new_time(self):
        clock = DeterministicClock()
        assert clock.advance(90) == DEFAULT_START + timedelta(seconds=90)
        assert clock.now() == DEFAULT_START + timedelta(seconds=90)

    def test_ticking_clock_reads_are_strictly_increasing(self):
        clock = TickingClock()
        reads = [clock.now() for _ in range(5)]
        assert reads == sorted(reads)
        assert len(set(reads)) == 5
        assert reads[0] == DEFAULT_START

    def test_ticking_clock_shared_between_threads(self):
        clock = TickingClock()
        seen: list[datetime] = []
        lock = threading.Lock()

        def read_many():
            for _ in range(50):
                moment = clock.now()
                with lock:
                    seen.append(moment)

        threads = [threading.Thread(target=read_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(seen) == len(set(seen)) == 200


class TestParseQuantity:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("5", Decimal("5.000")),
            (" 2.5 ", Decimal("2.500")),
            (3, Decimal("3.000")),
            (0.1, Decimal("0.100")),
            (Decimal("1.23456"), Decimal("1.235")),
        ],
    )
    def test_accepts_positive_numbers(self, raw, expected):
        assert parse_quantity(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        [None, "", "abc", "NaN", "inf", "-1", 0, "0.0004", True, float("nan")],
    )
    def test_rejects_everything_else(self, raw):
        with pytest.raises(InvalidQuantityError) as exc_info:
            parse_quantity(raw)
        assert exc_info.value.code == "INVALID_QUANTITY"

    def test_field_name_is_reported(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            parse_quantity("x", field="lines[2].quantity")
        assert exc_info.value.field == "lines[2].quantity"


class TestCoerceDecimal:
    @pytest.mark.parametrize(
        "raw", [None, "", "abc", float("nan"), float("inf"), "Infinity", False]
    )
    def test_bad_inputs_become_default(self, raw):
        assert coerce_decimal(raw) == Decimal("0")

    def test_custom_default(self):
        assert coerce_decimal(None, default=Decimal("1")) == Decimal("1")

    def test_float_keeps_its_short_repr(self):
        assert coerce_decimal(2.2) == Decimal("2.2")


class TestUnit:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (None, Unit.UNITS),
            ("", Unit.UNITS),
            ("KG", Unit.KG),
            (" lbs ", Unit.LBS),
            (Unit.OZ, Unit.OZ),
        ],
    )
    def test_parse(self, raw, expected):
        assert Unit.parse(raw) is expected

    def test_unknown_unit(self):
        with pytest.raises(InvalidUnitError) as exc_info:
            Unit.parse("gallons")
        assert exc_info.value.code == "INVALID_UNIT"
        assert "kg" in exc_info.value.allowed


class TestExpiration:
    def test_none_and_blank_mean_never(self):
        assert normalize_expiration(None) is None
        assert normalize_expiration("") is None
        assert normalize_expiration("   ") is None

    def test_plain_date_passes_through(self):
        assert normalize_expiration(date(2025, 2, 1)) == date(2025, 2, 1)

    def test_aware_datetime_converted_to_utc_first(self):
        moment = datetime(2025, 2, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert normalize_expiration(moment) == date(2025, 2, 2)

    def test_iso_strings(self):
        assert normalize_expiration("2025-02-01") == date(2025, 2, 1)
        assert normalize_expiration("2025-02-01T23:30:00Z") == date(2025, 2, 1)
        assert normalize_expiration("2025-02-01T23:30:00-02:00") == date(2025, 2, 2)

    def test_unparseable_string(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_expiration("next tuesday")
        assert exc_info.value.field == "expiration_date"

    def test_expiration_key_is_never_null(self):
        assert expiration_key(None) == ""
        assert expiration_key(date(2025, 2, 1)) == "2025-02-01"


class TestBarcodes:
    def test_generated_barcodes_are_internal_and_distinct(self):
        first, second = generate_internal_barcode(), generate_internal_barcode()
        assert first != second
        assert is_internal_barcode(first)

    @pytest.mark.parametrize("barcode", [None, "", "012345678905", "sys-lowercase"])
    def test_external_barcodes(self, barcode):
        assert not is_internal_barcode(barcode)

    def test_int_prefix_is_internal(self):
        assert is_internal_barcode("INT-0042")

    def test_clean_barcode(self):
        assert clean_barcode("  0123 ") == "0123"
        assert clean_barcode("   ") is None
        assert clean_barcode(None) is None


class TestIdentities:
    def test_product_key_needs_barcode_or_name(self):
        with pytest.raises(MissingFieldError):
            ProductKey()
        assert ProductKey.for_name("Rice").name == "Rice"
        assert ProductKey.for_barcode("0123").barcode == "0123"

    @pytest.mark.parametrize("code", [None, "", "  ", "SYS", "anonymous", " SYS "])
    def test_anonymous_codes(self, code):
        assert is_anonymous_recipient(code)

    def test_named_code_is_not_anonymous(self):
        assert not is_anonymous_recipient("F-001")

    def test_anonymous_recipient_display(self):
        spec = RecipientSpec.anonymous()
        assert spec.code == "SYS"
        assert spec.display_name == "Walk-in"

    def test_named_recipient_display(self):
        spec = RecipientSpec(recipient_code=" F-001 ", first_name="Jane", last_name="Doe")
        assert spec.code == "F-001"
        assert spec.display_name == "Jane Doe"

    def test_adjustment_is_anonymous(self):
        spec = RecipientSpec.adjustment()
        assert spec.is_anonymous
        assert spec.display_name == "General Inventory Adjustment"

    def test_recipient_spec_is_frozen(self):
        spec = RecipientSpec.anonymous()
        with pytest.raises(AttributeError):
            spec.first_name = "Changed"

    def test_require_text(self):
        assert require_text("  Rice ", "name") == "Rice"
        with pytest.raises(MissingFieldError):
            require_text("  ", "name")
