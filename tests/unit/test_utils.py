"""
Tests for invoice_memory/utils and the log masking processor.
"""

from datetime import UTC, date, datetime

import pytest

from invoice_memory.config.logging_config import mask_sensitive, mask_text
from invoice_memory.utils.date_utils import days_between, parse_date, parse_timestamp, to_iso_date
from invoice_memory.utils.hash_utils import compute_md5, generate_unique_id
from invoice_memory.utils.string_utils import (
    contains_either_way,
    normalize_whitespace,
    to_snake_case,
)


# ---------------------------------------------------------------------------
# string_utils
# ---------------------------------------------------------------------------


class TestNormalizeWhitespace:

    def test_collapses_tabs_and_newlines(self):
        assert normalize_whitespace("Seefracht \t/\n Shipping ") == "Seefracht / Shipping"

    def test_empty_string(self):
        assert normalize_whitespace("") == ""


class TestToSnakeCase:

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("serviceDate", "service_date"),
            ("grossTotal", "gross_total"),
            ("po_number", "po_number"),
            ("currency", "currency"),
        ],
    )
    def test_conversion(self, name, expected):
        assert to_snake_case(name) == expected


class TestContainsEitherWay:

    def test_either_direction(self):
        assert contains_either_way("Seefracht / Shipping", "seefracht")
        assert contains_either_way("seefracht", "SEEFRACHT / SHIPPING")

    def test_no_overlap(self):
        assert not contains_either_way("Widget", "Gadget")

    def test_empty_never_matches(self):
        assert not contains_either_way("", "Widget")
        assert not contains_either_way("  ", "")


# ---------------------------------------------------------------------------
# date_utils
# ---------------------------------------------------------------------------


class TestDates:

    @pytest.mark.parametrize(
        "value",
        ["15.01.2024", "15-01-2024", "2024-01-15", "15/01/2024"],
    )
    def test_parse_date_formats(self, value):
        assert parse_date(value) == date(2024, 1, 15)

    def test_parse_date_invalid(self):
        fallback = date(2000, 1, 1)

        assert parse_date("31.02.2024") is None
        assert parse_date("next tuesday", default=fallback) == fallback
        assert parse_date(None) is None

    def test_to_iso_date(self):
        assert to_iso_date("15.01.2024") == "2024-01-15"
        assert to_iso_date("5/1/24") == "2024-01-05"
        assert to_iso_date("2024-01-15") == "2024-01-15"

    def test_days_between_is_absolute(self):
        assert days_between(date(2024, 1, 20), date(2024, 1, 13)) == 7

    def test_parse_timestamp_naive_is_utc(self):
        assert parse_timestamp("2024-01-15T10:00:00") == datetime(2024, 1, 15, 10, tzinfo=UTC)

    def test_parse_timestamp_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


# ---------------------------------------------------------------------------
# hash_utils
# ---------------------------------------------------------------------------


class TestHashing:

    def test_md5_str_and_bytes_agree(self):
        assert compute_md5("Supplier GmbH|INV-1|2380.00") == compute_md5(b"Supplier GmbH|INV-1|2380.00")
        assert len(compute_md5("x")) == 32

    def test_unique_ids(self):
        assert generate_unique_id() != generate_unique_id()


# ---------------------------------------------------------------------------
# Log masking
# ---------------------------------------------------------------------------


class TestMasking:

    def test_iban(self):
        assert mask_text("Pay to DE89 3704 0044 0532 0130 00") == "Pay to [IBAN-MASKED]"

    def test_card_and_email(self):
        masked = mask_text("card 4111 1111 1111 1111, contact billing@supplier.de")

        assert "[CC-MASKED]" in masked
        assert "[EMAIL-MASKED]" in masked
        assert "4111" not in masked

    def test_processor_masks_nested_values(self):
        event = {
            "event": "vendor_memory_created",
            "vendor": "Supplier GmbH",
            "context": {"raw": "IBAN DE89370400440532013000"},
            "emails": ["a@b.de"],
        }

        masked = mask_sensitive(None, "info", event)

        assert masked["vendor"] == "Supplier GmbH"
        assert masked["context"]["raw"] == "IBAN [IBAN-MASKED]"
        assert masked["emails"] == ["[EMAIL-MASKED]"]
