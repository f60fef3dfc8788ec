"""
Tests for invoice_memory/extraction/extractors.py: raw-text extraction.
"""

import pytest

from invoice_memory.extraction import RawTextExtractor, RegexExtractor
from invoice_memory.extraction.extractors import parse_amount


@pytest.fixture
def extractor() -> RegexExtractor:
    return RegexExtractor()


class TestParseAmount:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2380", 2380.0),
            ("2380,50", 2380.5),
            ("2380.50", 2380.5),
            ("1.190,00", 1190.0),
            ("1,190.00", 1190.0),
            ("2.380,00.", 2380.0),
        ],
    )
    def test_separators(self, raw, expected):
        assert parse_amount(raw) == expected

    def test_invalid(self):
        assert parse_amount("abc") is None
        assert parse_amount("") is None


class TestRegexExtractor:

    def test_satisfies_protocol(self, extractor):
        assert isinstance(extractor, RawTextExtractor)

    def test_labeled_day_first_date(self, extractor):
        text = "Rechnungsnr: INV-A-001\nLeistungsdatum: 01.01.2024\nMenge: 100"

        assert extractor.extract_labeled(text, "Leistungsdatum") == "2024-01-01"

    def test_labeled_two_digit_year(self, extractor):
        assert extractor.extract_labeled("Leistungsdatum 5/3/24", "Leistungsdatum") == "2024-03-05"

    def test_labeled_iso_date(self, extractor):
        assert extractor.extract_labeled("Service date: 2024-02-10", "Service date") == "2024-02-10"

    def test_label_is_case_insensitive(self, extractor):
        assert extractor.extract_labeled("LEISTUNGSDATUM: 01.01.2024", "Leistungsdatum") == "2024-01-01"

    def test_label_missing(self, extractor):
        assert extractor.extract_labeled("Rechnungsdatum: 01.01.2024", "Leistungsdatum") is None
        assert extractor.extract_labeled("", "Leistungsdatum") is None

    def test_label_with_regex_characters(self, extractor):
        assert extractor.extract_labeled("Datum (Lieferung): 02.01.2024", "Datum (Lieferung)") == "2024-01-02"

    def test_currency_label_first(self, extractor):
        assert extractor.extract_currency("Amounts in EUR. Currency: USD") == "USD"

    def test_currency_code(self, extractor):
        assert extractor.extract_currency("Total 100 chf") == "CHF"
        assert extractor.extract_currency("Total 100") is None

    def test_payment_terms(self, extractor):
        text = "Zahlbar innerhalb 30 Tagen. 2% Skonto if paid within 10 days."

        assert extractor.extract_payment_terms(text) == "2% Skonto if paid within 10 days"

    def test_payment_terms_discount(self, extractor):
        assert extractor.extract_payment_terms("3% discount within 14 days") == "3% discount within 14 days"
        assert extractor.extract_payment_terms("Net 30") is None

    def test_gross_total_differs(self, extractor):
        text = "Prices incl. VAT\nTotal: 2.380,00 EUR"

        assert extractor.extract_gross_total(text, 2000.0) == 2380.0
        assert extractor.extract_gross_total(text, 2380.0) is None

    def test_gross_total_german_label(self, extractor):
        assert extractor.extract_gross_total("Gesamt: 1190,00", 1000.0) == 1190.0

    def test_inclusive_indicator(self, extractor):
        assert extractor.has_inclusive_tax_indicator("Alle Preise inkl. MwSt.")
        assert extractor.has_inclusive_tax_indicator("Prices are VAT inclusive")
        assert not extractor.has_inclusive_tax_indicator("Prices plus 19% VAT")
