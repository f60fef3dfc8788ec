"""
Tests for invoice_memory/pipeline/apply.py: the APPLY stage.
"""

import pytest

from invoice_memory.config.settings import ApplySettings, Settings
from invoice_memory.memory.models import (
    FieldMapping,
    RecalledMemories,
    SkuMapping,
    TaxBehavior,
    VendorMemory,
)
from invoice_memory.pipeline.apply import MemoryApply
from invoice_memory.schemas.invoice import LineItem, PurchaseOrder
from invoice_memory.schemas.output import AuditStep


VENDOR = "Supplier GmbH"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _vendor(**overrides) -> VendorMemory:
    values = {"id": "vendor-1", "vendor_name": VENDOR, "usage_count": 5, "confidence": 0.7}
    values.update(overrides)
    return VendorMemory(**values)


def _memories(vendor: VendorMemory | None = None) -> RecalledMemories:
    return RecalledMemories(vendor_memory=vendor)


def _po(number: str, *skus: str, vendor: str = VENDOR) -> PurchaseOrder:
    return PurchaseOrder(
        po_number=number,
        vendor=vendor,
        line_items=[LineItem(qty=1, unit_price=1.0, sku=sku) for sku in skus],
    )


def _by_field(corrections):
    return {c.field: c for c in corrections}


@pytest.fixture
def apply() -> MemoryApply:
    return MemoryApply(Settings())


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalize:

    def test_defaults(self, apply, make_invoice):
        invoice = make_invoice(
            currency=None,
            line_items=[{"description": "Seefracht / Shipping", "qty": 2, "unit_price": 500.0}],
        )

        normalized = apply.normalize(invoice)

        assert normalized.currency == "EUR"
        assert normalized.line_items[0].sku == "UNKNOWN"
        assert normalized.line_items[0].amount == 1000.0
        assert normalized.invoice_number == invoice.fields.invoice_number

    def test_no_default_currency(self, make_invoice):
        apply = MemoryApply(Settings(apply=ApplySettings(default_currency="")))

        assert apply.normalize(make_invoice(currency=None)).currency is None

    def test_does_not_mutate_invoice(self, apply, make_invoice):
        invoice = make_invoice(currency=None, service_date=None)
        vendor = _vendor(
            field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.95, 3, 0)]
        )
        invoice.raw_text = "Leistungsdatum: 01.01.2024"

        apply.apply(invoice, _memories(vendor))

        assert invoice.fields.service_date is None
        assert invoice.fields.currency is None


class TestNoMemory:

    def test_clean_invoice_has_no_corrections(self, apply, make_invoice):
        normalized, corrections, audit = apply.apply(make_invoice(), _memories())

        assert corrections == []
        assert audit.step == AuditStep.APPLY
        assert audit.details == "No corrections applied"
        assert normalized.gross_total == 2380.0


# ---------------------------------------------------------------------------
# Field mappings
# ---------------------------------------------------------------------------


class TestFieldMappings:

    RAW = "Rechnung INV-A-002\nLeistungsdatum: 01.01.2024\n"

    def test_low_confidence_is_proposed(self, apply, make_invoice):
        vendor = _vendor(field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.6, 1, 0)])

        normalized, corrections, audit = apply.apply(make_invoice(raw_text=self.RAW), _memories(vendor))

        correction = _by_field(corrections)["service_date"]
        assert correction.proposed_value == "2024-01-01"
        assert correction.original_value is None
        assert correction.confidence == 0.6
        assert correction.auto_applied is False
        assert normalized.service_date is None
        assert 'Proposed: service_date = "2024-01-01" (needs review)' in audit.details
        assert audit.memory_ids == ["vendor-1"]

    def test_high_confidence_is_auto_applied(self, apply, make_invoice):
        vendor = _vendor(field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.95, 3, 0)])

        normalized, corrections, audit = apply.apply(make_invoice(raw_text=self.RAW), _memories(vendor))

        assert corrections[0].auto_applied is True
        assert normalized.service_date == "2024-01-01"
        assert 'Auto-applied: service_date = "2024-01-01"' in audit.details

    def test_threshold_is_inclusive(self, make_invoice):
        apply = MemoryApply(Settings(apply=ApplySettings(auto_apply_threshold=0.6)))
        vendor = _vendor(field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.6, 1, 0)])

        _, corrections, _ = apply.apply(make_invoice(raw_text=self.RAW), _memories(vendor))

        assert corrections[0].auto_applied is True

    def test_present_field_is_left_alone(self, apply, make_invoice):
        vendor = _vendor(field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.95, 3, 0)])
        invoice = make_invoice(raw_text=self.RAW, service_date="2023-12-31")

        normalized, corrections, _ = apply.apply(invoice, _memories(vendor))

        assert corrections == []
        assert normalized.service_date == "2023-12-31"

    def test_label_absent_from_raw_text(self, apply, make_invoice):
        vendor = _vendor(field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.95, 3, 0)])

        _, corrections, _ = apply.apply(make_invoice(raw_text="Rechnung"), _memories(vendor))

        assert corrections == []

    def test_highest_confidence_proposal_wins(self, apply, make_invoice):
        vendor = _vendor(
            field_mappings=[
                FieldMapping("Leistungsdatum", "service_date", 0.6, 1, 0),
                FieldMapping("Lieferdatum", "service_date", 0.7, 2, 0),
            ]
        )
        raw = "Leistungsdatum: 01.01.2024\nLieferdatum: 03.01.2024"

        _, corrections, audit = apply.apply(make_invoice(raw_text=raw), _memories(vendor))

        assert len(corrections) == 1
        assert corrections[0].proposed_value == "2024-01-03"
        assert 'Superseded: service_date = "2024-01-01"' in audit.details

    def test_tie_keeps_earlier_proposal(self, apply, make_invoice):
        vendor = _vendor(
            field_mappings=[
                FieldMapping("Leistungsdatum", "service_date", 0.6, 1, 0),
                FieldMapping("Lieferdatum", "service_date", 0.6, 1, 0),
            ]
        )
        raw = "Leistungsdatum: 01.01.2024\nLieferdatum: 03.01.2024"

        _, corrections, _ = apply.apply(make_invoice(raw_text=raw), _memories(vendor))

        assert [c.proposed_value for c in corrections] == ["2024-01-01"]


# ---------------------------------------------------------------------------
# Tax behavior
# ---------------------------------------------------------------------------


class TestTaxBehavior:

    RAW = "Alle Preise inkl. MwSt.\nTotal: 2.380,00 EUR"

    def _invoice(self, make_invoice):
        return make_invoice(vendor="Parts AG", raw_text=self.RAW, gross_total=2000.0, tax_total=0.0)

    def test_recalculation_proposed(self, apply, make_invoice):
        vendor = _vendor(vendor_name="Parts AG", tax_behavior=TaxBehavior(True, 0.19, 0.7))

        normalized, corrections, _ = apply.apply(self._invoice(make_invoice), _memories(vendor))

        by_field = _by_field(corrections)
        assert by_field["gross_total"].original_value == 2000.0
        assert by_field["gross_total"].proposed_value == 2380.0
        assert by_field["tax_total"].proposed_value == 380.0
        assert not by_field["gross_total"].auto_applied
        assert normalized.gross_total == 2000.0

    def test_confident_recalculation_applied(self, apply, make_invoice):
        vendor = _vendor(vendor_name="Parts AG", tax_behavior=TaxBehavior(True, 0.19, 0.9))

        normalized, corrections, _ = apply.apply(self._invoice(make_invoice), _memories(vendor))

        assert all(c.auto_applied for c in corrections)
        assert normalized.gross_total == 2380.0
        assert normalized.tax_total == 380.0

    def test_requires_indicator(self, apply, make_invoice):
        vendor = _vendor(vendor_name="Parts AG", tax_behavior=TaxBehavior(True, 0.19, 0.9))
        invoice = make_invoice(vendor="Parts AG", raw_text="Total: 2.380,00 EUR", gross_total=2000.0)

        _, corrections, _ = apply.apply(invoice, _memories(vendor))

        assert corrections == []

    def test_exclusive_vendor_untouched(self, apply, make_invoice):
        vendor = _vendor(vendor_name="Parts AG", tax_behavior=TaxBehavior(False, 0.19, 0.9))

        _, corrections, _ = apply.apply(self._invoice(make_invoice), _memories(vendor))

        assert corrections == []


# ---------------------------------------------------------------------------
# Currency
# ---------------------------------------------------------------------------


class TestCurrency:

    def test_from_vendor_memory(self, apply, make_invoice):
        vendor = _vendor(default_currency="USD")
        invoice = make_invoice(currency=None, raw_text="Currency: GBP")

        normalized, corrections, _ = apply.apply(invoice, _memories(vendor))

        correction = _by_field(corrections)["currency"]
        assert correction.proposed_value == "USD"
        assert correction.confidence == 0.75
        assert correction.auto_applied is False
        assert normalized.currency == "EUR"

    def test_from_raw_text_without_vendor(self, apply, make_invoice):
        invoice = make_invoice(currency=None, raw_text="Freight charges. Currency: USD")

        _, corrections, _ = apply.apply(invoice, _memories())

        correction = _by_field(corrections)["currency"]
        assert correction.proposed_value == "USD"
        assert correction.confidence == 0.70

    def test_never_auto_applied(self, make_invoice):
        apply = MemoryApply(Settings(apply=ApplySettings(auto_apply_threshold=0.5)))
        invoice = make_invoice(currency=None, raw_text="Currency: USD")

        _, corrections, _ = apply.apply(invoice, _memories())

        assert corrections[0].auto_applied is False

    def test_present_currency_untouched(self, apply, make_invoice):
        invoice = make_invoice(currency="EUR", raw_text="Currency: USD")

        _, corrections, _ = apply.apply(invoice, _memories(_vendor(default_currency="USD")))

        assert corrections == []


# ---------------------------------------------------------------------------
# SKU mappings
# ---------------------------------------------------------------------------


class TestSkuMappings:

    ITEMS = [{"description": "Seefracht / Shipping", "qty": 1, "unit_price": 500.0}]

    def test_mapping_proposed(self, apply, make_invoice):
        vendor = _vendor(sku_mappings=[SkuMapping("seefracht / shipping", "FREIGHT", 0.6)])

        normalized, corrections, _ = apply.apply(make_invoice(line_items=self.ITEMS), _memories(vendor))

        correction = _by_field(corrections)["line_items[0].sku"]
        assert correction.proposed_value == "FREIGHT"
        assert correction.original_value is None
        assert normalized.line_items[0].sku == "UNKNOWN"

    def test_confident_mapping_applied(self, apply, make_invoice):
        vendor = _vendor(sku_mappings=[SkuMapping("seefracht", "FREIGHT", 0.9)])

        normalized, corrections, _ = apply.apply(make_invoice(line_items=self.ITEMS), _memories(vendor))

        assert corrections[0].auto_applied
        assert normalized.line_items[0].sku == "FREIGHT"

    def test_existing_sku_kept(self, apply, make_invoice):
        vendor = _vendor(sku_mappings=[SkuMapping("widget", "OTHER", 0.9)])

        normalized, corrections, _ = apply.apply(make_invoice(), _memories(vendor))

        assert corrections == []
        assert normalized.line_items[0].sku == "WIDGET-001"


# ---------------------------------------------------------------------------
# Payment terms
# ---------------------------------------------------------------------------


class TestPaymentTerms:

    RAW = "Zahlbar sofort. 2% Skonto if paid within 10 days."

    def test_vendor_terms_set_directly(self, apply, make_invoice):
        vendor = _vendor(payment_terms="2% Skonto within 10 days")

        normalized, corrections, audit = apply.apply(make_invoice(raw_text=self.RAW), _memories(vendor))

        assert corrections == []
        assert normalized.discount_terms == "2% Skonto within 10 days"
        assert 'Applied known payment terms: "2% Skonto within 10 days"' in audit.details

    def test_raw_text_terms_proposed(self, apply, make_invoice):
        _, corrections, _ = apply.apply(make_invoice(raw_text=self.RAW), _memories())

        correction = _by_field(corrections)["discount_terms"]
        assert correction.proposed_value == "2% Skonto if paid within 10 days"
        assert correction.confidence == 0.80
        assert correction.auto_applied is False

    def test_present_terms_untouched(self, apply, make_invoice):
        invoice = make_invoice(raw_text=self.RAW, discount_terms="net 30")

        normalized, corrections, _ = apply.apply(invoice, _memories())

        assert corrections == []
        assert normalized.discount_terms == "net 30"


# ---------------------------------------------------------------------------
# Purchase order matching
# ---------------------------------------------------------------------------


class TestPurchaseOrderMatching:

    def test_single_po_with_full_overlap(self, apply, make_invoice):
        normalized, corrections, _ = apply.apply(
            make_invoice(), _memories(), [_po("PO-A-051", "WIDGET-001")]
        )

        correction = _by_field(corrections)["po_number"]
        assert correction.proposed_value == "PO-A-051"
        assert correction.confidence == pytest.approx(0.95)
        assert correction.auto_applied
        assert normalized.po_number == "PO-A-051"

    def test_best_of_several(self, apply, make_invoice):
        pos = [
            _po("PO-A-050", "GADGET-002"),
            _po("PO-A-051", "WIDGET-001", "GADGET-002"),
            _po("PO-A-052", "WIDGET-001"),
        ]

        _, corrections, _ = apply.apply(make_invoice(), _memories(), pos)

        correction = corrections[0]
        assert correction.proposed_value == "PO-A-052"
        assert correction.confidence == pytest.approx(0.8)
        assert not correction.auto_applied

    def test_only_po_without_overlap(self, apply, make_invoice):
        _, corrections, _ = apply.apply(make_invoice(), _memories(), [_po("PO-A-060", "OTHER")])

        assert corrections[0].proposed_value == "PO-A-060"
        assert corrections[0].confidence == 0.6

    def test_other_vendor_orders_ignored(self, apply, make_invoice):
        pos = [_po("PO-B-001", "WIDGET-001", vendor="Parts AG")]

        _, corrections, _ = apply.apply(make_invoice(), _memories(), pos)

        assert corrections == []

    def test_existing_po_number_kept(self, apply, make_invoice):
        invoice = make_invoice(po_number="PO-A-051")

        _, corrections, _ = apply.apply(invoice, _memories(), [_po("PO-A-052", "WIDGET-001")])

        assert corrections == []


# ---------------------------------------------------------------------------
# Pluggable extractor and determinism
# ---------------------------------------------------------------------------


class _FixedExtractor:

    def extract_labeled(self, raw_text, label):
        return "2030-01-01"

    def extract_currency(self, raw_text):
        return None

    def extract_payment_terms(self, raw_text):
        return None

    def extract_gross_total(self, raw_text, current_gross):
        return None

    def has_inclusive_tax_indicator(self, raw_text):
        return False


class TestExtractorAndDeterminism:

    def test_custom_extractor(self, make_invoice):
        apply = MemoryApply(Settings(), extractor=_FixedExtractor())
        vendor = _vendor(field_mappings=[FieldMapping("Anything", "service_date", 0.6, 1, 0)])

        _, corrections, _ = apply.apply(make_invoice(), _memories(vendor))

        assert corrections[0].proposed_value == "2030-01-01"

    def test_same_input_same_output(self, apply, make_invoice):
        vendor = _vendor(
            default_currency="USD",
            field_mappings=[FieldMapping("Leistungsdatum", "service_date", 0.95, 3, 0)],
        )
        invoice = make_invoice(currency=None, raw_text="Leistungsdatum: 01.01.2024 2% Skonto within 10 days")

        first = apply.apply(invoice, _memories(vendor), [_po("PO-A-051", "WIDGET-001")])
        second = apply.apply(invoice, _memories(vendor), [_po("PO-A-051", "WIDGET-001")])

        assert first[0] == second[0]
        assert first[1] == second[1]
        assert first[2].details == second[2].details
