"""
Tests for invoice_memory/memory/vendor_memory.py: the vendor aggregate.
"""

import pytest

from invoice_memory.memory.vendor_memory import VendorMemoryRepository


VENDOR = "Supplier GmbH"


@pytest.fixture
def repo(store) -> VendorMemoryRepository:
    return VendorMemoryRepository(store)


class TestLifecycle:

    def test_unknown_vendor(self, repo):
        assert repo.get(VENDOR) is None

    def test_get_or_create(self, repo):
        created, was_created = repo.get_or_create(VENDOR)
        again, created_again = repo.get_or_create(VENDOR)

        assert was_created is True
        assert created_again is False
        assert again.id == created.id
        assert created.confidence == 0.5
        assert created.usage_count == 0

    def test_list_all(self, repo):
        repo.create("B Vendor")
        repo.create("A Vendor")

        assert [m.vendor_name for m in repo.list_all()] == ["A Vendor", "B Vendor"]


class TestFieldMappings:

    def test_first_approval(self, repo):
        mapping = repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)

        assert mapping.confidence == 0.6
        assert (mapping.success_count, mapping.failure_count) == (1, 0)
        stored = repo.get(VENDOR)
        assert stored.usage_count == 1
        assert stored.field_mappings == [mapping]

    def test_first_rejection(self, repo):
        mapping = repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", False)

        assert mapping.confidence == 0.3
        assert (mapping.success_count, mapping.failure_count) == (0, 1)

    def test_repeated_approvals_converge(self, repo):
        for _ in range(3):
            mapping = repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)

        assert mapping.success_count == 3
        assert mapping.confidence == pytest.approx(0.95)
        assert len(repo.get(VENDOR).field_mappings) == 1

    def test_label_matched_case_insensitively(self, repo):
        repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)
        repo.update_field_mapping(VENDOR, "LEISTUNGSDATUM", "service_date", True)

        mappings = repo.get(VENDOR).field_mappings
        assert len(mappings) == 1
        assert mappings[0].success_count == 2

    def test_different_target_is_new_mapping(self, repo):
        repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)
        repo.update_field_mapping(VENDOR, "Leistungsdatum", "invoice_date", True)

        assert len(repo.get(VENDOR).field_mappings) == 2

    def test_rejection_lowers_confidence(self, repo):
        repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)
        before = repo.get(VENDOR).field_mappings[0].confidence

        mapping = repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", False)

        assert mapping.confidence < before

    def test_aggregate_recomputed(self, repo):
        repo.update_field_mapping(VENDOR, "Leistungsdatum", "service_date", True)

        stored = repo.get(VENDOR)
        # usage 1 of 5, one mapping at 0.6
        assert stored.confidence == pytest.approx(0.3 + 0.6 * 0.7 * 0.2)


class TestTaxBehavior:

    def test_created_on_first_learning(self, repo):
        behavior = repo.update_tax_behavior(VENDOR, True, 0.19, True)

        assert behavior.is_inclusive is True
        assert behavior.default_rate == 0.19
        assert behavior.confidence == 0.6

    def test_steps_existing_behavior(self, repo):
        repo.update_tax_behavior(VENDOR, True, 0.19, True)
        raised = repo.update_tax_behavior(VENDOR, True, 0.19, True)
        assert raised.confidence == pytest.approx(0.7)

        lowered = repo.update_tax_behavior(VENDOR, True, 0.19, False)
        assert lowered.confidence == pytest.approx(0.5)

    def test_flag_and_rate_fixed_after_first_learning(self, repo):
        repo.update_tax_behavior(VENDOR, True, 0.19, True)
        behavior = repo.update_tax_behavior(VENDOR, False, 0.07, True)

        assert behavior.is_inclusive is True
        assert behavior.default_rate == 0.19


class TestSkuMappings:

    def test_description_lowercased(self, repo):
        mapping = repo.update_sku_mapping(VENDOR, "Seefracht  / Shipping", "FREIGHT", True)

        assert mapping.description == "seefracht / shipping"
        assert mapping.confidence == 0.6
        assert mapping.usage_count == 1

    def test_contained_description_matches_existing(self, repo):
        repo.update_sku_mapping(VENDOR, "Seefracht / Shipping", "FREIGHT", True)
        mapping = repo.update_sku_mapping(VENDOR, "seefracht", "FREIGHT", True)

        assert len(repo.get(VENDOR).sku_mappings) == 1
        assert mapping.usage_count == 2
        assert mapping.confidence == pytest.approx(0.7)

    def test_rejection_steps_down_without_usage(self, repo):
        repo.update_sku_mapping(VENDOR, "Seefracht / Shipping", "FREIGHT", True)
        mapping = repo.update_sku_mapping(VENDOR, "Seefracht / Shipping", "FREIGHT", False)

        assert mapping.usage_count == 1
        assert mapping.confidence == pytest.approx(0.4)


class TestScalars:

    def test_default_currency(self, repo):
        memory = repo.set_default_currency(VENDOR, "USD")

        assert memory.default_currency == "USD"
        assert repo.get(VENDOR).default_currency == "USD"

    def test_payment_terms(self, repo):
        repo.set_payment_terms(VENDOR, "2% Skonto within 10 days")

        assert repo.get(VENDOR).payment_terms == "2% Skonto within 10 days"

    def test_every_update_counts_usage(self, repo):
        repo.set_default_currency(VENDOR, "USD")
        repo.set_payment_terms(VENDOR, "net 30")
        repo.update_tax_behavior(VENDOR, True, 0.19, True)

        assert repo.get(VENDOR).usage_count == 3
