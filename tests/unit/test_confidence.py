"""
Tests for invoice_memory/memory/confidence.py: the confidence model.
"""

from datetime import UTC, datetime, timedelta

import pytest

from invoice_memory.memory.confidence import (
    days_since,
    decay_confidence,
    decayed_since,
    initial_confidence,
    step_confidence,
    success_rate_confidence,
    vendor_aggregate_confidence,
)
from invoice_memory.memory.models import FieldMapping, SkuMapping, TaxBehavior, VendorMemory


def _vendor(usage_count: int = 5, confidences: list[float] | None = None) -> VendorMemory:
    memory = VendorMemory(id="v1", vendor_name="Supplier GmbH", usage_count=usage_count)
    for index, confidence in enumerate(confidences or []):
        memory.field_mappings.append(
            FieldMapping(source_label=f"Label{index}", target_field="service_date", confidence=confidence)
        )
    return memory


# ---------------------------------------------------------------------------
# Success-rate confidence
# ---------------------------------------------------------------------------


class TestSuccessRateConfidence:

    def test_no_observations(self):
        assert success_rate_confidence(0, 0) == 0.5

    def test_single_success(self):
        assert success_rate_confidence(1, 0) == pytest.approx(0.3 + 0.65 / 3)

    def test_two_successes(self):
        assert success_rate_confidence(2, 0) == pytest.approx(0.3 + 0.65 * 2 / 3)

    def test_three_successes_reach_cap(self):
        assert success_rate_confidence(3, 0) == pytest.approx(0.95)
        assert success_rate_confidence(50, 0) == pytest.approx(0.95)

    def test_only_failures_sit_at_base(self):
        assert success_rate_confidence(0, 1) == pytest.approx(0.3)
        assert success_rate_confidence(0, 10) == pytest.approx(0.3)

    def test_failures_weigh_double(self):
        # 2 successes, 1 failure: adjusted rate 2 / 4
        assert success_rate_confidence(2, 1) == pytest.approx(0.3 + 0.5 * 0.65)

    def test_bounded(self):
        for s in range(12):
            for f in range(12):
                assert 0.1 <= success_rate_confidence(s, f) <= 0.95

    def test_success_never_lowers_confidence(self):
        for s in range(10):
            for f in range(10):
                assert success_rate_confidence(s + 1, f) >= success_rate_confidence(s, f)

    def test_failure_never_raises_confidence(self):
        for s in range(1, 10):
            for f in range(10):
                assert success_rate_confidence(s, f + 1) <= success_rate_confidence(s, f)


# ---------------------------------------------------------------------------
# Step confidence
# ---------------------------------------------------------------------------


class TestStepConfidence:

    def test_success_adds_tenth(self):
        assert step_confidence(0.6, True) == pytest.approx(0.7)

    def test_success_capped(self):
        assert step_confidence(0.95, True) == 1.0
        assert step_confidence(1.0, True) == 1.0

    def test_failure_subtracts_fifth(self):
        assert step_confidence(0.6, False) == pytest.approx(0.4)

    def test_failure_floored(self):
        assert step_confidence(0.2, False) == 0.1
        assert step_confidence(0.1, False) == 0.1

    def test_initial_confidence(self):
        assert initial_confidence(True) == 0.6
        assert initial_confidence(False) == 0.3


# ---------------------------------------------------------------------------
# Vendor aggregate
# ---------------------------------------------------------------------------


class TestVendorAggregateConfidence:

    def test_empty_vendor(self):
        assert vendor_aggregate_confidence(_vendor(usage_count=10)) == 0.5

    def test_full_usage(self):
        assert vendor_aggregate_confidence(_vendor(5, [0.6])) == pytest.approx(0.3 + 0.6 * 0.7)

    def test_partial_usage(self):
        assert vendor_aggregate_confidence(_vendor(1, [0.6])) == pytest.approx(0.3 + 0.6 * 0.7 * 0.2)

    def test_averages_all_sub_memories(self):
        memory = _vendor(5, [0.6])
        memory.tax_behavior = TaxBehavior(is_inclusive=True, default_rate=0.19, confidence=1.0)
        memory.sku_mappings.append(SkuMapping(description="widget", sku="W-1", confidence=0.8))

        assert vendor_aggregate_confidence(memory) == pytest.approx(0.3 + 0.8 * 0.7)

    def test_bounded(self):
        memory = _vendor(100, [1.0, 1.0])
        assert vendor_aggregate_confidence(memory) <= 1.0


# ---------------------------------------------------------------------------
# Decay
# ---------------------------------------------------------------------------


class TestDecay:

    def test_zero_days_is_identity(self):
        for confidence in (0.1, 0.35, 0.7, 0.95):
            assert decay_confidence(confidence, 0) == confidence

    def test_non_increasing_in_days(self):
        previous = 0.9
        for days in range(1, 400, 7):
            current = decay_confidence(0.9, days)
            assert current <= previous
            previous = current

    def test_floor(self):
        assert decay_confidence(0.9, 10_000) == 0.1
        assert decay_confidence(0.9, 10_000, floor=0.2) == 0.2

    def test_custom_factor(self):
        assert decay_confidence(0.8, 2, daily_factor=0.5) == pytest.approx(0.2)

    def test_days_since_counts_whole_days(self):
        now = datetime(2024, 3, 10, 8, 0, tzinfo=UTC)
        assert days_since("2024-03-10T01:00:00+00:00", now) == 0
        assert days_since("2024-03-09T23:59:00+00:00", now) == 1
        assert days_since("2024-02-29T12:00:00", now) == 10

    def test_days_since_future_is_zero(self):
        now = datetime(2024, 3, 10, tzinfo=UTC)
        assert days_since((now + timedelta(days=3)).isoformat(), now) == 0

    def test_decayed_since(self):
        now = datetime(2024, 3, 10, tzinfo=UTC)
        last_used = (now - timedelta(days=30)).isoformat()
        assert decayed_since(0.8, last_used, now) == pytest.approx(0.8 * 0.99**30)
