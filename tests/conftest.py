"""
Pytest configuration and shared fixtures for the memory engine tests.

Provides an isolated SQLite knowledge store per test plus factories for
invoices and human corrections.
"""

from collections.abc import Callable, Iterator
from typing import Any

import pytest

from invoice_memory.config.settings import Environment, Settings, StorageSettings
from invoice_memory.pipeline import MemoryPipeline
from invoice_memory.schemas.invoice import (
    FieldCorrection,
    HumanCorrection,
    Invoice,
    InvoiceFields,
    LineItem,
    Resolution,
    parse_target,
)
from invoice_memory.storage import KnowledgeStore


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: isolated component tests")
    config.addinivalue_line("markers", "integration: end-to-end pipeline tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests by the directory they live in."""
    for item in items:
        parts = item.path.parts
        if "integration" in parts:
            item.add_marker(pytest.mark.integration)
        elif "unit" in parts:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Storage and settings
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with the knowledge store inside the test's temp directory."""
    return Settings(
        app_env=Environment.TESTING,
        storage=StorageSettings(path=tmp_path / "memory.db"),
    )


@pytest.fixture
def store(settings) -> Iterator[KnowledgeStore]:
    """Fresh knowledge store, closed after the test."""
    knowledge_store = KnowledgeStore(settings.storage.path)
    yield knowledge_store
    knowledge_store.close()


@pytest.fixture
def pipeline(store, settings) -> Iterator[MemoryPipeline]:
    memory_pipeline = MemoryPipeline(store=store, settings=settings)
    yield memory_pipeline
    memory_pipeline.close()


# =============================================================================
# Factories
# =============================================================================


def _build_invoice(
    invoice_id: str = "INV-A-001",
    vendor: str = "Supplier GmbH",
    invoice_number: str | None = None,
    invoice_date: str = "12.01.2024",
    raw_text: str = "",
    confidence: float = 0.9,
    line_items: list[dict[str, Any]] | None = None,
    **fields: Any,
) -> Invoice:
    values: dict[str, Any] = {
        "net_total": 2000.0,
        "tax_rate": 0.19,
        "tax_total": 380.0,
        "gross_total": 2380.0,
        "currency": "EUR",
    }
    values.update(fields)
    items = line_items if line_items is not None else [
        {"sku": "WIDGET-001", "description": "Widget", "qty": 100, "unit_price": 20.0}
    ]
    return Invoice(
        invoice_id=invoice_id,
        vendor=vendor,
        fields=InvoiceFields(
            invoice_number=invoice_number or invoice_id,
            invoice_date=invoice_date,
            line_items=[LineItem.from_dict(item) for item in items],
            **values,
        ),
        confidence=confidence,
        raw_text=raw_text,
    )


def _build_correction(
    invoice: Invoice,
    changes: list[tuple[str, Any, Any, str]],
    approved: bool = True,
) -> HumanCorrection:
    return HumanCorrection(
        invoice_id=invoice.invoice_id,
        vendor=invoice.vendor,
        corrections=[
            FieldCorrection(
                target=parse_target(target),
                from_value=from_value,
                to_value=to_value,
                reason=reason,
            )
            for target, from_value, to_value, reason in changes
        ],
        final_decision=Resolution.APPROVED if approved else Resolution.REJECTED,
    )


@pytest.fixture
def make_invoice() -> Callable[..., Invoice]:
    """
    Factory for invoices.

    Defaults describe a correctly extracted EUR invoice from "Supplier GmbH"
    with one line item; keyword arguments override invoice fields.
    """
    return _build_invoice


@pytest.fixture
def make_correction() -> Callable[..., HumanCorrection]:
    """
    Factory for human corrections.

    Each change is a ``(target, from, to, reason)`` tuple.
    """
    return _build_correction
