"""
Vendor memory repository.

Maintains the per-vendor aggregate: learned field mappings, tax behavior,
default currency, SKU mappings and payment terms. Every sub-memory update
bumps the vendor's usage count and recomputes its aggregate confidence
before the row is written back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from invoice_memory.config import get_logger
from invoice_memory.memory.confidence import (
    initial_confidence,
    step_confidence,
    success_rate_confidence,
    vendor_aggregate_confidence,
)
from invoice_memory.memory.models import FieldMapping, SkuMapping, TaxBehavior, VendorMemory
from invoice_memory.utils.date_utils import get_current_timestamp
from invoice_memory.utils.hash_utils import generate_unique_id
from invoice_memory.utils.string_utils import contains_either_way, normalize_whitespace


if TYPE_CHECKING:
    from invoice_memory.storage.knowledge_store import KnowledgeStore


logger = get_logger(__name__)


class VendorMemoryRepository:
    """
    Read and update vendor memories in a knowledge store.

    Example:
        repo = VendorMemoryRepository(store)
        repo.update_field_mapping("Supplier GmbH", "Leistungsdatum", "service_date", True)
    """

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store
        self._logger = logger

    def get(self, vendor_name: str) -> VendorMemory | None:
        """Vendor memory for a vendor, or None for unknown vendors."""
        return self._store.get_vendor_memory(vendor_name)

    def create(self, vendor_name: str) -> VendorMemory:
        """Create an empty vendor memory with the default aggregate confidence."""
        memory = VendorMemory(id=generate_unique_id(), vendor_name=vendor_name)
        memory.confidence = vendor_aggregate_confidence(memory)
        self._store.insert_vendor_memory(memory)

        self._logger.info(
            "vendor_memory_created",
            vendor=vendor_name,
            memory_id=memory.id,
        )
        return memory

    def get_or_create(self, vendor_name: str) -> tuple[VendorMemory, bool]:
        """
        Fetch a vendor memory, creating it if absent.

        Returns:
            Tuple of (memory, created).
        """
        memory = self.get(vendor_name)
        if memory is not None:
            return memory, False
        return self.create(vendor_name), True

    def list_all(self) -> list[VendorMemory]:
        """All vendor memories ordered by vendor name."""
        return self._store.list_vendor_memories()

    def _save(self, memory: VendorMemory) -> VendorMemory:
        now = get_current_timestamp()
        memory.usage_count += 1
        memory.confidence = vendor_aggregate_confidence(memory)
        memory.last_used = now
        memory.updated_at = now
        self._store.save_vendor_memory(memory)
        return memory

    def update_field_mapping(
        self,
        vendor_name: str,
        source_label: str,
        target_field: str,
        success: bool,
    ) -> FieldMapping:
        """
        Create or update a label → field mapping.

        Existing mappings are matched by case-insensitive label and exact
        target field; their confidence is recomputed from the updated counts.

        Args:
            vendor_name: Vendor to update.
            source_label: Label found in the raw text (e.g. "Leistungsdatum").
            target_field: Document field the label maps to.
            success: Whether the human approved the correction.

        Returns:
            The created or updated mapping.
        """
        memory, _ = self.get_or_create(vendor_name)

        mapping = next(
            (
                m
                for m in memory.field_mappings
                if m.source_label.lower() == source_label.lower()
                and m.target_field == target_field
            ),
            None,
        )
        if mapping is None:
            mapping = FieldMapping(
                source_label=source_label,
                target_field=target_field,
                confidence=initial_confidence(success),
                success_count=1 if success else 0,
                failure_count=0 if success else 1,
            )
            memory.field_mappings.append(mapping)
        else:
            if success:
                mapping.success_count += 1
            else:
                mapping.failure_count += 1
            mapping.confidence = success_rate_confidence(
                mapping.success_count, mapping.failure_count
            )

        self._save(memory)
        self._logger.info(
            "field_mapping_updated",
            vendor=vendor_name,
            source_label=source_label,
            target_field=target_field,
            success=success,
            confidence=mapping.confidence,
        )
        return mapping

    def update_tax_behavior(
        self,
        vendor_name: str,
        is_inclusive: bool,
        default_rate: float,
        success: bool,
    ) -> TaxBehavior:
        """
        Create or step the vendor's tax behavior.

        A known behavior only moves its confidence (+0.1 / -0.2); the
        inclusive flag and rate are set when the behavior is first learned.
        """
        memory, _ = self.get_or_create(vendor_name)

        if memory.tax_behavior is None:
            memory.tax_behavior = TaxBehavior(
                is_inclusive=is_inclusive,
                default_rate=default_rate,
                confidence=initial_confidence(success),
            )
        else:
            memory.tax_behavior.confidence = step_confidence(
                memory.tax_behavior.confidence, success
            )

        self._save(memory)
        self._logger.info(
            "tax_behavior_updated",
            vendor=vendor_name,
            is_inclusive=memory.tax_behavior.is_inclusive,
            success=success,
            confidence=memory.tax_behavior.confidence,
        )
        return memory.tax_behavior

    def set_default_currency(self, vendor_name: str, currency: str) -> VendorMemory:
        """Record the vendor's default currency."""
        memory, _ = self.get_or_create(vendor_name)
        memory.default_currency = currency
        self._save(memory)

        self._logger.info("default_currency_set", vendor=vendor_name, currency=currency)
        return memory

    def update_sku_mapping(
        self,
        vendor_name: str,
        description: str,
        sku: str,
        success: bool,
    ) -> SkuMapping:
        """
        Create or step a description → SKU mapping.

        Descriptions are stored lowercased; an existing mapping matches when
        either description contains the other.
        """
        memory, _ = self.get_or_create(vendor_name)
        normalized = normalize_whitespace(description).lower()

        mapping = next(
            (m for m in memory.sku_mappings if contains_either_way(m.description, normalized)),
            None,
        )
        if mapping is None:
            mapping = SkuMapping(
                description=normalized,
                sku=sku,
                confidence=initial_confidence(success),
            )
            memory.sku_mappings.append(mapping)
        else:
            if success:
                mapping.usage_count += 1
            mapping.confidence = step_confidence(mapping.confidence, success)

        self._save(memory)
        self._logger.info(
            "sku_mapping_updated",
            vendor=vendor_name,
            description=normalized,
            sku=mapping.sku,
            success=success,
            confidence=mapping.confidence,
        )
        return mapping

    def set_payment_terms(self, vendor_name: str, terms: str) -> VendorMemory:
        """Record the vendor's payment terms."""
        memory, _ = self.get_or_create(vendor_name)
        memory.payment_terms = terms
        self._save(memory)

        self._logger.info("payment_terms_set", vendor=vendor_name, terms=terms)
        return memory
