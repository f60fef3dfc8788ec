"""
Correction memory repository.

A correction memory is a recognized repeatable fix for a (vendor, field)
pair. Its confidence is always derived from success and failure counts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from invoice_memory.config import get_logger
from invoice_memory.memory.confidence import initial_confidence, success_rate_confidence
from invoice_memory.memory.models import CorrectionMemory, CorrectionType
from invoice_memory.utils.date_utils import get_current_timestamp
from invoice_memory.utils.hash_utils import generate_unique_id
from invoice_memory.utils.string_utils import contains_either_way


if TYPE_CHECKING:
    from invoice_memory.storage.knowledge_store import KnowledgeStore


logger = get_logger(__name__)


class CorrectionMemoryRepository:
    """Create, find, reinforce and weaken correction memories."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store
        self._logger = logger

    def list_for_vendor(self, vendor_name: str) -> list[CorrectionMemory]:
        """Correction memories for a vendor, highest confidence first."""
        return self._store.list_correction_memories(vendor_name)

    def list_all(self) -> list[CorrectionMemory]:
        return self._store.list_correction_memories()

    def find_matching(
        self,
        vendor_name: str,
        field_name: str,
        pattern: str | None = None,
    ) -> CorrectionMemory | None:
        """
        Highest-confidence correction memory for a vendor and field.

        Args:
            vendor_name: Vendor name.
            field_name: Index-free field name (``service_date``, ``line_items.sku``).
            pattern: When given, the stored pattern must contain it or be
                contained in it (case-insensitive).

        Returns:
            Best match, or None.
        """
        for memory in self.list_for_vendor(vendor_name):
            if memory.field_name != field_name:
                continue
            if pattern and memory.pattern and not contains_either_way(memory.pattern, pattern):
                continue
            return memory
        return None

    def record(
        self,
        vendor_name: str,
        field_name: str,
        pattern: str,
        correction_type: CorrectionType,
        correction_value: Any = None,
        success: bool = True,
    ) -> tuple[CorrectionMemory, bool]:
        """
        Find the memory for a (vendor, field, pattern) triple or create it.

        A new memory already counts the observation that created it. An
        existing memory is returned unchanged; callers reinforce or weaken it.

        Returns:
            Tuple of (memory, created).
        """
        existing = self.find_matching(vendor_name, field_name, pattern)
        if existing is not None:
            return existing, False

        memory = CorrectionMemory(
            id=generate_unique_id(),
            vendor_name=vendor_name,
            field_name=field_name,
            pattern=pattern,
            correction_type=correction_type,
            correction_value=correction_value,
            confidence=initial_confidence(success),
            success_count=1 if success else 0,
            failure_count=0 if success else 1,
        )
        self._store.insert_correction_memory(memory)

        self._logger.info(
            "correction_memory_created",
            vendor=vendor_name,
            field=field_name,
            pattern=pattern,
            correction_type=correction_type.value,
            memory_id=memory.id,
        )
        return memory, True

    def reinforce(self, memory: CorrectionMemory) -> CorrectionMemory:
        """Count one more approval and recompute confidence."""
        memory.success_count += 1
        return self._save_counts(memory, "correction_memory_reinforced")

    def weaken(self, memory: CorrectionMemory) -> CorrectionMemory:
        """Count one more rejection and recompute confidence."""
        memory.failure_count += 1
        return self._save_counts(memory, "correction_memory_weakened")

    def _save_counts(self, memory: CorrectionMemory, event: str) -> CorrectionMemory:
        memory.confidence = success_rate_confidence(memory.success_count, memory.failure_count)
        memory.updated_at = get_current_timestamp()
        self._store.save_correction_counts(memory)

        self._logger.info(
            event,
            vendor=memory.vendor_name,
            field=memory.field_name,
            memory_id=memory.id,
            success_count=memory.success_count,
            failure_count=memory.failure_count,
            confidence=memory.confidence,
        )
        return memory
