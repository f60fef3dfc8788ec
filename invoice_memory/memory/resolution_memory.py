"""
Resolution memory repository.

Resolution memories are append-only records of human decisions. They are
only read in aggregate (counts and ratios).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from invoice_memory.config import get_logger
from invoice_memory.memory.models import ResolutionMemory
from invoice_memory.utils.hash_utils import generate_unique_id


if TYPE_CHECKING:
    from invoice_memory.storage.knowledge_store import KnowledgeStore


logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResolutionStats:
    """Approval counts for one vendor and discrepancy type."""

    approved_count: int
    rejected_count: int

    @property
    def total(self) -> int:
        return self.approved_count + self.rejected_count

    @property
    def approval_rate(self) -> float:
        """Share of approvals; 0.5 when nothing has been decided."""
        if self.total == 0:
            return 0.5
        return self.approved_count / self.total


def count_resolutions(resolutions: list[ResolutionMemory]) -> ResolutionStats:
    """Count approvals and rejections in a list of resolutions."""
    approved = sum(1 for r in resolutions if r.is_approved)
    return ResolutionStats(approved_count=approved, rejected_count=len(resolutions) - approved)


class ResolutionMemoryRepository:
    """Append and query resolution memories."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store
        self._logger = logger

    def record(
        self,
        invoice_id: str,
        vendor_name: str,
        discrepancy_type: str,
        original_value: Any,
        corrected_value: Any,
        resolution: str,
        human_feedback: str | None = None,
    ) -> ResolutionMemory:
        """
        Append one resolution memory.

        Args:
            invoice_id: Document the decision was made on.
            vendor_name: Vendor of the document.
            discrepancy_type: Corrected field key (``service_date``, ``line_items[0].sku``).
            original_value: Value before the correction.
            corrected_value: Value the human supplied.
            resolution: ``approved`` or ``rejected``.
            human_feedback: Free-text rationale.

        Returns:
            The stored record.
        """
        memory = ResolutionMemory(
            id=generate_unique_id(),
            invoice_id=invoice_id,
            vendor_name=vendor_name,
            discrepancy_type=discrepancy_type,
            original_value=original_value,
            corrected_value=corrected_value,
            resolution=resolution,
            human_feedback=human_feedback or None,
        )
        self._store.insert_resolution_memory(memory)

        self._logger.debug(
            "resolution_recorded",
            invoice_id=invoice_id,
            vendor=vendor_name,
            discrepancy_type=discrepancy_type,
            resolution=resolution,
        )
        return memory

    def list_for_vendor(self, vendor_name: str) -> list[ResolutionMemory]:
        """Resolution memories for a vendor, most recent first."""
        return self._store.list_resolution_memories(vendor_name)

    def list_all(self) -> list[ResolutionMemory]:
        return self._store.list_resolution_memories()

    def find_similar(
        self,
        vendor_name: str,
        discrepancy_type: str,
        limit: int = 5,
    ) -> list[ResolutionMemory]:
        """Most recent resolutions of one discrepancy type for a vendor."""
        matches = [
            r for r in self.list_for_vendor(vendor_name)
            if r.discrepancy_type == discrepancy_type
        ]
        return matches[:limit]

    def stats(self, vendor_name: str, discrepancy_type: str) -> ResolutionStats:
        """Approval statistics for one vendor and discrepancy type."""
        return count_resolutions(
            [
                r for r in self.list_for_vendor(vendor_name)
                if r.discrepancy_type == discrepancy_type
            ]
        )
