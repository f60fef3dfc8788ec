"""
RECALL stage: assemble the learned knowledge relevant to one invoice.

Pure read path. Fetches the vendor memory, the vendor's correction and
resolution memories, and asks the duplicate guard for a potential
duplicate. Nothing is written to the knowledge store.
"""

from __future__ import annotations

from datetime import datetime

from invoice_memory.config import get_logger, get_settings
from invoice_memory.config.settings import Settings
from invoice_memory.memory.confidence import decayed_since
from invoice_memory.memory.correction_memory import CorrectionMemoryRepository
from invoice_memory.memory.models import CorrectionMemory, RecalledMemories, VendorMemory
from invoice_memory.memory.resolution_memory import ResolutionMemoryRepository, count_resolutions
from invoice_memory.memory.vendor_memory import VendorMemoryRepository
from invoice_memory.schemas.invoice import Invoice
from invoice_memory.schemas.output import AuditEntry, AuditStep
from invoice_memory.storage.audit_trail import create_audit_entry
from invoice_memory.storage.knowledge_store import KnowledgeStore
from invoice_memory.utils.date_utils import utc_now
from invoice_memory.validation.duplicates import DuplicateGuard


logger = get_logger(__name__)

HIGH_CONFIDENCE = 0.7
RESOLUTION_REFERENCE_LIMIT = 5


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


class MemoryRecall:
    """
    Retrieve memories for an invoice.

    Example:
        recall = MemoryRecall(store)
        memories, audit = recall.recall(invoice)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        settings: Settings | None = None,
        duplicate_guard: DuplicateGuard | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._vendors = VendorMemoryRepository(store)
        self._corrections = CorrectionMemoryRepository(store)
        self._resolutions = ResolutionMemoryRepository(store)
        self._duplicates = duplicate_guard or DuplicateGuard(store, self._settings.duplicates)
        self._logger = logger

    def decayed_vendor_confidence(self, memory: VendorMemory, now: datetime) -> float:
        """Vendor aggregate confidence attenuated by days since last use."""
        decay = self._settings.decay
        return decayed_since(memory.confidence, memory.last_used, now, decay.daily_factor, decay.floor)

    def decayed_correction_confidence(self, memory: CorrectionMemory, now: datetime) -> float:
        """Correction confidence attenuated by days since its last update."""
        decay = self._settings.decay
        return decayed_since(memory.confidence, memory.updated_at, now, decay.daily_factor, decay.floor)

    def recall(
        self,
        invoice: Invoice,
        now: datetime | None = None,
    ) -> tuple[RecalledMemories, AuditEntry]:
        """
        Build the recalled-memory snapshot for an invoice.

        Args:
            invoice: Incoming invoice.
            now: Reference instant for confidence decay (defaults to now).

        Returns:
            Tuple of (recalled memories, audit entry).
        """
        now = now or utc_now()
        vendor_name = invoice.vendor
        details: list[str] = []
        memory_ids: list[str] = []

        vendor_memory = self._vendors.get(vendor_name)
        if vendor_memory is not None:
            memory_ids.append(vendor_memory.id)
            details.append(
                f'Found vendor memory for "{vendor_name}" with '
                f"{len(vendor_memory.field_mappings)} field mappings, "
                f"confidence: {_pct(self.decayed_vendor_confidence(vendor_memory, now))}"
            )
            if vendor_memory.tax_behavior is not None:
                behavior = vendor_memory.tax_behavior
                kind = "VAT inclusive" if behavior.is_inclusive else "VAT exclusive"
                details.append(f"Tax behavior: {kind}, confidence: {_pct(behavior.confidence)}")
            if vendor_memory.sku_mappings:
                details.append(f"SKU mappings available: {len(vendor_memory.sku_mappings)}")
            if vendor_memory.payment_terms:
                details.append(f"Payment terms: {vendor_memory.payment_terms}")
        else:
            details.append(
                f'No existing memory for vendor "{vendor_name}" - new vendor or first invoice'
            )

        correction_memories = self._corrections.list_for_vendor(vendor_name)
        if correction_memories:
            memory_ids.extend(c.id for c in correction_memories)
            high_confidence = sum(
                1
                for c in correction_memories
                if self.decayed_correction_confidence(c, now) >= HIGH_CONFIDENCE
            )
            details.append(
                f"Found {len(correction_memories)} correction patterns "
                f"({high_confidence} high-confidence)"
            )

        resolution_memories = self._resolutions.list_for_vendor(vendor_name)
        if resolution_memories:
            memory_ids.extend(r.id for r in resolution_memories[:RESOLUTION_REFERENCE_LIMIT])
            stats = count_resolutions(resolution_memories)
            details.append(
                f"Historical resolutions: {stats.approved_count} approved, "
                f"{stats.rejected_count} rejected"
            )

        potential_duplicate = self._duplicates.check(invoice)
        if potential_duplicate is not None:
            details.append(
                f"POTENTIAL DUPLICATE: Invoice {potential_duplicate.invoice_number} from "
                f"{potential_duplicate.vendor_name} processed on {potential_duplicate.processed_at}"
            )

        memories = RecalledMemories(
            vendor_memory=vendor_memory,
            correction_memories=correction_memories,
            resolution_memories=resolution_memories,
            potential_duplicate=potential_duplicate,
            recalled_at=now,
        )

        self._logger.info(
            "memories_recalled",
            invoice_id=invoice.invoice_id,
            vendor=vendor_name,
            has_vendor_memory=vendor_memory is not None,
            correction_memories=len(correction_memories),
            resolution_memories=len(resolution_memories),
            potential_duplicate=potential_duplicate is not None,
        )

        return memories, create_audit_entry(AuditStep.RECALL, details, memory_ids)
