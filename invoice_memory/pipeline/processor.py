"""
Memory pipeline facade.

Runs RECALL -> APPLY -> DECIDE for incoming invoices and LEARN when human
feedback arrives. The pipeline owns one knowledge store handle and threads
it through every stage; close it at shutdown or use the pipeline as a
context manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from invoice_memory.config import get_logger, get_settings
from invoice_memory.config.settings import Settings
from invoice_memory.extraction.extractors import RawTextExtractor
from invoice_memory.memory.models import (
    CorrectionMemory,
    MemoryUpdate,
    ResolutionMemory,
    VendorMemory,
)
from invoice_memory.pipeline.apply import MemoryApply
from invoice_memory.pipeline.decide import DecisionEngine
from invoice_memory.pipeline.learn import MemoryLearner
from invoice_memory.pipeline.recall import MemoryRecall
from invoice_memory.schemas.invoice import HumanCorrection, Invoice, PurchaseOrder
from invoice_memory.schemas.output import AuditEntry, AuditStep, ProcessingResult
from invoice_memory.storage.audit_trail import AuditTrail, create_audit_entry
from invoice_memory.storage.knowledge_store import KnowledgeStore
from invoice_memory.validation.duplicates import DuplicateGuard


logger = get_logger(__name__)


@dataclass(slots=True)
class LearnOutcome:
    """
    Result of feeding a human correction back into memory.

    Attributes:
        memory_updates: Changes made to the knowledge store.
        audit_entry: LEARN audit entry.
        skipped: True when learning was refused (e.g. duplicate invoice).
        reason: Why learning was refused.
    """

    memory_updates: list[MemoryUpdate]
    audit_entry: AuditEntry
    skipped: bool = False
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory_updates": [u.to_dict() for u in self.memory_updates],
            "audit_entry": self.audit_entry.to_dict(),
            "skipped": self.skipped,
            "reason": self.reason,
        }


@dataclass(slots=True)
class MemorySnapshot:
    """All memories in the knowledge store."""

    vendor_memories: list[VendorMemory] = field(default_factory=list)
    correction_memories: list[CorrectionMemory] = field(default_factory=list)
    resolution_memories: list[ResolutionMemory] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "vendor_memories": [m.to_dict() for m in self.vendor_memories],
            "correction_memories": [m.to_dict() for m in self.correction_memories],
            "resolution_memories": [m.to_dict() for m in self.resolution_memories],
        }


class MemoryPipeline:
    """
    Process invoices through the memory pipeline and learn from feedback.

    Example:
        with MemoryPipeline() as pipeline:
            result = pipeline.process(invoice)
            if result.requires_human_review:
                ...
                pipeline.apply_human_correction(invoice, correction)
    """

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        settings: Settings | None = None,
        extractor: RawTextExtractor | None = None,
    ) -> None:
        """
        Wire the pipeline stages to one knowledge store.

        Args:
            store: Knowledge store; a store at ``storage.path`` by default.
            settings: Application settings; cached settings by default.
            extractor: Raw-text extractor for APPLY; regex-based by default.
        """
        self._settings = settings or get_settings()
        self._store = store or KnowledgeStore(self._settings.storage.path)

        self._duplicates = DuplicateGuard(self._store, self._settings.duplicates)
        self._recall = MemoryRecall(self._store, self._settings, self._duplicates)
        self._apply = MemoryApply(self._settings, extractor)
        self._decide = DecisionEngine(self._settings)
        self._learner = MemoryLearner(self._store, self._duplicates)
        self._audit = AuditTrail(self._store)
        self._logger = logger

    @property
    def store(self) -> KnowledgeStore:
        return self._store

    @property
    def duplicate_guard(self) -> DuplicateGuard:
        return self._duplicates

    def _persist_audit(self, invoice_id: str, entries: list[AuditEntry]) -> None:
        if self._settings.storage.persist_audit_trail:
            self._audit.log_all(invoice_id, entries)

    def process(
        self,
        invoice: Invoice,
        purchase_orders: list[PurchaseOrder] | None = None,
    ) -> ProcessingResult:
        """
        Run RECALL, APPLY and DECIDE for one invoice.

        No memory is mutated; only the three audit entries are written.

        Args:
            invoice: Incoming invoice.
            purchase_orders: Candidate purchase orders for PO matching.

        Returns:
            ProcessingResult with an empty ``memory_updates`` list.
        """
        memories, recall_audit = self._recall.recall(invoice)
        normalized, corrections, apply_audit = self._apply.apply(
            invoice, memories, purchase_orders
        )
        decision, decide_audit = self._decide.decide(
            normalized, corrections, memories, invoice.confidence
        )

        audit_trail = [recall_audit, apply_audit, decide_audit]
        self._persist_audit(invoice.invoice_id, audit_trail)

        self._logger.info(
            "invoice_processed",
            invoice_id=invoice.invoice_id,
            vendor=invoice.vendor,
            requires_review=decision.requires_review,
            confidence_score=round(decision.confidence_score, 4),
        )

        return ProcessingResult(
            normalized_invoice=normalized,
            proposed_corrections=corrections,
            requires_human_review=decision.requires_review,
            reasoning=decision.reasoning,
            confidence_score=decision.confidence_score,
            escalation_reasons=decision.escalation_reasons,
            memory_updates=[],
            audit_trail=audit_trail,
        )

    def apply_human_correction(
        self,
        invoice: Invoice,
        correction: HumanCorrection,
    ) -> LearnOutcome:
        """
        Learn from a human correction unless the invoice is a duplicate.

        A duplicate invoice leaves memory and the processed ledger untouched;
        the refusal is returned with ``skipped=True`` and audited.
        """
        with self._learner.vendor_lock(invoice.vendor):
            duplicate = self._duplicates.check(invoice)
            if duplicate is not None:
                reason = (
                    f"Learning refused: invoice {invoice.fields.invoice_number} duplicates "
                    f"ledger entry {duplicate.id} processed on {duplicate.processed_at}"
                )
                self._logger.warning(
                    "learn_refused_duplicate",
                    invoice_id=invoice.invoice_id,
                    vendor=invoice.vendor,
                    duplicate_of=duplicate.id,
                )
                audit = create_audit_entry(AuditStep.LEARN, reason)
                self._persist_audit(invoice.invoice_id, [audit])
                return LearnOutcome(memory_updates=[], audit_entry=audit, skipped=True, reason=reason)

            updates, audit = self._learner.learn(invoice, correction)

        self._persist_audit(invoice.invoice_id, [audit])
        self._store.flush()
        return LearnOutcome(memory_updates=updates, audit_entry=audit)

    def learn_from_batch(
        self,
        invoices: list[Invoice],
        corrections: list[HumanCorrection],
    ) -> list[LearnOutcome]:
        """
        Apply a batch of human corrections, pairing them with invoices by ID.

        Corrections for unknown invoices are skipped with a warning.
        """
        by_id = {invoice.invoice_id: invoice for invoice in invoices}
        outcomes: list[LearnOutcome] = []

        for correction in corrections:
            invoice = by_id.get(correction.invoice_id)
            if invoice is None:
                self._logger.warning(
                    "learn_invoice_not_found",
                    invoice_id=correction.invoice_id,
                    vendor=correction.vendor,
                )
                continue
            outcomes.append(self.apply_human_correction(invoice, correction))

        return outcomes

    def get_vendor_memory(self, vendor_name: str) -> VendorMemory | None:
        """Current vendor memory for a vendor."""
        return self._learner.vendors.get(vendor_name)

    def get_all_memories(self) -> MemorySnapshot:
        """Every vendor, correction and resolution memory."""
        return MemorySnapshot(
            vendor_memories=self._learner.vendors.list_all(),
            correction_memories=self._learner.corrections.list_all(),
            resolution_memories=self._learner.resolutions.list_all(),
        )

    def get_audit_trail(self, invoice_id: str) -> list[AuditEntry]:
        """Persisted audit entries for an invoice, oldest first."""
        return self._audit.get(invoice_id)

    def reset(self) -> None:
        """Delete all memories, ledger entries and audit entries."""
        self._store.reset()
        self._logger.warning("memories_reset")

    def close(self) -> None:
        """Flush and close the knowledge store."""
        self._store.close()

    def __enter__(self) -> MemoryPipeline:
        self._store.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
