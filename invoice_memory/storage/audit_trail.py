"""
Audit trail for pipeline steps.

Each pipeline stage produces an ``AuditEntry``; the trail persists entries
to the knowledge store's ``audit_logs`` table keyed by document ID.
"""

from __future__ import annotations

from invoice_memory.config import get_logger
from invoice_memory.schemas.output import AuditEntry, AuditStep
from invoice_memory.storage.knowledge_store import KnowledgeStore


logger = get_logger(__name__)

_NO_DETAILS = "No details"


def create_audit_entry(
    step: AuditStep,
    details: list[str] | str,
    memory_ids: list[str] | None = None,
) -> AuditEntry:
    """
    Build an audit entry for a pipeline step.

    Args:
        step: Pipeline step.
        details: Detail string or list of detail fragments (joined with "; ").
        memory_ids: Referenced memory IDs; an empty list is stored as None.

    Returns:
        AuditEntry stamped with the current time.
    """
    if isinstance(details, list):
        details = "; ".join(details)
    return AuditEntry(
        step=step,
        details=details or _NO_DETAILS,
        memory_ids=list(memory_ids) if memory_ids else None,
    )


class AuditTrail:
    """Persist and read audit entries for documents."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def log(self, invoice_id: str, entry: AuditEntry) -> AuditEntry:
        """Append an entry to the document's trail."""
        self._store.append_audit_entry(
            invoice_id=invoice_id,
            step=entry.step.value,
            timestamp=entry.timestamp,
            details=entry.details,
            memory_ids=entry.memory_ids,
        )
        logger.debug("audit_entry_logged", invoice_id=invoice_id, step=entry.step.value)
        return entry

    def log_all(self, invoice_id: str, entries: list[AuditEntry]) -> None:
        for entry in entries:
            self.log(invoice_id, entry)

    def get(self, invoice_id: str) -> list[AuditEntry]:
        """The document's trail in the order entries were logged."""
        return [AuditEntry.from_dict(row) for row in self._store.list_audit_entries(invoice_id)]
