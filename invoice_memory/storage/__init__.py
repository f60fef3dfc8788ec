"""
Storage module for the knowledge store and audit trail.
"""

from invoice_memory.storage.audit_trail import AuditTrail, create_audit_entry
from invoice_memory.storage.knowledge_store import KnowledgeStore


__all__ = [
    "KnowledgeStore",
    "AuditTrail",
    "create_audit_entry",
]
