"""
Output contract types for the memory pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from invoice_memory.memory.models import MemoryUpdate
from invoice_memory.utils.date_utils import get_current_timestamp


class AuditStep(str, Enum):
    """Pipeline step recorded in the audit trail."""

    RECALL = "recall"
    APPLY = "apply"
    DECIDE = "decide"
    LEARN = "learn"


@dataclass(slots=True)
class AuditEntry:
    """
    One audit trail entry.

    Attributes:
        step: Pipeline step that produced the entry.
        details: Free-text description of what the step did.
        timestamp: ISO-8601 UTC timestamp.
        memory_ids: IDs of memories the step referenced.
    """

    step: AuditStep
    details: str
    timestamp: str = field(default_factory=get_current_timestamp)
    memory_ids: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "step": self.step.value,
            "timestamp": self.timestamp,
            "details": self.details,
            "memory_ids": self.memory_ids,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        """Create from dictionary."""
        return cls(
            step=AuditStep(data["step"]),
            details=data.get("details", ""),
            timestamp=data.get("timestamp", get_current_timestamp()),
            memory_ids=data.get("memory_ids"),
        )


@dataclass(slots=True)
class NormalizedLineItem:
    """A line item coerced to the canonical shape."""

    sku: str
    description: str
    qty: float
    unit_price: float
    amount: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sku": self.sku,
            "description": self.description,
            "qty": self.qty,
            "unit_price": self.unit_price,
            "amount": self.amount,
        }


@dataclass(slots=True)
class NormalizedInvoice:
    """Normalized copy of an invoice with auto-applied corrections written in."""

    invoice_id: str
    vendor: str
    invoice_number: str
    invoice_date: str
    currency: str | None
    net_total: float
    tax_rate: float
    tax_total: float
    gross_total: float
    line_items: list[NormalizedLineItem] = field(default_factory=list)
    service_date: str | None = None
    po_number: str | None = None
    discount_terms: str | None = None

    def get_field(self, name: str) -> Any:
        """Read a document-level field by name (None for unknown names)."""
        return getattr(self, name, None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "invoice_id": self.invoice_id,
            "vendor": self.vendor,
            "invoice_number": self.invoice_number,
            "invoice_date": self.invoice_date,
            "service_date": self.service_date,
            "currency": self.currency,
            "po_number": self.po_number,
            "net_total": self.net_total,
            "tax_rate": self.tax_rate,
            "tax_total": self.tax_total,
            "gross_total": self.gross_total,
            "line_items": [item.to_dict() for item in self.line_items],
            "discount_terms": self.discount_terms,
        }


@dataclass(slots=True)
class ProposedCorrection:
    """
    A correction proposed by the APPLY stage.

    Attributes:
        field: Target key (``service_date``, ``line_items[0].sku``...).
        original_value: Value before the correction.
        proposed_value: Suggested value.
        confidence: Confidence in the suggestion.
        reasoning: Why the correction was proposed.
        auto_applied: Whether the value was written into the normalized invoice.
    """

    field: str
    original_value: Any
    proposed_value: Any
    confidence: float
    reasoning: str
    auto_applied: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "field": self.field,
            "original_value": self.original_value,
            "proposed_value": self.proposed_value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "auto_applied": self.auto_applied,
        }


@dataclass(slots=True)
class ProcessingResult:
    """Complete output of one pipeline run."""

    normalized_invoice: NormalizedInvoice
    proposed_corrections: list[ProposedCorrection]
    requires_human_review: bool
    reasoning: str
    confidence_score: float
    escalation_reasons: list[str] = field(default_factory=list)
    memory_updates: list[MemoryUpdate] = field(default_factory=list)
    audit_trail: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "normalized_invoice": self.normalized_invoice.to_dict(),
            "proposed_corrections": [c.to_dict() for c in self.proposed_corrections],
            "requires_human_review": self.requires_human_review,
            "reasoning": self.reasoning,
            "confidence_score": self.confidence_score,
            "escalation_reasons": list(self.escalation_reasons),
            "memory_updates": [u.to_dict() for u in self.memory_updates],
            "audit_trail": [e.to_dict() for e in self.audit_trail],
        }
