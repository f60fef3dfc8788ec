"""
Memory record types.

Vendor memory is the owning aggregate for its field mappings, tax behavior
and SKU mappings; those children are stored as JSON blobs inside the vendor
row. Correction and resolution memories are independent records keyed by
generated IDs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from invoice_memory.utils.date_utils import get_current_timestamp


class CorrectionType(str, Enum):
    """Kinds of repeatable correction patterns."""

    EXTRACT_FROM_RAWTEXT = "extract_from_rawtext"
    RECALCULATE_TAX = "recalculate_tax"
    MATCH_PO = "match_po"
    MAP_SKU = "map_sku"
    SET_CURRENCY = "set_currency"
    SET_PAYMENT_TERMS = "set_payment_terms"


class MemoryKind(str, Enum):
    """Memory kind touched by a learning update."""

    VENDOR = "vendor"
    CORRECTION = "correction"
    RESOLUTION = "resolution"


class UpdateAction(str, Enum):
    """What a learning update did to a memory."""

    CREATE = "create"
    REINFORCE = "reinforce"
    WEAKEN = "weaken"


@dataclass(slots=True)
class FieldMapping:
    """A learned label → field mapping (e.g. "Leistungsdatum" → service_date)."""

    source_label: str
    target_field: str
    confidence: float
    success_count: int = 0
    failure_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_label": self.source_label,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldMapping:
        return cls(
            source_label=data["source_label"],
            target_field=data["target_field"],
            confidence=data["confidence"],
            success_count=data.get("success_count", 0),
            failure_count=data.get("failure_count", 0),
        )


@dataclass(slots=True)
class TaxBehavior:
    """Learned VAT handling of a vendor."""

    is_inclusive: bool
    default_rate: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_inclusive": self.is_inclusive,
            "default_rate": self.default_rate,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxBehavior:
        return cls(
            is_inclusive=data["is_inclusive"],
            default_rate=data.get("default_rate", 0.0),
            confidence=data["confidence"],
        )


@dataclass(slots=True)
class SkuMapping:
    """A learned line item description → SKU mapping."""

    description: str
    sku: str
    confidence: float
    usage_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "sku": self.sku,
            "confidence": self.confidence,
            "usage_count": self.usage_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SkuMapping:
        return cls(
            description=data["description"],
            sku=data["sku"],
            confidence=data["confidence"],
            usage_count=data.get("usage_count", 1),
        )


@dataclass(slots=True)
class VendorMemory:
    """
    Aggregate of learned per-vendor patterns.

    Attributes:
        id: Unique identifier.
        vendor_name: Vendor name (unique key).
        field_mappings: Learned label → field mappings.
        sku_mappings: Learned description → SKU mappings.
        tax_behavior: Learned VAT behavior, if any.
        default_currency: Learned default currency, if any.
        payment_terms: Learned payment terms, if any.
        confidence: Aggregate confidence, derived from the sub-memories.
        usage_count: Number of learning updates applied to this vendor.
        last_used: Timestamp of the last update.
        created_at: Creation timestamp.
        updated_at: Last modification timestamp.
    """

    id: str
    vendor_name: str
    field_mappings: list[FieldMapping] = field(default_factory=list)
    sku_mappings: list[SkuMapping] = field(default_factory=list)
    tax_behavior: TaxBehavior | None = None
    default_currency: str | None = None
    payment_terms: str | None = None
    confidence: float = 0.5
    usage_count: int = 0
    last_used: str = field(default_factory=get_current_timestamp)
    created_at: str = field(default_factory=get_current_timestamp)
    updated_at: str = field(default_factory=get_current_timestamp)

    def sub_memory_confidences(self) -> list[float]:
        """Confidences of all owned sub-memories."""
        confidences = [m.confidence for m in self.field_mappings]
        if self.tax_behavior is not None:
            confidences.append(self.tax_behavior.confidence)
        confidences.extend(m.confidence for m in self.sku_mappings)
        return confidences

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vendor_name": self.vendor_name,
            "field_mappings": [m.to_dict() for m in self.field_mappings],
            "tax_behavior": self.tax_behavior.to_dict() if self.tax_behavior else None,
            "default_currency": self.default_currency,
            "sku_mappings": [m.to_dict() for m in self.sku_mappings],
            "payment_terms": self.payment_terms,
            "confidence": self.confidence,
            "usage_count": self.usage_count,
            "last_used": self.last_used,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class CorrectionMemory:
    """
    A recognized repeatable correction for a (vendor, field) pair.

    Confidence is derived from success/failure counts, see
    ``invoice_memory.memory.confidence.success_rate_confidence``.
    """

    id: str
    vendor_name: str
    field_name: str
    pattern: str
    correction_type: CorrectionType
    correction_value: Any = None
    confidence: float = 0.6
    success_count: int = 1
    failure_count: int = 0
    created_at: str = field(default_factory=get_current_timestamp)
    updated_at: str = field(default_factory=get_current_timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vendor_name": self.vendor_name,
            "field_name": self.field_name,
            "pattern": self.pattern,
            "correction_type": self.correction_type.value,
            "correction_value": self.correction_value,
            "confidence": self.confidence,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class ResolutionMemory:
    """Immutable record of one human decision on one field correction."""

    id: str
    invoice_id: str
    vendor_name: str
    discrepancy_type: str
    original_value: Any
    corrected_value: Any
    resolution: str
    human_feedback: str | None = None
    created_at: str = field(default_factory=get_current_timestamp)

    @property
    def is_approved(self) -> bool:
        return self.resolution == "approved"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "vendor_name": self.vendor_name,
            "discrepancy_type": self.discrepancy_type,
            "original_value": self.original_value,
            "corrected_value": self.corrected_value,
            "resolution": self.resolution,
            "human_feedback": self.human_feedback,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class ProcessedInvoice:
    """Ledger entry for a document that completed LEARN."""

    id: str
    invoice_number: str
    vendor_name: str
    invoice_date: str
    gross_total: float
    processed_at: str
    fingerprint: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "vendor_name": self.vendor_name,
            "invoice_date": self.invoice_date,
            "gross_total": self.gross_total,
            "processed_at": self.processed_at,
            "fingerprint": self.fingerprint,
        }


@dataclass(slots=True)
class MemoryUpdate:
    """A single change LEARN made to the knowledge store."""

    kind: MemoryKind
    action: UpdateAction
    details: str
    memory_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "action": self.action.value,
            "details": self.details,
            "memory_id": self.memory_id,
        }


@dataclass(slots=True)
class RecalledMemories:
    """
    Per-document working set assembled by RECALL.

    Attributes:
        vendor_memory: Vendor memory, absent for unknown vendors.
        correction_memories: Vendor correction memories, highest confidence first.
        resolution_memories: Vendor resolution memories, most recent first.
        potential_duplicate: Ledger entry this document may duplicate.
        recalled_at: Reference instant for confidence decay.
    """

    vendor_memory: VendorMemory | None = None
    correction_memories: list[CorrectionMemory] = field(default_factory=list)
    resolution_memories: list[ResolutionMemory] = field(default_factory=list)
    potential_duplicate: ProcessedInvoice | None = None
    recalled_at: datetime | None = None

    def memory_ids(self) -> list[str]:
        ids: list[str] = []
        if self.vendor_memory is not None:
            ids.append(self.vendor_memory.id)
        ids.extend(c.id for c in self.correction_memories)
        return ids
