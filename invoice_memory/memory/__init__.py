"""
Memory module for learned vendor, correction and resolution knowledge.

Provides the memory record types, the bounded confidence model and the
repositories that read and update memories in a knowledge store.
"""

from invoice_memory.memory.confidence import (
    decay_confidence,
    step_confidence,
    success_rate_confidence,
    vendor_aggregate_confidence,
)
from invoice_memory.memory.correction_memory import CorrectionMemoryRepository
from invoice_memory.memory.models import (
    CorrectionMemory,
    CorrectionType,
    FieldMapping,
    MemoryKind,
    MemoryUpdate,
    ProcessedInvoice,
    RecalledMemories,
    ResolutionMemory,
    SkuMapping,
    TaxBehavior,
    UpdateAction,
    VendorMemory,
)
from invoice_memory.memory.resolution_memory import (
    ResolutionMemoryRepository,
    ResolutionStats,
    count_resolutions,
)
from invoice_memory.memory.vendor_memory import VendorMemoryRepository


__all__ = [
    # Models
    "CorrectionMemory",
    "CorrectionType",
    "FieldMapping",
    "MemoryKind",
    "MemoryUpdate",
    "ProcessedInvoice",
    "RecalledMemories",
    "ResolutionMemory",
    "SkuMapping",
    "TaxBehavior",
    "UpdateAction",
    "VendorMemory",
    # Confidence
    "decay_confidence",
    "step_confidence",
    "success_rate_confidence",
    "vendor_aggregate_confidence",
    # Repositories
    "VendorMemoryRepository",
    "CorrectionMemoryRepository",
    "ResolutionMemoryRepository",
    "ResolutionStats",
    "count_resolutions",
]
