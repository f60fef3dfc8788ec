"""
Invoice Memory Engine.

Learns reusable corrections for recurring invoice-processing errors
(vendor-specific field labels, VAT handling, missing currencies, SKU naming,
payment terms) and uses them to reduce the share of invoices that need
human review.

Usage:
    from invoice_memory import MemoryPipeline, Invoice, HumanCorrection

    with MemoryPipeline() as pipeline:
        result = pipeline.process(Invoice.from_dict(payload))
"""

from importlib.metadata import PackageNotFoundError, version

from invoice_memory.config import configure_logging, get_logger, get_settings
from invoice_memory.exceptions import (
    CorruptRecordError,
    InvalidCorrectionError,
    InvoiceMemoryError,
    KnowledgeStoreError,
)
from invoice_memory.pipeline import (
    Decision,
    DecisionEngine,
    LearnOutcome,
    MemoryApply,
    MemoryLearner,
    MemoryPipeline,
    MemoryRecall,
)
from invoice_memory.schemas import (
    FieldCorrection,
    HumanCorrection,
    Invoice,
    InvoiceFields,
    LineItem,
    ProcessingResult,
    PurchaseOrder,
)
from invoice_memory.storage import KnowledgeStore
from invoice_memory.validation import DuplicateGuard


try:
    __version__ = version("invoice-memory")
except PackageNotFoundError:
    __version__ = "1.0.0"


__all__ = [
    # Package info
    "__version__",
    # Configuration
    "configure_logging",
    "get_logger",
    "get_settings",
    # Errors
    "InvoiceMemoryError",
    "KnowledgeStoreError",
    "CorruptRecordError",
    "InvalidCorrectionError",
    # Pipeline
    "MemoryPipeline",
    "MemoryRecall",
    "MemoryApply",
    "DecisionEngine",
    "MemoryLearner",
    "Decision",
    "LearnOutcome",
    # Schemas
    "Invoice",
    "InvoiceFields",
    "LineItem",
    "PurchaseOrder",
    "HumanCorrection",
    "FieldCorrection",
    "ProcessingResult",
    # Infrastructure
    "KnowledgeStore",
    "DuplicateGuard",
]
