"""
Schema types for invoice intake, human corrections and pipeline output.
"""

from invoice_memory.schemas.invoice import (
    DOCUMENT_FIELDS,
    LINE_ITEM_FIELDS,
    CorrectionTarget,
    DocumentField,
    FieldCorrection,
    HumanCorrection,
    Invoice,
    InvoiceFields,
    LineItem,
    LineItemField,
    PurchaseOrder,
    Resolution,
    parse_target,
)
from invoice_memory.schemas.output import (
    AuditEntry,
    AuditStep,
    NormalizedInvoice,
    NormalizedLineItem,
    ProcessingResult,
    ProposedCorrection,
)


__all__ = [
    # Intake
    "DOCUMENT_FIELDS",
    "LINE_ITEM_FIELDS",
    "Invoice",
    "InvoiceFields",
    "LineItem",
    "PurchaseOrder",
    "Resolution",
    "HumanCorrection",
    "FieldCorrection",
    "CorrectionTarget",
    "DocumentField",
    "LineItemField",
    "parse_target",
    # Output
    "AuditEntry",
    "AuditStep",
    "NormalizedInvoice",
    "NormalizedLineItem",
    "ProposedCorrection",
    "ProcessingResult",
]
