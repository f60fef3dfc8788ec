"""
Intake types for invoices, purchase orders and human corrections.

Documents arrive already extracted into a fixed field schema. ``from_dict``
accepts both snake_case and the camelCase keys emitted by the extraction
layer (``invoiceId``, ``rawText``, ``lineItems``...).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from invoice_memory.exceptions import InvalidCorrectionError
from invoice_memory.utils.string_utils import to_snake_case


# Document-level fields a correction may target
DOCUMENT_FIELDS: frozenset[str] = frozenset(
    {
        "invoice_number",
        "invoice_date",
        "service_date",
        "currency",
        "po_number",
        "net_total",
        "tax_rate",
        "tax_total",
        "gross_total",
        "discount_terms",
    }
)

# Fields of a single line item a correction may target
LINE_ITEM_FIELDS: frozenset[str] = frozenset(
    {"sku", "description", "qty", "unit_price", "amount"}
)

_LINE_ITEM_TARGET = re.compile(r"^(?:lineItems|line_items)\[(\d+)\]\.(\w+)$")


def _pick(data: dict[str, Any], key: str, default: Any = None) -> Any:
    """Read a snake_case key, falling back to its camelCase spelling."""
    if key in data:
        return data[key]
    head, *rest = key.split("_")
    camel = head + "".join(part.capitalize() for part in rest)
    return data.get(camel, default)


class Resolution(str, Enum):
    """Final human decision on a correction batch."""

    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(slots=True)
class LineItem:
    """A raw invoice or purchase order line item."""

    qty: float
    unit_price: float
    sku: str | None = None
    description: str = ""
    amount: float | None = None
    qty_delivered: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sku": self.sku,
            "description": self.description,
            "qty": self.qty,
            "unit_price": self.unit_price,
            "amount": self.amount,
            "qty_delivered": self.qty_delivered,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        """Create from dictionary."""
        return cls(
            qty=data.get("qty", 0),
            unit_price=_pick(data, "unit_price", 0.0),
            sku=data.get("sku"),
            description=data.get("description") or "",
            amount=data.get("amount"),
            qty_delivered=_pick(data, "qty_delivered"),
        )


@dataclass(slots=True)
class InvoiceFields:
    """
    Extracted invoice fields.

    Attributes:
        invoice_number: Vendor's invoice number.
        invoice_date: Invoice date as printed (DD.MM.YYYY, YYYY-MM-DD, ...).
        net_total: Net amount.
        tax_rate: Tax rate as a fraction (0.19) or percentage, as extracted.
        tax_total: Tax amount.
        gross_total: Gross amount.
        line_items: Extracted line items.
        service_date: Date of service delivery, if extracted.
        currency: ISO currency code, if extracted.
        po_number: Purchase order reference, if extracted.
        discount_terms: Payment/discount terms, if extracted.
    """

    invoice_number: str
    invoice_date: str
    net_total: float = 0.0
    tax_rate: float = 0.0
    tax_total: float = 0.0
    gross_total: float = 0.0
    line_items: list[LineItem] = field(default_factory=list)
    service_date: str | None = None
    currency: str | None = None
    po_number: str | None = None
    discount_terms: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
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

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InvoiceFields:
        """Create from dictionary."""
        return cls(
            invoice_number=_pick(data, "invoice_number", ""),
            invoice_date=_pick(data, "invoice_date", ""),
            net_total=_pick(data, "net_total", 0.0),
            tax_rate=_pick(data, "tax_rate", 0.0),
            tax_total=_pick(data, "tax_total", 0.0),
            gross_total=_pick(data, "gross_total", 0.0),
            line_items=[LineItem.from_dict(i) for i in _pick(data, "line_items", [])],
            service_date=_pick(data, "service_date"),
            currency=data.get("currency"),
            po_number=_pick(data, "po_number"),
            discount_terms=_pick(data, "discount_terms"),
        )


@dataclass(slots=True)
class Invoice:
    """
    An extracted invoice entering the memory pipeline.

    Attributes:
        invoice_id: Unique document identifier.
        vendor: Vendor name; the key for all vendor-scoped memory.
        fields: Extracted fields.
        confidence: Extraction confidence in [0, 1].
        raw_text: Free text body used by raw-text extractors.
    """

    invoice_id: str
    vendor: str
    fields: InvoiceFields
    confidence: float = 0.0
    raw_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "invoice_id": self.invoice_id,
            "vendor": self.vendor,
            "fields": self.fields.to_dict(),
            "confidence": self.confidence,
            "raw_text": self.raw_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Invoice:
        """Create from dictionary."""
        return cls(
            invoice_id=_pick(data, "invoice_id", ""),
            vendor=data.get("vendor", ""),
            fields=InvoiceFields.from_dict(data.get("fields", {})),
            confidence=data.get("confidence", 0.0),
            raw_text=_pick(data, "raw_text", "") or "",
        )


@dataclass(slots=True)
class PurchaseOrder:
    """A purchase order candidate for PO matching."""

    po_number: str
    vendor: str
    date: str = ""
    line_items: list[LineItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchaseOrder:
        """Create from dictionary."""
        return cls(
            po_number=_pick(data, "po_number", ""),
            vendor=data.get("vendor", ""),
            date=data.get("date", ""),
            line_items=[LineItem.from_dict(i) for i in _pick(data, "line_items", [])],
        )


@dataclass(frozen=True, slots=True)
class DocumentField:
    """Correction target addressing a document-level field."""

    name: str

    @property
    def key(self) -> str:
        return self.name

    @property
    def memory_field(self) -> str:
        return self.name

    def validate(self, invoice: Invoice) -> None:
        if self.name not in DOCUMENT_FIELDS:
            raise InvalidCorrectionError(
                f"Unknown field name: {self.name}",
                details={"field": self.name},
            )


@dataclass(frozen=True, slots=True)
class LineItemField:
    """Correction target addressing one field of one line item."""

    index: int
    name: str

    @property
    def key(self) -> str:
        return f"line_items[{self.index}].{self.name}"

    @property
    def memory_field(self) -> str:
        """Index-free field name under which correction memories are kept."""
        return f"line_items.{self.name}"

    def validate(self, invoice: Invoice) -> None:
        if self.name not in LINE_ITEM_FIELDS:
            raise InvalidCorrectionError(
                f"Unknown line item field: {self.name}",
                details={"field": self.key},
            )
        if not 0 <= self.index < len(invoice.fields.line_items):
            raise InvalidCorrectionError(
                f"Line item index {self.index} out of range "
                f"({len(invoice.fields.line_items)} line items)",
                details={"field": self.key},
            )


CorrectionTarget = DocumentField | LineItemField


def parse_target(value: str | dict[str, Any] | CorrectionTarget) -> CorrectionTarget:
    """
    Parse the wire form of a correction target.

    Accepts ``"serviceDate"``, ``"service_date"``, ``"lineItems[2].sku"`` or a
    mapping ``{"kind": "line_item", "index": 2, "field": "sku"}``. Names are
    not validated here; see ``validate`` on the returned target.
    """
    if isinstance(value, (DocumentField, LineItemField)):
        return value

    if isinstance(value, dict):
        name = to_snake_case(str(value.get("field", "")))
        if value.get("kind") == "line_item":
            return LineItemField(index=int(value.get("index", -1)), name=name)
        return DocumentField(name=name)

    match = _LINE_ITEM_TARGET.match(value.strip())
    if match:
        return LineItemField(index=int(match.group(1)), name=to_snake_case(match.group(2)))
    return DocumentField(name=to_snake_case(value.strip()))


@dataclass(slots=True)
class FieldCorrection:
    """A single human field correction."""

    target: CorrectionTarget
    from_value: Any
    to_value: Any
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "field": self.target.key,
            "from": self.from_value,
            "to": self.to_value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldCorrection:
        """Create from dictionary using the ``field``/``from``/``to`` wire keys."""
        return cls(
            target=parse_target(data.get("field") or data.get("target", "")),
            from_value=data.get("from"),
            to_value=data.get("to"),
            reason=data.get("reason") or "",
        )


@dataclass(slots=True)
class HumanCorrection:
    """
    A finalized human decision on a correction batch.

    Only the batch carries an approval status; individual field corrections
    share it.
    """

    invoice_id: str
    vendor: str
    corrections: list[FieldCorrection]
    final_decision: Resolution

    @property
    def is_approved(self) -> bool:
        return self.final_decision == Resolution.APPROVED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "invoice_id": self.invoice_id,
            "vendor": self.vendor,
            "corrections": [c.to_dict() for c in self.corrections],
            "final_decision": self.final_decision.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HumanCorrection:
        """Create from dictionary."""
        return cls(
            invoice_id=_pick(data, "invoice_id") or data.get("documentId", ""),
            vendor=data.get("vendor", ""),
            corrections=[FieldCorrection.from_dict(c) for c in data.get("corrections", [])],
            final_decision=Resolution(_pick(data, "final_decision", "approved")),
        )
