"""
APPLY stage: normalize an invoice and propose memory-based corrections.

Correction sources run independently, in a fixed order:

1. Field-mapping extraction from raw text (learned labels).
2. VAT-inclusive gross/tax recalculation.
3. Currency recovery (vendor default, then raw text).
4. SKU mapping from line item descriptions.
5. Payment terms (vendor memory, then raw-text discount terms).
6. Purchase order matching by SKU overlap.

A correction is auto-applied, i.e. written into the normalized invoice, iff
its confidence reaches the auto-apply threshold and its source permits it.
At most one proposal per field survives: highest confidence wins and ties
keep the earlier source.
"""

from __future__ import annotations

from dataclasses import dataclass

from invoice_memory.config import get_logger, get_settings
from invoice_memory.config.settings import Settings
from invoice_memory.extraction.extractors import RawTextExtractor, RegexExtractor
from invoice_memory.memory.models import RecalledMemories, VendorMemory
from invoice_memory.schemas.invoice import (
    DOCUMENT_FIELDS,
    CorrectionTarget,
    DocumentField,
    Invoice,
    LineItem,
    LineItemField,
    PurchaseOrder,
)
from invoice_memory.schemas.output import (
    AuditEntry,
    AuditStep,
    NormalizedInvoice,
    NormalizedLineItem,
    ProposedCorrection,
)
from invoice_memory.storage.audit_trail import create_audit_entry
from invoice_memory.utils.string_utils import contains_either_way


logger = get_logger(__name__)

PO_BASE_CONFIDENCE = 0.5
PO_OVERLAP_WEIGHT = 0.3
PO_UNIQUENESS_BONUS = 0.2
PO_MAX_CONFIDENCE = 0.95


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


@dataclass(slots=True)
class POMatch:
    """Best purchase order candidate for an invoice."""

    po_number: str
    confidence: float
    reasoning: str


class _ApplyContext:
    """Working state of one APPLY run."""

    def __init__(self, normalized: NormalizedInvoice, threshold: float) -> None:
        self.normalized = normalized
        self.threshold = threshold
        self.proposals: list[tuple[CorrectionTarget, ProposedCorrection]] = []
        self.applied_fields: set[str] = set()
        self.details: list[str] = []

    def propose(
        self,
        target: CorrectionTarget,
        original_value: object,
        proposed_value: object,
        confidence: float,
        reasoning: str,
        allow_auto_apply: bool = True,
    ) -> ProposedCorrection:
        correction = ProposedCorrection(
            field=target.key,
            original_value=original_value,
            proposed_value=proposed_value,
            confidence=confidence,
            reasoning=reasoning,
            auto_applied=allow_auto_apply and confidence >= self.threshold,
        )
        self.proposals.append((target, correction))

        if correction.auto_applied:
            self.write(target, proposed_value)
            self.details.append(f'Auto-applied: {target.key} = "{proposed_value}"')
        else:
            self.details.append(f'Proposed: {target.key} = "{proposed_value}" (needs review)')
        return correction

    def write(self, target: CorrectionTarget, value: object) -> None:
        if isinstance(target, LineItemField):
            setattr(self.normalized.line_items[target.index], target.name, value)
        else:
            setattr(self.normalized, target.name, value)
        self.applied_fields.add(target.key)

    def is_resolved(self, field_name: str) -> bool:
        """A document field already has a value or an applied correction."""
        return field_name in self.applied_fields or bool(self.normalized.get_field(field_name))

    def surviving_corrections(self) -> list[ProposedCorrection]:
        """One proposal per field: highest confidence, earliest on ties."""
        best: dict[str, ProposedCorrection] = {}
        for _, correction in self.proposals:
            current = best.get(correction.field)
            if current is None or correction.confidence > current.confidence:
                best[correction.field] = correction

        survivors: list[ProposedCorrection] = []
        for _, correction in self.proposals:
            if best[correction.field] is correction:
                survivors.append(correction)
            else:
                self.details.append(
                    f"Superseded: {correction.field} = \"{correction.proposed_value}\" "
                    f"({_pct(correction.confidence)}) in favor of a higher-confidence proposal"
                )
        return survivors


class MemoryApply:
    """
    Apply recalled memories to an invoice.

    Example:
        apply = MemoryApply()
        normalized, corrections, audit = apply.apply(invoice, memories, purchase_orders)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        extractor: RawTextExtractor | None = None,
    ) -> None:
        self._settings = (settings or get_settings()).apply
        self._extractor = extractor or RegexExtractor()
        self._logger = logger

    def normalize(self, invoice: Invoice) -> NormalizedInvoice:
        """
        Normalized copy of an invoice.

        The currency falls back to the configured default and line items get
        the sentinel SKU when they carry none.
        """
        fields = invoice.fields
        return NormalizedInvoice(
            invoice_id=invoice.invoice_id,
            vendor=invoice.vendor,
            invoice_number=fields.invoice_number,
            invoice_date=fields.invoice_date,
            currency=fields.currency or self._settings.default_currency,
            net_total=fields.net_total,
            tax_rate=fields.tax_rate,
            tax_total=fields.tax_total,
            gross_total=fields.gross_total,
            line_items=[self._normalize_line_item(item) for item in fields.line_items],
            service_date=fields.service_date or None,
            po_number=fields.po_number or None,
            discount_terms=fields.discount_terms or None,
        )

    def _normalize_line_item(self, item: LineItem) -> NormalizedLineItem:
        qty = item.qty or 0
        unit_price = item.unit_price or 0.0
        return NormalizedLineItem(
            sku=item.sku or self._settings.unknown_sku,
            description=item.description or "",
            qty=qty,
            unit_price=unit_price,
            amount=qty * unit_price,
        )

    def apply(
        self,
        invoice: Invoice,
        memories: RecalledMemories,
        purchase_orders: list[PurchaseOrder] | None = None,
    ) -> tuple[NormalizedInvoice, list[ProposedCorrection], AuditEntry]:
        """
        Normalize an invoice and propose corrections from memory.

        Args:
            invoice: Incoming invoice.
            memories: Snapshot produced by RECALL.
            purchase_orders: Candidate purchase orders for PO matching.

        Returns:
            Tuple of (normalized invoice, proposed corrections, audit entry).
        """
        ctx = _ApplyContext(self.normalize(invoice), self._settings.auto_apply_threshold)
        vendor_memory = memories.vendor_memory
        memory_ids: list[str] = []

        if vendor_memory is not None:
            memory_ids.append(vendor_memory.id)
            self._apply_field_mappings(ctx, invoice, vendor_memory)
            self._apply_tax_behavior(ctx, invoice, vendor_memory)

        self._apply_currency(ctx, invoice, vendor_memory)

        if vendor_memory is not None:
            self._apply_sku_mappings(ctx, invoice, vendor_memory)

        self._apply_payment_terms(ctx, invoice, vendor_memory)

        if purchase_orders:
            self._apply_po_match(ctx, invoice, purchase_orders)

        corrections = ctx.surviving_corrections()

        self._logger.info(
            "memories_applied",
            invoice_id=invoice.invoice_id,
            vendor=invoice.vendor,
            proposed=len(corrections),
            auto_applied=sum(1 for c in corrections if c.auto_applied),
        )

        audit = create_audit_entry(
            AuditStep.APPLY,
            ctx.details or ["No corrections applied"],
            memory_ids,
        )
        return ctx.normalized, corrections, audit

    # ------------------------------------------------------------------
    # Correction sources
    # ------------------------------------------------------------------

    def _apply_field_mappings(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        vendor_memory: VendorMemory,
    ) -> None:
        for mapping in vendor_memory.field_mappings:
            if mapping.target_field not in DOCUMENT_FIELDS or ctx.is_resolved(mapping.target_field):
                continue

            value = self._extractor.extract_labeled(invoice.raw_text, mapping.source_label)
            if value is None:
                continue

            ctx.propose(
                DocumentField(mapping.target_field),
                original_value=None,
                proposed_value=value,
                confidence=mapping.confidence,
                reasoning=(
                    f'Extracted from raw text using learned pattern "{mapping.source_label}" '
                    f"-> {mapping.target_field} (confidence: {_pct(mapping.confidence)})"
                ),
            )

    def _apply_tax_behavior(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        vendor_memory: VendorMemory,
    ) -> None:
        behavior = vendor_memory.tax_behavior
        if behavior is None or not behavior.is_inclusive:
            return
        if not self._extractor.has_inclusive_tax_indicator(invoice.raw_text):
            return

        normalized = ctx.normalized
        gross = self._extractor.extract_gross_total(invoice.raw_text, normalized.gross_total)
        if gross is None or gross == normalized.gross_total:
            return

        tax = round(gross - normalized.net_total, 2)
        original_gross = normalized.gross_total
        original_tax = normalized.tax_total

        ctx.propose(
            DocumentField("gross_total"),
            original_value=original_gross,
            proposed_value=gross,
            confidence=behavior.confidence,
            reasoning=(
                "VAT inclusive pricing detected. Recalculated from raw text "
                f"(confidence: {_pct(behavior.confidence)})"
            ),
        )
        ctx.propose(
            DocumentField("tax_total"),
            original_value=original_tax,
            proposed_value=tax,
            confidence=behavior.confidence,
            reasoning="Tax recalculated from the VAT inclusive gross total",
        )

    def _apply_currency(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        vendor_memory: VendorMemory | None,
    ) -> None:
        if invoice.fields.currency or "currency" in ctx.applied_fields:
            return

        if vendor_memory is not None and vendor_memory.default_currency:
            ctx.propose(
                DocumentField("currency"),
                original_value=None,
                proposed_value=vendor_memory.default_currency,
                confidence=self._settings.vendor_currency_confidence,
                reasoning="Currency recovered from vendor memory (default currency)",
                allow_auto_apply=False,
            )
            return

        currency = self._extractor.extract_currency(invoice.raw_text)
        if currency:
            ctx.propose(
                DocumentField("currency"),
                original_value=None,
                proposed_value=currency,
                confidence=self._settings.rawtext_currency_confidence,
                reasoning="Currency recovered from raw text",
                allow_auto_apply=False,
            )

    def _apply_sku_mappings(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        vendor_memory: VendorMemory,
    ) -> None:
        if not vendor_memory.sku_mappings:
            return

        unknown = self._settings.unknown_sku
        for index, item in enumerate(ctx.normalized.line_items):
            if item.sku and item.sku != unknown:
                continue

            mapping = next(
                (
                    m for m in vendor_memory.sku_mappings
                    if contains_either_way(item.description, m.description)
                ),
                None,
            )
            if mapping is None:
                continue

            ctx.propose(
                LineItemField(index, "sku"),
                original_value=invoice.fields.line_items[index].sku,
                proposed_value=mapping.sku,
                confidence=mapping.confidence,
                reasoning=(
                    f'SKU mapped from description "{item.description}" -> "{mapping.sku}" '
                    f"(confidence: {_pct(mapping.confidence)})"
                ),
            )

    def _apply_payment_terms(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        vendor_memory: VendorMemory | None,
    ) -> None:
        if ctx.is_resolved("discount_terms"):
            return

        if vendor_memory is not None and vendor_memory.payment_terms:
            ctx.normalized.discount_terms = vendor_memory.payment_terms
            ctx.details.append(f'Applied known payment terms: "{vendor_memory.payment_terms}"')
            return

        terms = self._extractor.extract_payment_terms(invoice.raw_text)
        if terms:
            ctx.propose(
                DocumentField("discount_terms"),
                original_value=None,
                proposed_value=terms,
                confidence=self._settings.payment_terms_confidence,
                reasoning="Payment/discount terms extracted from raw text",
                allow_auto_apply=False,
            )

    def _apply_po_match(
        self,
        ctx: _ApplyContext,
        invoice: Invoice,
        purchase_orders: list[PurchaseOrder],
    ) -> None:
        if ctx.is_resolved("po_number"):
            return

        match = self.match_purchase_order(ctx.normalized, purchase_orders)
        if match is None:
            return

        ctx.propose(
            DocumentField("po_number"),
            original_value=None,
            proposed_value=match.po_number,
            confidence=match.confidence,
            reasoning=match.reasoning,
        )

    def match_purchase_order(
        self,
        normalized: NormalizedInvoice,
        purchase_orders: list[PurchaseOrder],
    ) -> POMatch | None:
        """
        Best purchase order for an invoice by SKU overlap.

        Overlap ratio is ``matching / max(len(invoice SKUs), len(PO SKUs))``.
        When no PO overlaps but the vendor has exactly one PO, that PO is
        proposed at the configured single-PO confidence.
        """
        vendor_pos = [po for po in purchase_orders if po.vendor == normalized.vendor]
        if not vendor_pos:
            return None

        unknown = self._settings.unknown_sku
        invoice_skus = [item.sku for item in normalized.line_items if item.sku and item.sku != unknown]
        uniqueness_bonus = PO_UNIQUENESS_BONUS if len(vendor_pos) == 1 else 0.0

        best: POMatch | None = None
        for po in vendor_pos:
            po_skus = [item.sku for item in po.line_items if item.sku]
            matching = [sku for sku in invoice_skus if sku in po_skus]
            if not matching:
                continue

            ratio = len(matching) / max(len(invoice_skus), len(po_skus))
            confidence = min(
                PO_MAX_CONFIDENCE,
                PO_BASE_CONFIDENCE + ratio * PO_OVERLAP_WEIGHT + uniqueness_bonus,
            )
            if best is None or confidence > best.confidence:
                suffix = " - only PO for vendor" if len(vendor_pos) == 1 else ""
                best = POMatch(
                    po_number=po.po_number,
                    confidence=confidence,
                    reasoning=(
                        f"Matched PO {po.po_number} based on SKU overlap "
                        f"({', '.join(matching)}){suffix}"
                    ),
                )

        if best is None and len(vendor_pos) == 1:
            po = vendor_pos[0]
            best = POMatch(
                po_number=po.po_number,
                confidence=self._settings.single_po_confidence,
                reasoning=f'Only one PO ({po.po_number}) exists for vendor "{normalized.vendor}"',
            )

        return best
