"""
LEARN stage: update the knowledge store from finalized human corrections.

The only stage that mutates memory. Each field correction is matched
against an ordered table of learning rules (field predicate, rationale
predicate, update strategy); several rules may fire for one correction.
Afterwards the correction memory for the (vendor, field) pair is
reinforced or weakened, one resolution memory is appended and, once the
batch is done, the invoice is recorded in the processed ledger.

Learning is serialized per vendor. It is not idempotent: learning the same
correction twice counts it twice.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from invoice_memory.config import get_logger
from invoice_memory.exceptions import InvalidCorrectionError
from invoice_memory.memory.correction_memory import CorrectionMemoryRepository
from invoice_memory.memory.models import (
    CorrectionMemory,
    CorrectionType,
    MemoryKind,
    MemoryUpdate,
    UpdateAction,
)
from invoice_memory.memory.resolution_memory import ResolutionMemoryRepository
from invoice_memory.memory.vendor_memory import VendorMemoryRepository
from invoice_memory.schemas.invoice import (
    CorrectionTarget,
    DocumentField,
    FieldCorrection,
    HumanCorrection,
    Invoice,
    LineItemField,
)
from invoice_memory.schemas.output import AuditEntry, AuditStep
from invoice_memory.storage.audit_trail import create_audit_entry
from invoice_memory.storage.knowledge_store import KnowledgeStore
from invoice_memory.validation.duplicates import DuplicateGuard


logger = get_logger(__name__)

SERVICE_DATE_LABEL = "Leistungsdatum"
TAX_KEYWORDS = ("vat", "mwst", "recalculat")


@dataclass(slots=True)
class RuleOutcome:
    """What one learning rule changed."""

    updates: list[MemoryUpdate] = field(default_factory=list)
    details: list[str] = field(default_factory=list)
    correction_memory: CorrectionMemory | None = None
    created: bool = False


Strategy = Callable[["MemoryLearner", Invoice, FieldCorrection, bool], RuleOutcome]


@dataclass(frozen=True, slots=True)
class LearningRule:
    """
    One entry of the learning rule table.

    Attributes:
        name: Rule name used in logs.
        matches_field: Predicate on the correction target.
        matches_rationale: Predicate on the lowercased human rationale.
        strategy: Update applied when both predicates hold.
        always_reinforce: Reinforce the correction memory even on rejection.
    """

    name: str
    matches_field: Callable[[CorrectionTarget], bool]
    matches_rationale: Callable[[str], bool]
    strategy: Strategy
    always_reinforce: bool = False

    def matches(self, correction: FieldCorrection) -> bool:
        return self.matches_field(correction.target) and self.matches_rationale(
            correction.reason.lower()
        )


def _document_field(*names: str) -> Callable[[CorrectionTarget], bool]:
    return lambda target: isinstance(target, DocumentField) and target.name in names


def _line_item_field(name: str) -> Callable[[CorrectionTarget], bool]:
    return lambda target: isinstance(target, LineItemField) and target.name == name


def _mentions(*keywords: str) -> Callable[[str], bool]:
    return lambda rationale: any(keyword in rationale for keyword in keywords)


def _any_rationale(rationale: str) -> bool:
    return True


def _vendor_update(success: bool, details: str) -> MemoryUpdate:
    return MemoryUpdate(
        kind=MemoryKind.VENDOR,
        action=UpdateAction.REINFORCE if success else UpdateAction.WEAKEN,
        details=details,
    )


def _correction_created(memory: CorrectionMemory, details: str) -> MemoryUpdate:
    return MemoryUpdate(
        kind=MemoryKind.CORRECTION,
        action=UpdateAction.CREATE,
        details=details,
        memory_id=memory.id,
    )


class MemoryLearner:
    """
    Learn from human corrections.

    Example:
        learner = MemoryLearner(store)
        updates, audit = learner.learn(invoice, human_correction)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        duplicate_guard: DuplicateGuard | None = None,
    ) -> None:
        self.vendors = VendorMemoryRepository(store)
        self.corrections = CorrectionMemoryRepository(store)
        self.resolutions = ResolutionMemoryRepository(store)
        self._store = store
        self._duplicates = duplicate_guard or DuplicateGuard(store)
        self._logger = logger

    def vendor_lock(self, vendor_name: str) -> threading.RLock:
        """Re-entrant lock serializing learning for one vendor across the store."""
        return self._store.vendor_lock(vendor_name)

    def learn(
        self,
        invoice: Invoice,
        human_correction: HumanCorrection,
    ) -> tuple[list[MemoryUpdate], AuditEntry]:
        """
        Learn from one finalized correction batch.

        Malformed corrections are skipped and reported in the audit entry;
        the rest of the batch is still learned. Storage errors propagate.

        Args:
            invoice: The invoice the corrections refer to.
            human_correction: Finalized human decision.

        Returns:
            Tuple of (memory updates, audit entry).
        """
        with self.vendor_lock(invoice.vendor):
            return self._learn(invoice, human_correction)

    def _learn(
        self,
        invoice: Invoice,
        human_correction: HumanCorrection,
    ) -> tuple[list[MemoryUpdate], AuditEntry]:
        vendor_name = invoice.vendor
        approved = human_correction.is_approved
        updates: list[MemoryUpdate] = []
        details: list[str] = []
        memory_ids: list[str] = []

        vendor_memory, created = self.vendors.get_or_create(vendor_name)
        memory_ids.append(vendor_memory.id)
        if created:
            updates.append(
                MemoryUpdate(
                    kind=MemoryKind.VENDOR,
                    action=UpdateAction.CREATE,
                    details=f'Created new vendor memory for "{vendor_name}"',
                    memory_id=vendor_memory.id,
                )
            )
            details.append(f'Created vendor memory for "{vendor_name}"')

        skipped = 0
        for correction in human_correction.corrections:
            try:
                correction.target.validate(invoice)
            except InvalidCorrectionError as e:
                skipped += 1
                self._logger.warning(
                    "learn_correction_skipped",
                    invoice_id=invoice.invoice_id,
                    vendor=vendor_name,
                    field=correction.target.key,
                    error=str(e),
                )
                details.append(f"Skipped correction for {correction.target.key}: {e}")
                continue

            correction_updates, correction_details, touched = self._learn_correction(
                invoice, correction, approved
            )
            updates.extend(correction_updates)
            details.extend(correction_details)
            memory_ids.extend(touched)

            resolution = self.resolutions.record(
                invoice_id=invoice.invoice_id,
                vendor_name=vendor_name,
                discrepancy_type=correction.target.key,
                original_value=correction.from_value,
                corrected_value=correction.to_value,
                resolution=human_correction.final_decision.value,
                human_feedback=correction.reason,
            )
            updates.append(
                MemoryUpdate(
                    kind=MemoryKind.RESOLUTION,
                    action=UpdateAction.CREATE,
                    details=(
                        f"Recorded {human_correction.final_decision.value} resolution "
                        f"for {correction.target.key}"
                    ),
                    memory_id=resolution.id,
                )
            )
            memory_ids.append(resolution.id)

        self._duplicates.record(invoice)
        details.append(f"Recorded invoice {invoice.invoice_id} as processed")

        self._logger.info(
            "corrections_learned",
            invoice_id=invoice.invoice_id,
            vendor=vendor_name,
            decision=human_correction.final_decision.value,
            corrections=len(human_correction.corrections),
            skipped=skipped,
            updates=len(updates),
        )

        audit = create_audit_entry(AuditStep.LEARN, details, list(dict.fromkeys(memory_ids)))
        return updates, audit

    def _learn_correction(
        self,
        invoice: Invoice,
        correction: FieldCorrection,
        approved: bool,
    ) -> tuple[list[MemoryUpdate], list[str], list[str]]:
        updates: list[MemoryUpdate] = []
        details: list[str] = []
        touched: list[str] = []
        memory_field = correction.target.memory_field

        target_memory: CorrectionMemory | None = None
        created_now: set[str] = set()
        always_reinforce = False

        for rule in LEARNING_RULES:
            if not rule.matches(correction):
                continue

            outcome = rule.strategy(self, invoice, correction, approved)
            updates.extend(outcome.updates)
            details.extend(outcome.details)
            always_reinforce = always_reinforce or rule.always_reinforce

            memory = outcome.correction_memory
            if memory is not None:
                touched.append(memory.id)
                if outcome.created:
                    created_now.add(memory.id)
                if memory.field_name == memory_field:
                    target_memory = memory

            self._logger.debug(
                "learning_rule_applied",
                rule=rule.name,
                vendor=invoice.vendor,
                field=correction.target.key,
            )

        if target_memory is None:
            target_memory = self.corrections.find_matching(invoice.vendor, memory_field)

        # A memory created by this correction already counts it.
        if target_memory is not None and target_memory.id not in created_now:
            if approved or always_reinforce:
                self.corrections.reinforce(target_memory)
                action = UpdateAction.REINFORCE
                verb = "Reinforced"
            else:
                self.corrections.weaken(target_memory)
                action = UpdateAction.WEAKEN
                verb = "Weakened"
            updates.append(
                MemoryUpdate(
                    kind=MemoryKind.CORRECTION,
                    action=action,
                    details=f"{verb} correction pattern for {memory_field}",
                    memory_id=target_memory.id,
                )
            )
            touched.append(target_memory.id)

        return updates, details, touched

    # ------------------------------------------------------------------
    # Rule strategies
    # ------------------------------------------------------------------

    def learn_service_date_label(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        vendor_name = invoice.vendor
        self.vendors.update_field_mapping(vendor_name, SERVICE_DATE_LABEL, "service_date", approved)
        memory, created = self.corrections.record(
            vendor_name,
            "service_date",
            SERVICE_DATE_LABEL,
            CorrectionType.EXTRACT_FROM_RAWTEXT,
            correction.to_value,
            success=approved,
        )

        outcome = RuleOutcome(correction_memory=memory, created=created)
        verb = "Learned" if approved else "Weakened"
        outcome.updates.append(
            _vendor_update(approved, f'{verb} field mapping: "{SERVICE_DATE_LABEL}" -> service_date')
        )
        if created:
            outcome.updates.append(
                _correction_created(memory, "Recorded correction pattern: extract service_date from raw text")
            )
        outcome.details.append(f'{verb}: "{SERVICE_DATE_LABEL}" = service_date for {vendor_name}')
        return outcome

    def learn_tax_behavior(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        vendor_name = invoice.vendor
        field_name = correction.target.memory_field
        self.vendors.update_tax_behavior(vendor_name, True, invoice.fields.tax_rate, approved)
        memory, created = self.corrections.record(
            vendor_name,
            field_name,
            "vat_inclusive",
            CorrectionType.RECALCULATE_TAX,
            {"from": correction.from_value, "to": correction.to_value},
            success=approved,
        )

        outcome = RuleOutcome(correction_memory=memory, created=created)
        verb = "Learned" if approved else "Weakened"
        outcome.updates.append(_vendor_update(approved, f"{verb} VAT behavior: prices include VAT"))
        if created:
            outcome.updates.append(
                _correction_created(memory, f"Recorded tax recalculation pattern for {field_name}")
            )
        outcome.details.append(f"{verb}: {vendor_name} uses VAT-inclusive pricing")
        return outcome

    def learn_currency(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        vendor_name = invoice.vendor
        currency = str(correction.to_value)
        self.vendors.set_default_currency(vendor_name, currency)
        memory, created = self.corrections.record(
            vendor_name,
            "currency",
            "missing_currency",
            CorrectionType.SET_CURRENCY,
            correction.to_value,
            success=True,
        )

        outcome = RuleOutcome(correction_memory=memory, created=created)
        outcome.updates.append(_vendor_update(True, f"Learned default currency: {currency}"))
        if created:
            outcome.updates.append(_correction_created(memory, "Recorded currency recovery pattern"))
        outcome.details.append(f"Learned: {vendor_name} default currency = {currency}")
        return outcome

    def learn_po_match(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        pattern = correction.reason.strip() or "po_number"
        memory, created = self.corrections.record(
            invoice.vendor,
            "po_number",
            pattern,
            CorrectionType.MATCH_PO,
            correction.to_value,
            success=approved,
        )

        outcome = RuleOutcome(correction_memory=memory, created=created)
        if created:
            outcome.updates.append(_correction_created(memory, f"Recorded PO matching pattern: {pattern}"))
        outcome.details.append(f"Learned: PO matching strategy for {invoice.vendor}")
        return outcome

    def learn_sku_mapping(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        target = correction.target
        if not isinstance(target, LineItemField):
            raise InvalidCorrectionError(
                f"SKU mappings need a line item target, got {target.key}",
                details={"field": target.key},
            )
        description = invoice.fields.line_items[target.index].description
        outcome = RuleOutcome()
        if not description:
            outcome.details.append(f"No description on {target.key}; SKU mapping not learned")
            return outcome

        sku = str(correction.to_value)
        self.vendors.update_sku_mapping(invoice.vendor, description, sku, approved)
        memory, created = self.corrections.record(
            invoice.vendor,
            target.memory_field,
            description.lower(),
            CorrectionType.MAP_SKU,
            correction.to_value,
            success=approved,
        )
        outcome.correction_memory = memory
        outcome.created = created

        verb = "Learned" if approved else "Weakened"
        outcome.updates.append(_vendor_update(approved, f'{verb} SKU mapping: "{description}" -> {sku}'))
        if created:
            outcome.updates.append(_correction_created(memory, f'Recorded SKU mapping pattern for "{description}"'))
        outcome.details.append(f'{verb}: "{description}" = SKU {sku} for {invoice.vendor}')
        return outcome

    def learn_payment_terms(
        self, invoice: Invoice, correction: FieldCorrection, approved: bool
    ) -> RuleOutcome:
        vendor_name = invoice.vendor
        terms = str(correction.to_value)
        outcome = RuleOutcome()
        if approved:
            self.vendors.set_payment_terms(vendor_name, terms)
            outcome.updates.append(_vendor_update(True, f"Learned payment terms: {terms}"))
            outcome.details.append(f"Learned: {vendor_name} offers {terms}")
        else:
            outcome.details.append(f"Rejected payment terms not stored: {terms}")

        memory, created = self.corrections.record(
            vendor_name,
            "discount_terms",
            "skonto",
            CorrectionType.SET_PAYMENT_TERMS,
            correction.to_value,
            success=approved,
        )
        outcome.correction_memory = memory
        outcome.created = created
        if created:
            outcome.updates.append(_correction_created(memory, "Recorded payment terms pattern"))
        return outcome


LEARNING_RULES: tuple[LearningRule, ...] = (
    LearningRule(
        name="service_date_label",
        matches_field=_document_field("service_date"),
        matches_rationale=_mentions(SERVICE_DATE_LABEL.lower()),
        strategy=MemoryLearner.learn_service_date_label,
    ),
    LearningRule(
        name="vat_inclusive",
        matches_field=_document_field("tax_total", "gross_total"),
        matches_rationale=_mentions(*TAX_KEYWORDS),
        strategy=MemoryLearner.learn_tax_behavior,
    ),
    LearningRule(
        name="currency",
        matches_field=_document_field("currency"),
        matches_rationale=_any_rationale,
        strategy=MemoryLearner.learn_currency,
        always_reinforce=True,
    ),
    LearningRule(
        name="po_match",
        matches_field=_document_field("po_number"),
        matches_rationale=_any_rationale,
        strategy=MemoryLearner.learn_po_match,
    ),
    LearningRule(
        name="sku_mapping",
        matches_field=_line_item_field("sku"),
        matches_rationale=_any_rationale,
        strategy=MemoryLearner.learn_sku_mapping,
    ),
    LearningRule(
        name="payment_terms",
        matches_field=_document_field("discount_terms"),
        matches_rationale=_any_rationale,
        strategy=MemoryLearner.learn_payment_terms,
    ),
)
