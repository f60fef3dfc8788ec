"""
DECIDE stage: auto-accept, auto-correct or escalate to human review.

Escalation rules are independent; any one of them forces review regardless
of the overall confidence score. Without escalation, the score decides:
below the auto-correct threshold the invoice goes to review, otherwise it
is processed automatically ("AUTO-ACCEPT" at or above the auto-accept
threshold, "AUTO-CORRECT" below it).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from invoice_memory.config import get_logger, get_settings
from invoice_memory.config.settings import Settings
from invoice_memory.memory.confidence import clamp, decayed_since
from invoice_memory.memory.models import RecalledMemories
from invoice_memory.memory.resolution_memory import count_resolutions
from invoice_memory.schemas.output import (
    AuditEntry,
    AuditStep,
    NormalizedInvoice,
    ProposedCorrection,
)
from invoice_memory.storage.audit_trail import create_audit_entry
from invoice_memory.utils.date_utils import utc_now


logger = get_logger(__name__)

MIN_SCORE = 0.1
MAX_SCORE = 1.0
VENDOR_BOOST_WEIGHT = 0.1
PENDING_PENALTY = 0.9
DUPLICATE_PENALTY = 0.5
LOW_HISTORY_PENALTY = 0.8


class Outcome(str, Enum):
    """Decision outcome."""

    ESCALATE = "ESCALATE"
    AUTO_ACCEPT = "AUTO-ACCEPT"
    AUTO_CORRECT = "AUTO-CORRECT"


@dataclass(slots=True)
class Decision:
    """
    Result of the DECIDE stage.

    Attributes:
        requires_review: Whether a human must review the invoice.
        reasoning: Human-readable explanation.
        confidence_score: Overall confidence in [0.1, 1.0].
        escalation_reasons: Reasons that forced review, in rule order.
        outcome: Escalate, auto-accept or auto-correct.
    """

    requires_review: bool
    reasoning: str
    confidence_score: float
    escalation_reasons: list[str] = field(default_factory=list)
    outcome: Outcome = Outcome.ESCALATE

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_review": self.requires_review,
            "reasoning": self.reasoning,
            "confidence_score": self.confidence_score,
            "escalation_reasons": list(self.escalation_reasons),
            "outcome": self.outcome.value,
        }


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _render(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class DecisionEngine:
    """
    Threshold and escalation policy for processed invoices.

    Example:
        engine = DecisionEngine()
        decision, audit = engine.decide(normalized, corrections, memories, invoice.confidence)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._policy = settings.decision
        self._decay = settings.decay
        self._logger = logger

    def is_low_history(self, memories: RecalledMemories) -> bool:
        """Vendor is new or has fewer uses than the configured minimum."""
        vendor = memories.vendor_memory
        return vendor is None or vendor.usage_count < self._policy.min_vendor_usage

    def vendor_confidence(self, memories: RecalledMemories) -> float | None:
        """Decayed vendor aggregate confidence, or None without vendor memory."""
        vendor = memories.vendor_memory
        if vendor is None:
            return None
        now: datetime = memories.recalled_at or utc_now()
        return decayed_since(
            vendor.confidence,
            vendor.last_used,
            now,
            self._decay.daily_factor,
            self._decay.floor,
        )

    def has_conflicting_memories(self, memories: RecalledMemories) -> bool:
        """
        Whether recalled memories disagree with each other.

        True when the vendor's rejection rate reaches the conflict rate over
        enough resolutions, or a correction memory failed more than it succeeded.
        """
        resolutions = memories.resolution_memories
        if len(resolutions) >= self._policy.conflict_min_resolutions:
            stats = count_resolutions(resolutions)
            if stats.rejected_count / stats.total >= self._policy.conflict_rejection_rate:
                return True

        return any(c.failure_count > c.success_count for c in memories.correction_memories)

    def missing_required_fields(
        self,
        normalized: NormalizedInvoice,
        corrections: list[ProposedCorrection],
    ) -> list[str]:
        """Required fields with neither a value nor a proposed correction."""
        proposed = {c.field for c in corrections}
        return [
            name
            for name in self._policy.required_fields
            if not normalized.get_field(name) and name not in proposed
        ]

    def compute_confidence_score(
        self,
        base_confidence: float,
        memories: RecalledMemories,
        corrections: list[ProposedCorrection],
    ) -> float:
        """
        Overall confidence score.

        Applied in order: vendor boost, averaging with auto-applied
        corrections, pending penalty, duplicate penalty, low-history
        penalty, clamp to [0.1, 1.0].
        """
        score = base_confidence

        vendor_confidence = self.vendor_confidence(memories)
        if vendor_confidence is not None:
            score = min(MAX_SCORE, score + vendor_confidence * VENDOR_BOOST_WEIGHT)

        auto_applied = [c.confidence for c in corrections if c.auto_applied]
        if auto_applied:
            score = (score + sum(auto_applied) / len(auto_applied)) / 2

        if any(not c.auto_applied for c in corrections):
            score *= PENDING_PENALTY

        if memories.potential_duplicate is not None:
            score *= DUPLICATE_PENALTY

        if self.is_low_history(memories):
            score *= LOW_HISTORY_PENALTY

        return clamp(score, MIN_SCORE, MAX_SCORE)

    def decide(
        self,
        normalized: NormalizedInvoice,
        corrections: list[ProposedCorrection],
        memories: RecalledMemories,
        base_confidence: float,
    ) -> tuple[Decision, AuditEntry]:
        """
        Decide whether the invoice needs human review.

        Never raises: an unexpected failure escalates the invoice.

        Args:
            normalized: Invoice produced by APPLY.
            corrections: Corrections proposed by APPLY.
            memories: Snapshot produced by RECALL.
            base_confidence: Extraction confidence of the invoice.

        Returns:
            Tuple of (decision, audit entry).
        """
        try:
            return self._decide(normalized, corrections, memories, base_confidence)
        except Exception as e:
            self._logger.error(
                "decision_failed",
                invoice_id=normalized.invoice_id,
                error=str(e),
                exc_info=True,
            )
            reason = f"Decision could not be computed: {e}"
            decision = Decision(
                requires_review=True,
                reasoning=f"REQUIRES HUMAN REVIEW\nEscalation reasons:\n   - {reason}",
                confidence_score=MIN_SCORE,
                escalation_reasons=[reason],
            )
            return decision, create_audit_entry(AuditStep.DECIDE, f"ESCALATE: {reason}")

    def _decide(
        self,
        normalized: NormalizedInvoice,
        corrections: list[ProposedCorrection],
        memories: RecalledMemories,
        base_confidence: float,
    ) -> tuple[Decision, AuditEntry]:
        reasons: list[str] = []
        details: list[str] = []
        requires_review = False
        policy = self._policy

        duplicate = memories.potential_duplicate
        if duplicate is not None:
            requires_review = True
            reasons.append(
                f"Potential duplicate detected: Invoice {duplicate.invoice_number} "
                f"was already processed on {duplicate.processed_at}"
            )
            details.append("ESCALATE: Duplicate invoice detected")

        if self.is_low_history(memories):
            requires_review = True
            reasons.append(
                "New or low-history vendor - insufficient learning data for auto-decisions"
            )
            details.append("ESCALATE: New vendor with limited history")

        low_confidence = [c for c in corrections if c.confidence < policy.escalate_threshold]
        if low_confidence:
            requires_review = True
            reasons.extend(
                f"Low confidence correction for {c.field}: {_pct(c.confidence)}"
                for c in low_confidence
            )
            details.append(f"ESCALATE: {len(low_confidence)} low-confidence correction(s)")

        pending = [
            c for c in corrections
            if not c.auto_applied and c.confidence >= policy.escalate_threshold
        ]
        if pending:
            requires_review = True
            reasons.extend(
                f"Pending correction for {c.field} needs review (confidence: {_pct(c.confidence)})"
                for c in pending
            )
            details.append(f"REVIEW: {len(pending)} correction(s) pending approval")

        if self.has_conflicting_memories(memories):
            requires_review = True
            reasons.append("Conflicting patterns detected in memory - human judgment required")
            details.append("ESCALATE: Conflicting memory patterns")

        missing = self.missing_required_fields(normalized, corrections)
        if missing:
            requires_review = True
            reasons.extend(f"Missing critical field: {name}" for name in missing)
            details.append(f"ESCALATE: Missing fields - {', '.join(missing)}")

        score = self.compute_confidence_score(base_confidence, memories, corrections)

        outcome = Outcome.ESCALATE
        if not requires_review:
            if score >= policy.auto_accept_threshold:
                outcome = Outcome.AUTO_ACCEPT
                details.append(f"AUTO-ACCEPT: High confidence ({_pct(score)}) - no issues detected")
            elif score >= policy.auto_correct_threshold:
                outcome = Outcome.AUTO_CORRECT
                details.append(
                    f"AUTO-CORRECT: Moderate confidence ({_pct(score)}) - "
                    "corrections applied automatically"
                )
            else:
                requires_review = True
                reasons.append(f"Overall confidence too low: {_pct(score)}")
                details.append(f"ESCALATE: Confidence below threshold ({_pct(score)})")

        decision = Decision(
            requires_review=requires_review,
            reasoning=self.build_reasoning(outcome, score, reasons, corrections, memories),
            confidence_score=score,
            escalation_reasons=reasons,
            outcome=outcome,
        )

        self._logger.info(
            "decision_made",
            invoice_id=normalized.invoice_id,
            vendor=normalized.vendor,
            outcome=outcome.value,
            requires_review=requires_review,
            confidence_score=round(score, 4),
            escalation_count=len(reasons),
        )
        return decision, create_audit_entry(AuditStep.DECIDE, details)

    def build_reasoning(
        self,
        outcome: Outcome,
        score: float,
        reasons: list[str],
        corrections: list[ProposedCorrection],
        memories: RecalledMemories,
    ) -> str:
        """Explanation assembled from the structured decision fields."""
        lines: list[str] = []

        if outcome == Outcome.ESCALATE:
            lines.append(f"REQUIRES HUMAN REVIEW (Overall confidence: {_pct(score)})")
        else:
            lines.append(f"{outcome.value} (Overall confidence: {_pct(score)})")

        vendor = memories.vendor_memory
        if vendor is not None:
            lines.append(
                f'Memory: Using {vendor.usage_count} prior interactions with "{vendor.vendor_name}"'
            )
        else:
            lines.append("Memory: No prior history for this vendor")

        auto_applied = [c for c in corrections if c.auto_applied]
        if auto_applied:
            lines.append(f"Auto-applied {len(auto_applied)} correction(s):")
            lines.extend(f"   - {c.field}: {c.reasoning}" for c in auto_applied)

        proposed = [c for c in corrections if not c.auto_applied]
        if proposed:
            lines.append(f"Proposed {len(proposed)} correction(s) for review:")
            lines.extend(
                f"   - {c.field}: {_render(c.original_value)} -> {_render(c.proposed_value)}"
                for c in proposed
            )

        if reasons:
            lines.append("Escalation reasons:")
            lines.extend(f"   - {reason}" for reason in reasons)

        if memories.potential_duplicate is not None:
            lines.append(
                "DUPLICATE WARNING: This invoice may be a duplicate of a previously processed invoice"
            )

        return "\n".join(lines)
