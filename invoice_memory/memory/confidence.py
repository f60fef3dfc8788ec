"""
Confidence model for learned memories.

All confidences are bounded arithmetic heuristics:

    success-rate confidence = clamp(0.1, 0.95, 0.3 + adjusted * 0.65 * observations)
        adjusted     = successes / (successes + 2 * failures)
        observations = min(1.0, (successes + failures) / 3)

    vendor aggregate = 0.3 + mean(sub-memory confidences) * 0.7 * min(1.0, usage / 5)

    decayed = max(floor, confidence * factor ** days_since_last_use)

Rejections weigh twice as much as approvals, and at least three consistent
observations are needed before a pattern reaches high confidence.
"""

from datetime import datetime

from invoice_memory.memory.models import VendorMemory
from invoice_memory.utils.date_utils import parse_timestamp


MIN_CONFIDENCE = 0.1
MAX_PATTERN_CONFIDENCE = 0.95
MAX_VENDOR_CONFIDENCE = 1.0

INITIAL_SUCCESS_CONFIDENCE = 0.6
INITIAL_FAILURE_CONFIDENCE = 0.3
EMPTY_VENDOR_CONFIDENCE = 0.5

REINFORCE_STEP = 0.1
WEAKEN_STEP = 0.2

FULL_OBSERVATIONS = 3
FULL_VENDOR_USAGE = 5


def clamp(value: float, low: float, high: float) -> float:
    """Clamp a value into [low, high]."""
    return max(low, min(high, value))


def success_rate_confidence(success_count: int, failure_count: int) -> float:
    """
    Confidence of a correction pattern or field mapping from its counts.

    Args:
        success_count: Number of approved observations.
        failure_count: Number of rejected observations.

    Returns:
        Confidence in [0.1, 0.95]; 0.5 when nothing has been observed.
    """
    total = success_count + failure_count
    if total == 0:
        return EMPTY_VENDOR_CONFIDENCE

    adjusted_rate = success_count / (success_count + failure_count * 2)
    observation_factor = min(1.0, total / FULL_OBSERVATIONS)

    return clamp(
        0.3 + adjusted_rate * 0.65 * observation_factor,
        MIN_CONFIDENCE,
        MAX_PATTERN_CONFIDENCE,
    )


def step_confidence(confidence: float, success: bool) -> float:
    """
    Move a step-tracked confidence (tax behavior, SKU mapping).

    Success adds 0.1 (capped at 1.0); failure subtracts 0.2 (floored at 0.1).
    """
    if success:
        return min(MAX_VENDOR_CONFIDENCE, confidence + REINFORCE_STEP)
    return max(MIN_CONFIDENCE, confidence - WEAKEN_STEP)


def initial_confidence(success: bool) -> float:
    """Confidence of a freshly created sub-memory."""
    return INITIAL_SUCCESS_CONFIDENCE if success else INITIAL_FAILURE_CONFIDENCE


def vendor_aggregate_confidence(memory: VendorMemory) -> float:
    """
    Aggregate vendor confidence derived from its sub-memories and usage.

    Returns 0.5 for a vendor without any sub-memories.
    """
    confidences = memory.sub_memory_confidences()
    if not confidences:
        return EMPTY_VENDOR_CONFIDENCE

    average = sum(confidences) / len(confidences)
    usage_factor = min(1.0, memory.usage_count / FULL_VENDOR_USAGE)

    return clamp(0.3 + average * 0.7 * usage_factor, MIN_CONFIDENCE, MAX_VENDOR_CONFIDENCE)


def decay_confidence(
    confidence: float,
    days: float,
    daily_factor: float = 0.99,
    floor: float = MIN_CONFIDENCE,
) -> float:
    """
    Attenuate a confidence by elapsed days since last use.

    ``decay_confidence(c, 0) == c`` for any c above the floor, and the result
    is non-increasing in ``days``.
    """
    if days <= 0:
        return max(floor, confidence)
    return max(floor, confidence * daily_factor**days)


def days_since(timestamp: str, now: datetime) -> int:
    """
    Whole calendar days between a stored timestamp and ``now``.

    Timestamps in the future count as zero days.
    """
    then = parse_timestamp(timestamp)
    return max(0, (now.date() - then.astimezone(now.tzinfo).date()).days)


def decayed_since(
    confidence: float,
    last_used: str,
    now: datetime,
    daily_factor: float = 0.99,
    floor: float = MIN_CONFIDENCE,
) -> float:
    """Decay a stored confidence by the whole days since ``last_used``."""
    return decay_confidence(confidence, days_since(last_used, now), daily_factor, floor)
