"""
Raw-text extractors used by the APPLY stage.

Extractors are pluggable: anything implementing ``RawTextExtractor`` can be
passed to the pipeline. ``RegexExtractor`` is the default, regex-level
implementation for labeled dates, currencies, discount terms and totals
found in German and English invoice text.
"""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable

from invoice_memory.utils.date_utils import to_iso_date


CURRENCY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Currency[:\s]+([A-Z]{3})", re.IGNORECASE),
    re.compile(r"\b(EUR|USD|GBP|CHF)\b", re.IGNORECASE),
]

# Skonto / early-payment discount phrasing
PAYMENT_TERM_PATTERNS: list[re.Pattern[str]] = [
    re.compile(
        r"(\d+%\s*Skonto\s*(?:if|within|bei)\s*(?:paid\s*)?(?:within\s*)?\d+\s*(?:days|Tage)?)",
        re.IGNORECASE,
    ),
    re.compile(r"(Skonto[:\s]+\d+%[^.\n]*)", re.IGNORECASE),
    re.compile(r"(\d+%\s*discount\s*(?:if|within)\s*\d+\s*days)", re.IGNORECASE),
]

GROSS_TOTAL_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"Total[:\s]+([0-9][0-9,.]*)", re.IGNORECASE),
    re.compile(r"Gesamt[:\s]+([0-9][0-9,.]*)", re.IGNORECASE),
    re.compile(r"Brutto[:\s]+([0-9][0-9,.]*)", re.IGNORECASE),
]

INCLUSIVE_TAX_INDICATORS: tuple[str, ...] = (
    "inkl.",
    "incl.",
    "included",
    "inclusive",
    "mwst. inkl",
)


def parse_amount(value: str) -> float | None:
    """
    Parse an amount written with either decimal separator.

    The right-most separator is the decimal separator when both appear
    ("1.190,00" and "1,190.00" both give 1190.0).

    Example:
        parse_amount("2380,50") -> 2380.5
        parse_amount("abc") -> None
    """
    value = value.strip().rstrip(".,")
    if not value:
        return None

    if "," in value and "." in value:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif value.count(",") == 1:
        value = value.replace(",", ".")
    else:
        value = value.replace(",", "")

    try:
        return float(value)
    except ValueError:
        return None


@runtime_checkable
class RawTextExtractor(Protocol):
    """Contract for raw-text extraction collaborators."""

    def extract_labeled(self, raw_text: str, label: str) -> str | None:
        """ISO date following ``label`` in the text, or None."""
        ...

    def extract_currency(self, raw_text: str) -> str | None:
        """Three-letter currency code found in the text, or None."""
        ...

    def extract_payment_terms(self, raw_text: str) -> str | None:
        """Discount or payment terms phrase found in the text, or None."""
        ...

    def extract_gross_total(self, raw_text: str, current_gross: float) -> float | None:
        """A stated total that differs from ``current_gross``, or None."""
        ...

    def has_inclusive_tax_indicator(self, raw_text: str) -> bool:
        """Whether the text states that prices include VAT."""
        ...


class RegexExtractor:
    """Default regex-based ``RawTextExtractor``."""

    def extract_labeled(self, raw_text: str, label: str) -> str | None:
        if not raw_text or not label:
            return None

        anchor = re.escape(label)
        patterns = (
            re.compile(anchor + r"[:\s]+(\d{1,2}[./]\d{1,2}[./]\d{2,4})", re.IGNORECASE),
            re.compile(anchor + r"[:\s]+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
        )
        for pattern in patterns:
            match = pattern.search(raw_text)
            if match:
                return to_iso_date(match.group(1))
        return None

    def extract_currency(self, raw_text: str) -> str | None:
        for pattern in CURRENCY_PATTERNS:
            match = pattern.search(raw_text or "")
            if match:
                return match.group(1).upper()
        return None

    def extract_payment_terms(self, raw_text: str) -> str | None:
        for pattern in PAYMENT_TERM_PATTERNS:
            match = pattern.search(raw_text or "")
            if match:
                return match.group(1).strip()
        return None

    def extract_gross_total(self, raw_text: str, current_gross: float) -> float | None:
        for pattern in GROSS_TOTAL_PATTERNS:
            match = pattern.search(raw_text or "")
            if not match:
                continue
            amount = parse_amount(match.group(1))
            if amount is not None and amount != current_gross:
                return amount
        return None

    def has_inclusive_tax_indicator(self, raw_text: str) -> bool:
        text = (raw_text or "").lower()
        return any(indicator in text for indicator in INCLUSIVE_TAX_INDICATORS)
