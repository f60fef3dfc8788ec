"""
Extraction module for raw-text pattern matching.
"""

from invoice_memory.extraction.extractors import (
    INCLUSIVE_TAX_INDICATORS,
    RawTextExtractor,
    RegexExtractor,
    parse_amount,
)


__all__ = [
    "INCLUSIVE_TAX_INDICATORS",
    "RawTextExtractor",
    "RegexExtractor",
    "parse_amount",
]
