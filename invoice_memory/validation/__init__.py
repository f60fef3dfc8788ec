"""
Validation module for incoming invoices.

Provides duplicate detection against the processed-invoice ledger.
"""

from invoice_memory.validation.duplicates import (
    DuplicateGuard,
    format_amount,
    invoice_fingerprint,
)


__all__ = [
    "DuplicateGuard",
    "format_amount",
    "invoice_fingerprint",
]
