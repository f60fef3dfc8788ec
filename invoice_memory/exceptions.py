"""
Exception hierarchy for the invoice memory engine.

Missing data (no vendor memory, no purchase orders) is never an error;
these exceptions cover storage faults and malformed human input only.
"""

from typing import Any


class InvoiceMemoryError(Exception):
    """Base exception for invoice memory errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the error.

        Args:
            message: Error message.
            details: Additional error details.
        """
        super().__init__(message)
        self.details = details or {}


class KnowledgeStoreError(InvoiceMemoryError):
    """The knowledge store is unavailable or a storage operation failed."""


class CorruptRecordError(KnowledgeStoreError):
    """A stored record or embedded JSON blob could not be decoded."""


class InvalidCorrectionError(InvoiceMemoryError):
    """A single human field correction is malformed and cannot be learned."""
