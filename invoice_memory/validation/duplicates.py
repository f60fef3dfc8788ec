"""
Duplicate guard for processed invoices.

Checks incoming documents against the processed-invoice ledger. A document
is a likely duplicate when a ledger entry with the same vendor and invoice
number lies within the date window and amount tolerance, or when any entry
carries the same content fingerprint.
"""

from __future__ import annotations

from invoice_memory.config import get_logger, get_settings
from invoice_memory.config.settings import DuplicateSettings
from invoice_memory.memory.models import ProcessedInvoice
from invoice_memory.schemas.invoice import Invoice
from invoice_memory.storage.knowledge_store import KnowledgeStore
from invoice_memory.utils.date_utils import days_between, get_current_timestamp, parse_date
from invoice_memory.utils.hash_utils import compute_md5, generate_unique_id


logger = get_logger(__name__)


def format_amount(value: float) -> str:
    """Render an amount without a trailing ``.0`` for whole numbers."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def invoice_fingerprint(invoice: Invoice) -> str:
    """
    Stable content fingerprint of an invoice.

    MD5 hex digest of ``vendor|invoice_number|gross_total``.
    """
    data = "|".join(
        [
            invoice.vendor,
            invoice.fields.invoice_number,
            format_amount(invoice.fields.gross_total),
        ]
    )
    return compute_md5(data)


class DuplicateGuard:
    """
    Detect re-submitted invoices using the processed-invoice ledger.

    Example:
        guard = DuplicateGuard(store)
        if guard.check(invoice) is None:
            ...
            guard.record(invoice)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        settings: DuplicateSettings | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings().duplicates
        self._logger = logger

    def _is_near_match(self, entry: ProcessedInvoice, invoice: Invoice) -> bool:
        recorded_date = parse_date(entry.invoice_date)
        incoming_date = parse_date(invoice.fields.invoice_date)
        if recorded_date is None or incoming_date is None:
            return False

        if days_between(recorded_date, incoming_date) > self._settings.date_window_days:
            return False

        tolerance = abs(entry.gross_total) * self._settings.amount_tolerance
        return abs(entry.gross_total - invoice.fields.gross_total) <= tolerance

    def check(self, invoice: Invoice) -> ProcessedInvoice | None:
        """
        Return the ledger entry the invoice likely duplicates, if any.

        Unparsable dates disable only the date proximity check; the
        fingerprint check always runs.
        """
        for entry in self._store.find_processed_invoices(
            invoice.vendor, invoice.fields.invoice_number
        ):
            if self._is_near_match(entry, invoice):
                self._logger.warning(
                    "duplicate_detected",
                    invoice_id=invoice.invoice_id,
                    vendor=invoice.vendor,
                    invoice_number=invoice.fields.invoice_number,
                    matched_entry=entry.id,
                    reason="date_amount_proximity",
                )
                return entry

        entry = self._store.find_processed_by_fingerprint(invoice_fingerprint(invoice))
        if entry is not None:
            self._logger.warning(
                "duplicate_detected",
                invoice_id=invoice.invoice_id,
                vendor=invoice.vendor,
                invoice_number=invoice.fields.invoice_number,
                matched_entry=entry.id,
                reason="fingerprint",
            )
        return entry

    def record(self, invoice: Invoice) -> ProcessedInvoice:
        """
        Append a ledger entry for an invoice.

        Every call appends a new entry; record each accepted invoice once.
        """
        entry = ProcessedInvoice(
            id=generate_unique_id(),
            invoice_number=invoice.fields.invoice_number,
            vendor_name=invoice.vendor,
            invoice_date=invoice.fields.invoice_date,
            gross_total=invoice.fields.gross_total,
            processed_at=get_current_timestamp(),
            fingerprint=invoice_fingerprint(invoice),
        )
        self._store.insert_processed_invoice(entry)

        self._logger.info(
            "invoice_recorded",
            invoice_id=invoice.invoice_id,
            vendor=invoice.vendor,
            invoice_number=entry.invoice_number,
        )
        return entry

    def list_processed(self) -> list[ProcessedInvoice]:
        """The full ledger, newest first."""
        return self._store.list_processed_invoices()
