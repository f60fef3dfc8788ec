"""
SQLite-backed knowledge store for learned memories.

Holds four logical tables (vendor, correction and resolution memories plus
the processed-invoice ledger) and the pipeline audit log. Field mappings,
SKU mappings and tax behavior live as JSON blobs inside the vendor row.

The connection is opened lazily on first use, every mutating call is
committed immediately, and ``close()`` must be called at shutdown (or the
store used as a context manager).
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from invoice_memory.config import get_logger, get_settings
from invoice_memory.exceptions import CorruptRecordError, KnowledgeStoreError
from invoice_memory.memory.models import (
    CorrectionMemory,
    CorrectionType,
    FieldMapping,
    ProcessedInvoice,
    ResolutionMemory,
    SkuMapping,
    TaxBehavior,
    VendorMemory,
)


logger = get_logger(__name__)

IN_MEMORY = ":memory:"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS vendor_memories (
        id TEXT PRIMARY KEY,
        vendor_name TEXT NOT NULL UNIQUE,
        field_mappings TEXT NOT NULL DEFAULT '[]',
        tax_behavior TEXT,
        default_currency TEXT,
        sku_mappings TEXT NOT NULL DEFAULT '[]',
        payment_terms TEXT,
        confidence REAL NOT NULL DEFAULT 0.5,
        usage_count INTEGER NOT NULL DEFAULT 0,
        last_used TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS correction_memories (
        id TEXT PRIMARY KEY,
        vendor_name TEXT NOT NULL,
        field_name TEXT NOT NULL,
        pattern TEXT NOT NULL,
        correction_type TEXT NOT NULL,
        correction_value TEXT,
        confidence REAL NOT NULL DEFAULT 0.5,
        success_count INTEGER NOT NULL DEFAULT 0,
        failure_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resolution_memories (
        id TEXT PRIMARY KEY,
        invoice_id TEXT NOT NULL,
        vendor_name TEXT NOT NULL,
        discrepancy_type TEXT NOT NULL,
        original_value TEXT,
        corrected_value TEXT,
        resolution TEXT NOT NULL,
        human_feedback TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_invoices (
        id TEXT PRIMARY KEY,
        invoice_number TEXT NOT NULL,
        vendor_name TEXT NOT NULL,
        invoice_date TEXT NOT NULL,
        gross_total REAL NOT NULL,
        processed_at TEXT NOT NULL,
        fingerprint TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_id TEXT NOT NULL,
        step TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        details TEXT NOT NULL,
        memory_ids TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_correction_memories_vendor ON correction_memories(vendor_name)",
    "CREATE INDEX IF NOT EXISTS idx_resolution_memories_vendor ON resolution_memories(vendor_name)",
    "CREATE INDEX IF NOT EXISTS idx_processed_invoices_vendor ON processed_invoices(vendor_name, invoice_number)",
    "CREATE INDEX IF NOT EXISTS idx_processed_invoices_fingerprint ON processed_invoices(fingerprint)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_invoice ON audit_logs(invoice_id)",
)

_TABLES = (
    "vendor_memories",
    "correction_memories",
    "resolution_memories",
    "processed_invoices",
    "audit_logs",
)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(raw: str | None, table: str, column: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptRecordError(
            f"Malformed JSON in {table}.{column}",
            details={"table": table, "column": column, "error": str(e)},
        ) from e


class KnowledgeStore:
    """
    Persistent store for vendor, correction and resolution memories.

    Thread-safe: all statements run under a re-entrant lock on a single
    connection. Storage faults raise ``KnowledgeStoreError``; malformed
    stored blobs raise ``CorruptRecordError``.

    Example:
        with KnowledgeStore("./data/memory.db") as store:
            memory = store.get_vendor_memory("Supplier GmbH")
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """
        Initialize the store without opening the connection.

        Args:
            path: SQLite file path, or ":memory:". Defaults to the
                configured ``storage.path``.
        """
        if path is None:
            path = get_settings().storage.path
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._vendor_locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._logger = logger

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def vendor_lock(self, vendor_name: str) -> threading.RLock:
        """
        Re-entrant lock serializing memory updates for one vendor.

        Shared by every learner and pipeline using this store.
        """
        with self._registry_lock:
            lock = self._vendor_locks.get(vendor_name)
            if lock is None:
                lock = threading.RLock()
                self._vendor_locks[vendor_name] = lock
            return lock

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Open the connection and create the schema if needed."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                if self._path != IN_MEMORY:
                    Path(self._path).parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(self._path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                for statement in _SCHEMA:
                    conn.execute(statement)
                conn.commit()
            except (sqlite3.Error, OSError) as e:
                self._logger.error("knowledge_store_open_failed", path=self._path, error=str(e))
                raise KnowledgeStoreError(
                    f"Cannot open knowledge store at {self._path}",
                    details={"path": self._path},
                ) from e
            self._conn = conn
            self._logger.info("knowledge_store_opened", path=self._path)

    def flush(self) -> None:
        """Commit any pending changes."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
            except sqlite3.Error as e:
                raise KnowledgeStoreError("Failed to flush knowledge store") from e

    def close(self) -> None:
        """Flush and close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
                self._conn.close()
            except sqlite3.Error as e:
                raise KnowledgeStoreError("Failed to close knowledge store") from e
            finally:
                self._conn = None
            self._logger.info("knowledge_store_closed", path=self._path)

    def reset(self) -> None:
        """Delete every stored memory, ledger entry and audit entry."""
        with self._transaction() as conn:
            for table in _TABLES:
                conn.execute(f"DELETE FROM {table}")
        self._logger.warning("knowledge_store_reset", path=self._path)

    def __enter__(self) -> KnowledgeStore:
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically and commit on success."""
        with self._lock:
            self.open()
            assert self._conn is not None
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                self._logger.error("knowledge_store_write_failed", error=str(e))
                raise KnowledgeStoreError("Knowledge store write failed") from e
            except Exception:
                self._conn.rollback()
                raise

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            self.open()
            assert self._conn is not None
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                self._logger.error("knowledge_store_read_failed", error=str(e))
                raise KnowledgeStoreError("Knowledge store read failed") from e

    # ------------------------------------------------------------------
    # Vendor memories
    # ------------------------------------------------------------------

    def _row_to_vendor(self, row: sqlite3.Row) -> VendorMemory:
        table = "vendor_memories"
        try:
            tax_raw = _loads(row["tax_behavior"], table, "tax_behavior")
            return VendorMemory(
                id=row["id"],
                vendor_name=row["vendor_name"],
                field_mappings=[
                    FieldMapping.from_dict(m)
                    for m in _loads(row["field_mappings"], table, "field_mappings") or []
                ],
                sku_mappings=[
                    SkuMapping.from_dict(m)
                    for m in _loads(row["sku_mappings"], table, "sku_mappings") or []
                ],
                tax_behavior=TaxBehavior.from_dict(tax_raw) if tax_raw else None,
                default_currency=row["default_currency"],
                payment_terms=row["payment_terms"],
                confidence=row["confidence"],
                usage_count=row["usage_count"],
                last_used=row["last_used"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise CorruptRecordError(
                f"Malformed vendor memory for {row['vendor_name']!r}",
                details={"vendor_name": row["vendor_name"], "error": str(e)},
            ) from e

    def get_vendor_memory(self, vendor_name: str) -> VendorMemory | None:
        """Fetch the vendor memory for a vendor, or None."""
        rows = self._query(
            "SELECT * FROM vendor_memories WHERE vendor_name = ?",
            (vendor_name,),
        )
        return self._row_to_vendor(rows[0]) if rows else None

    def list_vendor_memories(self) -> list[VendorMemory]:
        """List all vendor memories ordered by vendor name."""
        rows = self._query("SELECT * FROM vendor_memories ORDER BY vendor_name")
        return [self._row_to_vendor(row) for row in rows]

    def insert_vendor_memory(self, memory: VendorMemory) -> None:
        """Insert a new vendor memory row."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO vendor_memories
                (id, vendor_name, field_mappings, tax_behavior, default_currency,
                 sku_mappings, payment_terms, confidence, usage_count,
                 last_used, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._vendor_params(memory),
            )

    def save_vendor_memory(self, memory: VendorMemory) -> None:
        """Overwrite an existing vendor memory row, keyed by vendor name."""
        params = self._vendor_params(memory)
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE vendor_memories
                SET id = ?, field_mappings = ?, tax_behavior = ?,
                    default_currency = ?, sku_mappings = ?, payment_terms = ?,
                    confidence = ?, usage_count = ?, last_used = ?,
                    created_at = ?, updated_at = ?
                WHERE vendor_name = ?
                """,
                (params[0], *params[2:], params[1]),
            )

    @staticmethod
    def _vendor_params(memory: VendorMemory) -> tuple[Any, ...]:
        return (
            memory.id,
            memory.vendor_name,
            _dumps([m.to_dict() for m in memory.field_mappings]),
            _dumps(memory.tax_behavior.to_dict()) if memory.tax_behavior else None,
            memory.default_currency,
            _dumps([m.to_dict() for m in memory.sku_mappings]),
            memory.payment_terms,
            memory.confidence,
            memory.usage_count,
            memory.last_used,
            memory.created_at,
            memory.updated_at,
        )

    # ------------------------------------------------------------------
    # Correction memories
    # ------------------------------------------------------------------

    def _row_to_correction(self, row: sqlite3.Row) -> CorrectionMemory:
        try:
            correction_type = CorrectionType(row["correction_type"])
        except ValueError as e:
            raise CorruptRecordError(
                f"Unknown correction type {row['correction_type']!r}",
                details={"id": row["id"]},
            ) from e
        return CorrectionMemory(
            id=row["id"],
            vendor_name=row["vendor_name"],
            field_name=row["field_name"],
            pattern=row["pattern"],
            correction_type=correction_type,
            correction_value=_loads(row["correction_value"], "correction_memories", "correction_value"),
            confidence=row["confidence"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_correction_memory(self, memory_id: str) -> CorrectionMemory | None:
        """Fetch one correction memory by ID."""
        rows = self._query("SELECT * FROM correction_memories WHERE id = ?", (memory_id,))
        return self._row_to_correction(rows[0]) if rows else None

    def list_correction_memories(self, vendor_name: str | None = None) -> list[CorrectionMemory]:
        """
        List correction memories, highest confidence first.

        Args:
            vendor_name: Restrict to one vendor; all vendors when None.
        """
        if vendor_name is None:
            rows = self._query(
                "SELECT * FROM correction_memories "
                "ORDER BY vendor_name, confidence DESC, rowid"
            )
        else:
            rows = self._query(
                "SELECT * FROM correction_memories WHERE vendor_name = ? "
                "ORDER BY confidence DESC, rowid",
                (vendor_name,),
            )
        return [self._row_to_correction(row) for row in rows]

    def insert_correction_memory(self, memory: CorrectionMemory) -> None:
        """Insert a new correction memory."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO correction_memories
                (id, vendor_name, field_name, pattern, correction_type,
                 correction_value, confidence, success_count, failure_count,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.vendor_name,
                    memory.field_name,
                    memory.pattern,
                    memory.correction_type.value,
                    _dumps(memory.correction_value),
                    memory.confidence,
                    memory.success_count,
                    memory.failure_count,
                    memory.created_at,
                    memory.updated_at,
                ),
            )

    def save_correction_counts(self, memory: CorrectionMemory) -> None:
        """Persist the counters and confidence of a correction memory."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE correction_memories
                SET success_count = ?, failure_count = ?, confidence = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    memory.success_count,
                    memory.failure_count,
                    memory.confidence,
                    memory.updated_at,
                    memory.id,
                ),
            )

    # ------------------------------------------------------------------
    # Resolution memories
    # ------------------------------------------------------------------

    def _row_to_resolution(self, row: sqlite3.Row) -> ResolutionMemory:
        table = "resolution_memories"
        return ResolutionMemory(
            id=row["id"],
            invoice_id=row["invoice_id"],
            vendor_name=row["vendor_name"],
            discrepancy_type=row["discrepancy_type"],
            original_value=_loads(row["original_value"], table, "original_value"),
            corrected_value=_loads(row["corrected_value"], table, "corrected_value"),
            resolution=row["resolution"],
            human_feedback=row["human_feedback"],
            created_at=row["created_at"],
        )

    def list_resolution_memories(self, vendor_name: str | None = None) -> list[ResolutionMemory]:
        """
        List resolution memories, most recent first.

        Args:
            vendor_name: Restrict to one vendor; all vendors when None.
        """
        if vendor_name is None:
            rows = self._query(
                "SELECT * FROM resolution_memories ORDER BY created_at DESC, rowid DESC"
            )
        else:
            rows = self._query(
                "SELECT * FROM resolution_memories WHERE vendor_name = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (vendor_name,),
            )
        return [self._row_to_resolution(row) for row in rows]

    def insert_resolution_memory(self, memory: ResolutionMemory) -> None:
        """Append a resolution memory."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO resolution_memories
                (id, invoice_id, vendor_name, discrepancy_type, original_value,
                 corrected_value, resolution, human_feedback, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    memory.id,
                    memory.invoice_id,
                    memory.vendor_name,
                    memory.discrepancy_type,
                    _dumps(memory.original_value),
                    _dumps(memory.corrected_value),
                    memory.resolution,
                    memory.human_feedback,
                    memory.created_at,
                ),
            )

    # ------------------------------------------------------------------
    # Processed invoice ledger
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_processed(row: sqlite3.Row) -> ProcessedInvoice:
        return ProcessedInvoice(
            id=row["id"],
            invoice_number=row["invoice_number"],
            vendor_name=row["vendor_name"],
            invoice_date=row["invoice_date"],
            gross_total=row["gross_total"],
            processed_at=row["processed_at"],
            fingerprint=row["fingerprint"],
        )

    def insert_processed_invoice(self, entry: ProcessedInvoice) -> None:
        """Append a ledger entry."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO processed_invoices
                (id, invoice_number, vendor_name, invoice_date, gross_total,
                 processed_at, fingerprint)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.invoice_number,
                    entry.vendor_name,
                    entry.invoice_date,
                    entry.gross_total,
                    entry.processed_at,
                    entry.fingerprint,
                ),
            )

    def find_processed_invoices(self, vendor_name: str, invoice_number: str) -> list[ProcessedInvoice]:
        """Ledger entries with the given vendor and invoice number, newest first."""
        rows = self._query(
            "SELECT * FROM processed_invoices WHERE vendor_name = ? AND invoice_number = ? "
            "ORDER BY processed_at DESC, rowid DESC",
            (vendor_name, invoice_number),
        )
        return [self._row_to_processed(row) for row in rows]

    def find_processed_by_fingerprint(self, fingerprint: str) -> ProcessedInvoice | None:
        """Most recent ledger entry with the given fingerprint."""
        rows = self._query(
            "SELECT * FROM processed_invoices WHERE fingerprint = ? "
            "ORDER BY processed_at DESC, rowid DESC LIMIT 1",
            (fingerprint,),
        )
        return self._row_to_processed(rows[0]) if rows else None

    def list_processed_invoices(self) -> list[ProcessedInvoice]:
        """The full ledger, newest first."""
        rows = self._query(
            "SELECT * FROM processed_invoices ORDER BY processed_at DESC, rowid DESC"
        )
        return [self._row_to_processed(row) for row in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append_audit_entry(
        self,
        invoice_id: str,
        step: str,
        timestamp: str,
        details: str,
        memory_ids: list[str] | None = None,
    ) -> None:
        """Append one audit log row."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO audit_logs (invoice_id, step, timestamp, details, memory_ids)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    invoice_id,
                    step,
                    timestamp,
                    details,
                    _dumps(memory_ids) if memory_ids is not None else None,
                ),
            )

    def list_audit_entries(self, invoice_id: str) -> list[dict[str, Any]]:
        """Audit rows for a document in insertion order."""
        rows = self._query(
            "SELECT * FROM audit_logs WHERE invoice_id = ? ORDER BY id",
            (invoice_id,),
        )
        return [
            {
                "step": row["step"],
                "timestamp": row["timestamp"],
                "details": row["details"],
                "memory_ids": _loads(row["memory_ids"], "audit_logs", "memory_ids"),
            }
            for row in rows
        ]
