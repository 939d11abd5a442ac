"""SQLite storage backend for jobledger.

Local relational store with:
- One short-lived connection per operation outside a transaction
- One thread-local connection for the lifetime of an open transaction
- ``BEGIN IMMEDIATE`` transactions, so the write lock is taken before the
  first read and read-check-write sequences cannot interleave
- Row mapping kept here; services only see entities
"""

import contextlib
import json
import logging
import sqlite3
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional

from jobledger.config import LedgerConfig, get_config
from jobledger.documents.models import (
    Invoice,
    InvoiceLineItem,
    PaymentRecord,
    Quote,
    QuoteLineItem,
)
from jobledger.errors import ConcurrencyConflictError
from jobledger.jobs.models import Bid, BidStatus, Job, JobStateTransition, JobStatus
from jobledger.utils import format_datetime, parse_datetime, utc_now

from .base import DocumentT, LineItemT
from .schema import init_db

logger = logging.getLogger(__name__)


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _is_locked(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


# === Row mapping ===


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        requester_id=row["requester_id"],
        contractor_id=row["contractor_id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        budget=Decimal(row["budget"]) if row["budget"] is not None else None,
        category_tags=json.loads(row["category_tags"] or "[]"),
        is_urgent=bool(row["is_urgent"]),
        deadline=parse_datetime(row["deadline"]),
        start_date=parse_datetime(row["start_date"]),
        completion_date=parse_datetime(row["completion_date"]),
        progress=row["progress"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def _row_to_bid(row: sqlite3.Row) -> Bid:
    return Bid(
        id=row["id"],
        job_id=row["job_id"],
        contractor_id=row["contractor_id"],
        amount=Decimal(row["amount"]),
        proposal=row["proposal"],
        time_estimate=row["time_estimate"],
        proposed_start_date=parse_datetime(row["proposed_start_date"]),
        status=row["status"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def _row_to_transition(row: sqlite3.Row) -> JobStateTransition:
    return JobStateTransition(
        id=row["id"],
        job_id=row["job_id"],
        from_status=row["from_status"],
        to_status=row["to_status"],
        actor_id=row["actor_id"],
        reason=row["reason"],
        created_at=parse_datetime(row["created_at"]),
    )


def _document_kwargs(row: sqlite3.Row) -> dict:
    return dict(
        id=row["id"],
        number=row["number"],
        title=row["title"],
        job_id=row["job_id"],
        requester_id=row["requester_id"],
        contractor_id=row["contractor_id"],
        status=row["status"],
        subtotal=Decimal(row["subtotal"]),
        tax_rate=Decimal(row["tax_rate"]),
        tax_amount=Decimal(row["tax_amount"]),
        discount_amount=Decimal(row["discount_amount"]),
        total=Decimal(row["total"]),
        notes=row["notes"],
        terms=row["terms"],
        sent_at=parse_datetime(row["sent_at"]),
        viewed_at=parse_datetime(row["viewed_at"]),
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def _row_to_quote(row: sqlite3.Row) -> Quote:
    return Quote(
        **_document_kwargs(row),
        valid_until=parse_datetime(row["valid_until"]),
        preferred_start_date=parse_datetime(row["preferred_start_date"]),
        estimated_duration_days=row["estimated_duration_days"],
        accepted_at=parse_datetime(row["accepted_at"]),
        rejected_at=parse_datetime(row["rejected_at"]),
    )


def _row_to_invoice(row: sqlite3.Row) -> Invoice:
    return Invoice(
        **_document_kwargs(row),
        quote_id=row["quote_id"],
        amount_paid=Decimal(row["amount_paid"]),
        due_date=parse_datetime(row["due_date"]),
        issued_date=parse_datetime(row["issued_date"]),
        paid_date=parse_datetime(row["paid_date"]),
        payment_method=row["payment_method"],
        payment_details=row["payment_details"],
    )


def _row_to_line_item(row: sqlite3.Row, cls, parent_column: str) -> LineItemT:
    return cls(
        id=row["id"],
        document_id=row[parent_column],
        description=row["description"],
        quantity=Decimal(row["quantity"]),
        unit_price=Decimal(row["unit_price"]),
        sort_order=row["sort_order"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def _row_to_payment(row: sqlite3.Row) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        invoice_id=row["invoice_id"],
        amount=Decimal(row["amount"]),
        method=row["method"],
        details=row["details"],
        recorded_by=row["recorded_by"],
        recorded_at=parse_datetime(row["recorded_at"]),
    )


def _line_item_table(item_or_doc) -> tuple:
    """(table, parent column, item class) for a line item or its parent document."""
    if isinstance(item_or_doc, (Quote, QuoteLineItem)):
        return "quote_line_items", "quote_id", QuoteLineItem
    return "invoice_line_items", "invoice_id", InvoiceLineItem


class SQLiteLedgerStorage:
    """SQLite-based ledger storage.

    Features:
    - Zero-config local storage
    - WAL journal, foreign keys enforced, cascading line item deletes
    - Serialised writers via BEGIN IMMEDIATE plus a busy timeout
    """

    def __init__(self, db_path: Optional[Path] = None, config: Optional[LedgerConfig] = None):
        self.config = config or get_config()
        self.db_path = Path(db_path) if db_path is not None else self.config.resolve_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Open a connection in autocommit mode; transactions are explicit."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.config.busy_timeout_ms / 1000,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(self.config.busy_timeout_ms)}")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self):
        with contextlib.closing(self._get_conn()) as conn:
            init_db(conn, self.db_path)

    @contextlib.contextmanager
    def transaction(self):
        """Open or join a write transaction on this thread."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield self
            return

        conn = self._get_conn()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if not _is_locked(e):
                    raise
                raise self._lock_timeout() from e
            self._local.conn = conn
            try:
                yield self
                conn.execute("COMMIT")
            except Exception as e:
                logger.debug(f"Transaction failed, rolling back: {e}")
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            self._local.conn = None
            conn.close()

    @contextlib.contextmanager
    def _connect(self):
        """Connection for a single operation.

        Joins the thread's open transaction if there is one, otherwise
        runs the operation in its own short deferred transaction.
        """
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        conn = self._get_conn()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.execute("COMMIT")
        except Exception as e:
            logger.debug(f"Operation failed, rolling back: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.OperationalError) and _is_locked(e):
                raise self._lock_timeout() from e
            raise
        finally:
            conn.close()

    def _lock_timeout(self) -> ConcurrencyConflictError:
        logger.warning(
            f"Write lock on {self.db_path} not acquired within {self.config.busy_timeout_ms}ms"
        )
        return ConcurrencyConflictError(
            "database",
            str(self.db_path),
            message=f"Timed out waiting for the write lock on {self.db_path}",
        )

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(sql, params).fetchall()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a write and return the affected row count."""
        with self._connect() as conn:
            return conn.execute(sql, params).rowcount

    # === Jobs ===

    @staticmethod
    def _job_params(job: Job) -> tuple:
        now = format_datetime(utc_now())
        return (
            job.requester_id,
            job.contractor_id,
            job.title,
            job.description,
            job.status,
            _dec(job.budget),
            json.dumps(job.category_tags),
            int(job.is_urgent),
            format_datetime(job.deadline),
            format_datetime(job.start_date),
            format_datetime(job.completion_date),
            job.progress,
            format_datetime(job.created_at) or now,
            format_datetime(job.updated_at) or now,
        )

    def save_job(self, job: Job) -> str:
        self._execute(
            """
            INSERT INTO jobs (
                requester_id, contractor_id, title, description, status, budget,
                category_tags, is_urgent, deadline, start_date, completion_date,
                progress, created_at, updated_at, id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._job_params(job) + (job.id,),
        )
        return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        row = self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return _row_to_job(row) if row else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(_status_value(status))
        if requester_id is not None:
            clauses.append("requester_id = ?")
            params.append(requester_id)
        if contractor_id is not None:
            clauses.append("contractor_id = ?")
            params.append(contractor_id)
        if tag is not None:
            clauses.append("EXISTS (SELECT 1 FROM json_each(jobs.category_tags) WHERE value = ?)")
            params.append(tag.strip().lower())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM jobs {where} ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            tuple(params) + (limit, offset),
        )
        return [_row_to_job(r) for r in rows]

    def update_job(self, job: Job, expected_status: str) -> bool:
        count = self._execute(
            """
            UPDATE jobs SET
                requester_id = ?, contractor_id = ?, title = ?, description = ?,
                status = ?, budget = ?, category_tags = ?, is_urgent = ?,
                deadline = ?, start_date = ?, completion_date = ?,
                progress = ?, created_at = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            self._job_params(job) + (job.id, expected_status),
        )
        return count == 1

    def save_transition(self, transition: JobStateTransition) -> str:
        self._execute(
            """
            INSERT INTO job_state_transitions
                (id, job_id, from_status, to_status, actor_id, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transition.id,
                transition.job_id,
                transition.from_status,
                transition.to_status,
                transition.actor_id,
                transition.reason,
                format_datetime(transition.created_at or utc_now()),
            ),
        )
        return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        rows = self._fetchall(
            "SELECT * FROM job_state_transitions WHERE job_id = ? ORDER BY created_at, rowid",
            (job_id,),
        )
        return [_row_to_transition(r) for r in rows]

    # === Bids ===

    def save_bid(self, bid: Bid) -> str:
        now = format_datetime(utc_now())
        self._execute(
            """
            INSERT INTO bids (
                id, job_id, contractor_id, amount, proposal, time_estimate,
                proposed_start_date, status, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                bid.id,
                bid.job_id,
                bid.contractor_id,
                _dec(bid.amount),
                bid.proposal,
                bid.time_estimate,
                format_datetime(bid.proposed_start_date),
                bid.status,
                format_datetime(bid.created_at) or now,
                format_datetime(bid.updated_at) or now,
            ),
        )
        return bid.id

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        row = self._fetchone("SELECT * FROM bids WHERE id = ?", (bid_id,))
        return _row_to_bid(row) if row else None

    def list_bids(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[BidStatus] = None,
    ) -> List[Bid]:
        clauses: List[str] = []
        params: List[Any] = []
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if contractor_id is not None:
            clauses.append("contractor_id = ?")
            params.append(contractor_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(_status_value(status))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(f"SELECT * FROM bids {where} ORDER BY created_at, rowid", tuple(params))
        return [_row_to_bid(r) for r in rows]

    def update_bid(self, bid: Bid) -> bool:
        count = self._execute(
            """
            UPDATE bids SET
                amount = ?, proposal = ?, time_estimate = ?, proposed_start_date = ?,
                status = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                _dec(bid.amount),
                bid.proposal,
                bid.time_estimate,
                format_datetime(bid.proposed_start_date),
                bid.status,
                format_datetime(bid.updated_at or utc_now()),
                bid.id,
            ),
        )
        return count == 1

    # === Documents (shared) ===

    @staticmethod
    def _document_columns(doc: DocumentT) -> dict:
        now = format_datetime(utc_now())
        return {
            "number": doc.number,
            "title": doc.title,
            "job_id": doc.job_id,
            "requester_id": doc.requester_id,
            "contractor_id": doc.contractor_id,
            "status": doc.status,
            "subtotal": _dec(doc.subtotal),
            "tax_rate": _dec(doc.tax_rate),
            "tax_amount": _dec(doc.tax_amount),
            "discount_amount": _dec(doc.discount_amount),
            "total": _dec(doc.total),
            "notes": doc.notes,
            "terms": doc.terms,
            "sent_at": format_datetime(doc.sent_at),
            "viewed_at": format_datetime(doc.viewed_at),
            "created_at": format_datetime(doc.created_at) or now,
            "updated_at": format_datetime(doc.updated_at) or now,
        }

    @staticmethod
    def _quote_columns(quote: Quote) -> dict:
        columns = SQLiteLedgerStorage._document_columns(quote)
        columns.update(
            {
                "valid_until": format_datetime(quote.valid_until),
                "preferred_start_date": format_datetime(quote.preferred_start_date),
                "estimated_duration_days": quote.estimated_duration_days,
                "accepted_at": format_datetime(quote.accepted_at),
                "rejected_at": format_datetime(quote.rejected_at),
            }
        )
        return columns

    @staticmethod
    def _invoice_columns(invoice: Invoice) -> dict:
        columns = SQLiteLedgerStorage._document_columns(invoice)
        columns.update(
            {
                "quote_id": invoice.quote_id,
                "amount_paid": _dec(invoice.amount_paid),
                "due_date": format_datetime(invoice.due_date),
                "issued_date": format_datetime(invoice.issued_date),
                "paid_date": format_datetime(invoice.paid_date),
                "payment_method": invoice.payment_method,
                "payment_details": invoice.payment_details,
            }
        )
        return columns

    def _insert(self, table: str, record_id: str, columns: dict) -> None:
        names = ["id"] + list(columns)
        placeholders = ", ".join("?" for _ in names)
        self._execute(
            f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
            (record_id,) + tuple(columns.values()),
        )

    def _update(self, table: str, record_id: str, columns: dict) -> bool:
        assignments = ", ".join(f"{name} = ?" for name in columns)
        count = self._execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            tuple(columns.values()) + (record_id,),
        )
        return count == 1

    @staticmethod
    def _document_filters(job_id, requester_id, contractor_id, status) -> tuple:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (
            ("job_id", job_id),
            ("requester_id", requester_id),
            ("contractor_id", contractor_id),
            ("status", _status_value(status)),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, tuple(params)

    # === Quotes ===

    def save_quote(self, quote: Quote) -> str:
        quote.check_totals()
        self._insert("quotes", quote.id, self._quote_columns(quote))
        return quote.id

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        row = self._fetchone("SELECT * FROM quotes WHERE id = ?", (quote_id,))
        return _row_to_quote(row) if row else None

    def update_quote(self, quote: Quote) -> bool:
        quote.check_totals()
        return self._update("quotes", quote.id, self._quote_columns(quote))

    def delete_quote(self, quote_id: str) -> bool:
        return self._execute("DELETE FROM quotes WHERE id = ?", (quote_id,)) == 1

    def list_quotes(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Quote]:
        where, params = self._document_filters(job_id, requester_id, contractor_id, status)
        rows = self._fetchall(f"SELECT * FROM quotes {where} ORDER BY created_at, rowid", params)
        return [_row_to_quote(r) for r in rows]

    # === Invoices ===

    def save_invoice(self, invoice: Invoice) -> str:
        invoice.check_totals()
        self._insert("invoices", invoice.id, self._invoice_columns(invoice))
        return invoice.id

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        row = self._fetchone("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
        return _row_to_invoice(row) if row else None

    def get_invoice_by_quote(self, quote_id: str) -> Optional[Invoice]:
        row = self._fetchone("SELECT * FROM invoices WHERE quote_id = ?", (quote_id,))
        return _row_to_invoice(row) if row else None

    def update_invoice(self, invoice: Invoice) -> bool:
        invoice.check_totals()
        return self._update("invoices", invoice.id, self._invoice_columns(invoice))

    def delete_invoice(self, invoice_id: str) -> bool:
        return self._execute("DELETE FROM invoices WHERE id = ?", (invoice_id,)) == 1

    def list_invoices(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Invoice]:
        where, params = self._document_filters(job_id, requester_id, contractor_id, status)
        rows = self._fetchall(f"SELECT * FROM invoices {where} ORDER BY created_at, rowid", params)
        return [_row_to_invoice(r) for r in rows]

    # === Line items ===

    def save_line_item(self, item: LineItemT) -> str:
        table, parent_column, _ = _line_item_table(item)
        now = format_datetime(utc_now())
        self._execute(
            f"""
            INSERT INTO {table} (
                id, {parent_column}, description, quantity, unit_price, total,
                sort_order, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                description = excluded.description,
                quantity = excluded.quantity,
                unit_price = excluded.unit_price,
                total = excluded.total,
                sort_order = excluded.sort_order,
                updated_at = excluded.updated_at
            """,
            (
                item.id,
                item.document_id,
                item.description,
                _dec(item.quantity),
                _dec(item.unit_price),
                _dec(item.total),
                item.sort_order,
                format_datetime(item.created_at) or now,
                format_datetime(item.updated_at) or now,
            ),
        )
        return item.id

    def get_line_item(self, document: DocumentT, item_id: str) -> Optional[LineItemT]:
        table, parent_column, cls = _line_item_table(document)
        row = self._fetchone(
            f"SELECT * FROM {table} WHERE id = ? AND {parent_column} = ?",
            (item_id, document.id),
        )
        return _row_to_line_item(row, cls, parent_column) if row else None

    def list_line_items(self, document: DocumentT) -> List[LineItemT]:
        table, parent_column, cls = _line_item_table(document)
        rows = self._fetchall(
            f"SELECT * FROM {table} WHERE {parent_column} = ? ORDER BY sort_order, rowid",
            (document.id,),
        )
        return [_row_to_line_item(r, cls, parent_column) for r in rows]

    def delete_line_item(self, item: LineItemT) -> bool:
        table, _, _ = _line_item_table(item)
        return self._execute(f"DELETE FROM {table} WHERE id = ?", (item.id,)) == 1

    # === Payments ===

    def save_payment(self, payment: PaymentRecord) -> str:
        self._execute(
            """
            INSERT INTO invoice_payments
                (id, invoice_id, amount, method, details, recorded_by, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.id,
                payment.invoice_id,
                _dec(payment.amount),
                payment.method,
                payment.details,
                payment.recorded_by,
                format_datetime(payment.recorded_at or utc_now()),
            ),
        )
        return payment.id

    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        rows = self._fetchall(
            "SELECT * FROM invoice_payments WHERE invoice_id = ? ORDER BY recorded_at, rowid",
            (invoice_id,),
        )
        return [_row_to_payment(r) for r in rows]
