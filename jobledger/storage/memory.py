"""In-memory ledger storage for testing and local development."""

import contextlib
import copy
import logging
import threading
from typing import Dict, List, Optional

from jobledger.documents.models import (
    Invoice,
    InvoiceLineItem,
    PaymentRecord,
    Quote,
    QuoteLineItem,
)
from jobledger.jobs.models import Bid, BidStatus, Job, JobStateTransition, JobStatus

from .base import DocumentT, LineItemT

logger = logging.getLogger(__name__)


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


class InMemoryLedgerStorage:
    """Dict-backed storage.

    A single re-entrant lock serialises every transaction and read.
    Entities are deep-copied on the way in and out, so a caller mutating
    a returned object never touches stored state. Rollback restores a
    snapshot taken when the outermost transaction opened.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._jobs: Dict[str, Job] = {}
        self._bids: Dict[str, Bid] = {}
        self._transitions: Dict[str, List[JobStateTransition]] = {}  # job_id -> list
        self._quotes: Dict[str, Quote] = {}
        self._invoices: Dict[str, Invoice] = {}
        self._quote_items: Dict[str, QuoteLineItem] = {}
        self._invoice_items: Dict[str, InvoiceLineItem] = {}
        self._payments: Dict[str, PaymentRecord] = {}

    _TABLES = (
        "_jobs",
        "_bids",
        "_transitions",
        "_quotes",
        "_invoices",
        "_quote_items",
        "_invoice_items",
        "_payments",
    )

    @contextlib.contextmanager
    def transaction(self):
        with self._lock:
            outermost = self._depth == 0
            snapshot = (
                {name: copy.deepcopy(getattr(self, name)) for name in self._TABLES}
                if outermost
                else None
            )
            self._depth += 1
            try:
                yield self
            except Exception as e:
                if outermost:
                    logger.debug(f"Transaction failed, rolling back: {e}")
                    for name, table in snapshot.items():
                        setattr(self, name, table)
                raise
            finally:
                self._depth -= 1

    # === Jobs ===

    def save_job(self, job: Job) -> str:
        with self._lock:
            self._jobs[job.id] = copy.deepcopy(job)
            self._transitions.setdefault(job.id, [])
            return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return copy.deepcopy(self._jobs.get(job_id))

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        with self._lock:
            jobs = list(reversed(list(self._jobs.values())))
            status_val = _status_value(status)
            if status_val is not None:
                jobs = [j for j in jobs if j.status == status_val]
            if requester_id is not None:
                jobs = [j for j in jobs if j.requester_id == requester_id]
            if contractor_id is not None:
                jobs = [j for j in jobs if j.contractor_id == contractor_id]
            if tag is not None:
                jobs = [j for j in jobs if tag.strip().lower() in j.category_tags]
            return copy.deepcopy(jobs[offset : offset + limit])

    def update_job(self, job: Job, expected_status: str) -> bool:
        with self._lock:
            current = self._jobs.get(job.id)
            if current is None or current.status != expected_status:
                return False
            self._jobs[job.id] = copy.deepcopy(job)
            return True

    def save_transition(self, transition: JobStateTransition) -> str:
        with self._lock:
            self._transitions.setdefault(transition.job_id, []).append(copy.deepcopy(transition))
            return transition.id

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        with self._lock:
            return copy.deepcopy(self._transitions.get(job_id, []))

    # === Bids ===

    def save_bid(self, bid: Bid) -> str:
        with self._lock:
            self._bids[bid.id] = copy.deepcopy(bid)
            return bid.id

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        with self._lock:
            return copy.deepcopy(self._bids.get(bid_id))

    def list_bids(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[BidStatus] = None,
    ) -> List[Bid]:
        with self._lock:
            bids = list(self._bids.values())
            if job_id is not None:
                bids = [b for b in bids if b.job_id == job_id]
            if contractor_id is not None:
                bids = [b for b in bids if b.contractor_id == contractor_id]
            status_val = _status_value(status)
            if status_val is not None:
                bids = [b for b in bids if b.status == status_val]
            return copy.deepcopy(bids)

    def update_bid(self, bid: Bid) -> bool:
        with self._lock:
            if bid.id not in self._bids:
                return False
            self._bids[bid.id] = copy.deepcopy(bid)
            return True

    # === Quotes ===

    def save_quote(self, quote: Quote) -> str:
        quote.check_totals()
        with self._lock:
            self._quotes[quote.id] = copy.deepcopy(quote)
            return quote.id

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        with self._lock:
            return copy.deepcopy(self._quotes.get(quote_id))

    def update_quote(self, quote: Quote) -> bool:
        quote.check_totals()
        with self._lock:
            if quote.id not in self._quotes:
                return False
            self._quotes[quote.id] = copy.deepcopy(quote)
            return True

    def delete_quote(self, quote_id: str) -> bool:
        with self._lock:
            if self._quotes.pop(quote_id, None) is None:
                return False
            self._quote_items = {
                k: v for k, v in self._quote_items.items() if v.document_id != quote_id
            }
            return True

    def list_quotes(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Quote]:
        with self._lock:
            return copy.deepcopy(
                self._filter_documents(
                    self._quotes.values(), job_id, requester_id, contractor_id, status
                )
            )

    # === Invoices ===

    def save_invoice(self, invoice: Invoice) -> str:
        invoice.check_totals()
        with self._lock:
            if invoice.quote_id and self._find_invoice_by_quote(invoice.quote_id):
                raise ValueError(f"Quote {invoice.quote_id} already has an invoice")
            self._invoices[invoice.id] = copy.deepcopy(invoice)
            return invoice.id

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._lock:
            return copy.deepcopy(self._invoices.get(invoice_id))

    def get_invoice_by_quote(self, quote_id: str) -> Optional[Invoice]:
        with self._lock:
            return copy.deepcopy(self._find_invoice_by_quote(quote_id))

    def update_invoice(self, invoice: Invoice) -> bool:
        invoice.check_totals()
        with self._lock:
            if invoice.id not in self._invoices:
                return False
            self._invoices[invoice.id] = copy.deepcopy(invoice)
            return True

    def delete_invoice(self, invoice_id: str) -> bool:
        with self._lock:
            if self._invoices.pop(invoice_id, None) is None:
                return False
            self._invoice_items = {
                k: v for k, v in self._invoice_items.items() if v.document_id != invoice_id
            }
            self._payments = {
                k: v for k, v in self._payments.items() if v.invoice_id != invoice_id
            }
            return True

    def list_invoices(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Invoice]:
        with self._lock:
            return copy.deepcopy(
                self._filter_documents(
                    self._invoices.values(), job_id, requester_id, contractor_id, status
                )
            )

    def _find_invoice_by_quote(self, quote_id: str) -> Optional[Invoice]:
        for invoice in self._invoices.values():
            if invoice.quote_id == quote_id:
                return invoice
        return None

    @staticmethod
    def _filter_documents(docs, job_id, requester_id, contractor_id, status) -> list:
        result = list(docs)
        if job_id is not None:
            result = [d for d in result if d.job_id == job_id]
        if requester_id is not None:
            result = [d for d in result if d.requester_id == requester_id]
        if contractor_id is not None:
            result = [d for d in result if d.contractor_id == contractor_id]
        status_val = _status_value(status)
        if status_val is not None:
            result = [d for d in result if d.status == status_val]
        return result

    # === Line items ===

    def _items_table(self, item_or_doc) -> Dict[str, LineItemT]:
        if isinstance(item_or_doc, (Quote, QuoteLineItem)):
            return self._quote_items
        return self._invoice_items

    def _parent_exists(self, item: LineItemT) -> bool:
        if isinstance(item, QuoteLineItem):
            return item.document_id in self._quotes
        return item.document_id in self._invoices

    def save_line_item(self, item: LineItemT) -> str:
        with self._lock:
            if not self._parent_exists(item):
                raise ValueError(f"Parent document {item.document_id} does not exist")
            self._items_table(item)[item.id] = copy.deepcopy(item)
            return item.id

    def get_line_item(self, document: DocumentT, item_id: str) -> Optional[LineItemT]:
        with self._lock:
            item = self._items_table(document).get(item_id)
            if item is None or item.document_id != document.id:
                return None
            return copy.deepcopy(item)

    def list_line_items(self, document: DocumentT) -> List[LineItemT]:
        with self._lock:
            items = [i for i in self._items_table(document).values() if i.document_id == document.id]
            items.sort(key=lambda i: i.sort_order)
            return copy.deepcopy(items)

    def delete_line_item(self, item: LineItemT) -> bool:
        with self._lock:
            return self._items_table(item).pop(item.id, None) is not None

    # === Payments ===

    def save_payment(self, payment: PaymentRecord) -> str:
        with self._lock:
            self._payments[payment.id] = copy.deepcopy(payment)
            return payment.id

    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        with self._lock:
            return copy.deepcopy([p for p in self._payments.values() if p.invoice_id == invoice_id])
