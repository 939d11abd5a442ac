"""
Ledger storage protocol.

The core talks to persistence only through this protocol. Adapters own
all row mapping, so the services never see raw rows or column names.

Transactions:
    ``transaction()`` opens an atomic unit. It is re-entrant per thread:
    a nested call joins the outer unit, and an exception escaping the
    outermost block rolls back everything written inside it. While a
    unit is open no other writer can interleave with it, which is what
    makes read-check-write sequences (bid award) safe.
"""

from typing import ContextManager, List, Optional, Protocol, Union

from jobledger.documents.models import (
    Invoice,
    InvoiceLineItem,
    PaymentRecord,
    Quote,
    QuoteLineItem,
)
from jobledger.jobs.models import Bid, BidStatus, Job, JobStateTransition, JobStatus

LineItemT = Union[QuoteLineItem, InvoiceLineItem]
DocumentT = Union[Quote, Invoice]


class LedgerStorage(Protocol):
    """Protocol for ledger persistence backends."""

    def transaction(self) -> ContextManager["LedgerStorage"]:
        """Open (or join) an atomic unit of work."""
        ...

    # Jobs
    def save_job(self, job: Job) -> str:
        """Insert a job. Returns the job ID."""
        ...

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        ...

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """List jobs, newest first."""
        ...

    def update_job(self, job: Job, expected_status: str) -> bool:
        """Write a job only if its stored status is still ``expected_status``.

        Returns False when the job is missing or its status changed.
        """
        ...

    def save_transition(self, transition: JobStateTransition) -> str:
        """Append a job state transition to the audit log."""
        ...

    def get_transitions(self, job_id: str) -> List[JobStateTransition]:
        """Get the audit log for a job, oldest first."""
        ...

    # Bids
    def save_bid(self, bid: Bid) -> str:
        """Insert a bid. Returns the bid ID."""
        ...

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        """Get a bid by ID."""
        ...

    def list_bids(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[BidStatus] = None,
    ) -> List[Bid]:
        """List bids, oldest first."""
        ...

    def update_bid(self, bid: Bid) -> bool:
        """Update a bid. Returns True if it existed."""
        ...

    # Quotes
    def save_quote(self, quote: Quote) -> str:
        ...

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        ...

    def update_quote(self, quote: Quote) -> bool:
        """Replace a stored quote. Raises ValueError if its totals do not add up."""
        ...

    def delete_quote(self, quote_id: str) -> bool:
        """Delete a quote and, in cascade, its line items."""
        ...

    def list_quotes(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Quote]:
        ...

    # Invoices
    def save_invoice(self, invoice: Invoice) -> str:
        ...

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        ...

    def get_invoice_by_quote(self, quote_id: str) -> Optional[Invoice]:
        """Get the invoice converted from a quote, if any."""
        ...

    def update_invoice(self, invoice: Invoice) -> bool:
        """Replace a stored invoice. Raises ValueError if its totals do not add up."""
        ...

    def delete_invoice(self, invoice_id: str) -> bool:
        """Delete an invoice and, in cascade, its line items."""
        ...

    def list_invoices(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Invoice]:
        ...

    # Line items (table chosen by item type)
    def save_line_item(self, item: LineItemT) -> str:
        """Insert or replace a line item."""
        ...

    def get_line_item(self, document: DocumentT, item_id: str) -> Optional[LineItemT]:
        """Get a line item only if it belongs to ``document``."""
        ...

    def list_line_items(self, document: DocumentT) -> List[LineItemT]:
        """Line items of a document, by sort order."""
        ...

    def delete_line_item(self, item: LineItemT) -> bool:
        ...

    # Payments
    def save_payment(self, payment: PaymentRecord) -> str:
        ...

    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        """Payments recorded against an invoice, oldest first."""
        ...
