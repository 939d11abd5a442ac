"""
Financial document builder.

Creates quotes and invoices, edits their line items, drives their
status machines and records invoice payments. Every mutation that can
change a line item, the discount or the tax rate recomputes the parent
document's aggregates through ``compute_totals`` inside the same
transaction, so the stored totals always match the stored line items.

Time-based statuses (quote ``expired``, invoice ``overdue``) are applied
lazily: whenever a document is read or transitioned, an outstanding
document past its deadline is moved first, in its own transaction, and
the requested operation then runs against the updated status.
"""

import dataclasses
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Mapping, Optional, Tuple, Union

from jobledger.config import LedgerConfig, get_config
from jobledger.documents.models import (
    INVOICE_PAYABLE,
    VALID_INVOICE_TRANSITIONS,
    VALID_QUOTE_TRANSITIONS,
    DocumentType,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    PaymentMethod,
    PaymentRecord,
    Quote,
    QuoteLineItem,
    QuoteStatus,
)
from jobledger.documents.totals import DocumentTotals, compute_totals
from jobledger.errors import (
    InvalidInputError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    OverPaymentError,
    UnauthorizedError,
)
from jobledger.identity import Actor
from jobledger.jobs.models import Job, JobStatus
from jobledger.money import to_money, to_rate
from jobledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from jobledger.storage.base import DocumentT, LedgerStorage, LineItemT

logger = logging.getLogger(__name__)

# Who may request each target status. None means either party.
_REQUESTER_ONLY = frozenset({"viewed", "accepted", "rejected"})
_CONTRACTOR_ONLY = frozenset({"sent"})

# Statuses reached by the clock rather than by a party
_TIME_DRIVEN = frozenset({QuoteStatus.EXPIRED.value, InvoiceStatus.OVERDUE.value})


def _coerce_type(document_type: Union[str, DocumentType]) -> DocumentType:
    try:
        return DocumentType(document_type)
    except ValueError:
        raise InvalidInputError(f"Unknown document type: {document_type!r}")


class DocumentBuilder:
    """Quote and invoice construction, editing and status changes."""

    def __init__(
        self,
        storage: "LedgerStorage",
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.config = config or get_config()
        self._now = clock

    # === Queries ===

    def get_quote(self, quote_id: str) -> Quote:
        return self._refresh(self._load(DocumentType.QUOTE, quote_id))

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self._refresh(self._load(DocumentType.INVOICE, invoice_id))

    def get_document(self, document_type: Union[str, DocumentType], document_id: str) -> "DocumentT":
        return self._refresh(self._load(_coerce_type(document_type), document_id))

    def get_line_items(
        self, document_type: Union[str, DocumentType], document_id: str
    ) -> List["LineItemT"]:
        document = self._load(_coerce_type(document_type), document_id)
        return self.storage.list_line_items(document)

    def list_quotes(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[Union[str, QuoteStatus]] = None,
    ) -> List[Quote]:
        quotes = self.storage.list_quotes(
            job_id=job_id, requester_id=requester_id, contractor_id=contractor_id
        )
        return self._refresh_and_filter(quotes, status)

    def list_invoices(
        self,
        job_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[Union[str, InvoiceStatus]] = None,
    ) -> List[Invoice]:
        invoices = self.storage.list_invoices(
            job_id=job_id, requester_id=requester_id, contractor_id=contractor_id
        )
        return self._refresh_and_filter(invoices, status)

    def list_payments(self, invoice_id: str) -> List[PaymentRecord]:
        self._load(DocumentType.INVOICE, invoice_id)
        return self.storage.list_payments(invoice_id)

    # === Creation ===

    def create_quote(
        self,
        actor: Actor,
        job_id: str,
        title: Optional[str] = None,
        line_items: Optional[Iterable[Mapping[str, Any]]] = None,
        tax_rate: Optional[Decimal] = None,
        discount_amount: Decimal = Decimal("0"),
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        valid_until: Optional[datetime] = None,
        preferred_start_date: Optional[datetime] = None,
        estimated_duration_days: Optional[int] = None,
    ) -> Quote:
        """Create a draft quote for an awarded job.

        The quote is tied to the job's requester and assigned contractor.
        ``line_items`` are mappings with ``description``, ``quantity``,
        ``unit_price`` and optionally ``sort_order``; they are added and
        the totals derived before the transaction commits.

        Raises:
            NotFoundError: If the job does not exist
            UnauthorizedError: If the actor is not a party to the job
            InvalidStateError: If the job has not been awarded, or the
                discount exceeds the subtotal
            InvalidInputError: If any field or line item is invalid
        """
        items, discount = self._check_new_items(line_items, discount_amount)

        now = self._now()
        with self.storage.transaction():
            job = self._load_awarded_job(actor, job_id, "quotes")

            try:
                quote = Quote(
                    id=new_id(),
                    number=self._next_number(self.config.quote_number_prefix, now),
                    title=title or f"Quote: {job.title}",
                    requester_id=job.requester_id,
                    contractor_id=job.contractor_id,
                    job_id=job.id,
                    tax_rate=self.config.default_tax_rate if tax_rate is None else tax_rate,
                    notes=notes,
                    terms=terms,
                    valid_until=valid_until or now + timedelta(days=self.config.quote_validity_days),
                    preferred_start_date=preferred_start_date,
                    estimated_duration_days=estimated_duration_days,
                    created_at=now,
                    updated_at=now,
                )
            except ValueError as e:
                raise InvalidInputError(str(e)) from e

            self.storage.save_quote(quote)
            self._add_items(quote, items, discount, now)

        logger.info(
            f"Quote created: {quote.number} ({quote.id}) for job {job_id}, "
            f"{len(items)} item(s), total {quote.total}"
        )
        return quote

    def create_invoice(
        self,
        actor: Actor,
        job_id: str,
        title: Optional[str] = None,
        line_items: Optional[Iterable[Mapping[str, Any]]] = None,
        tax_rate: Optional[Decimal] = None,
        discount_amount: Decimal = Decimal("0"),
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> Invoice:
        """Create a draft invoice for an awarded job without a quote.

        Raises:
            NotFoundError: If the job does not exist
            UnauthorizedError: If the actor is not the job's assigned contractor
            InvalidStateError: If the job has not been awarded, or the
                discount exceeds the subtotal
            InvalidInputError: If any field or line item is invalid
        """
        items, discount = self._check_new_items(line_items, discount_amount)

        now = self._now()
        with self.storage.transaction():
            job = self._load_awarded_job(actor, job_id, "invoices")
            if actor.actor_id != job.contractor_id:
                raise UnauthorizedError("Only the job's assigned contractor can create invoices")

            try:
                invoice = Invoice(
                    id=new_id(),
                    number=self._next_number(self.config.invoice_number_prefix, now),
                    title=title or f"Invoice: {job.title}",
                    requester_id=job.requester_id,
                    contractor_id=job.contractor_id,
                    job_id=job.id,
                    tax_rate=self.config.default_tax_rate if tax_rate is None else tax_rate,
                    notes=notes,
                    terms=terms,
                    due_date=due_date or now + timedelta(days=self.config.invoice_due_days),
                    created_at=now,
                    updated_at=now,
                )
            except ValueError as e:
                raise InvalidInputError(str(e)) from e

            self.storage.save_invoice(invoice)
            self._add_items(invoice, items, discount, now)

        logger.info(
            f"Invoice created: {invoice.number} ({invoice.id}) for job {job_id}, "
            f"{len(items)} item(s), total {invoice.total}"
        )
        return invoice

    def convert_quote_to_invoice(
        self,
        actor: Actor,
        quote_id: str,
        due_date: Optional[datetime] = None,
        title: Optional[str] = None,
    ) -> Invoice:
        """Create a draft invoice from an accepted quote.

        Monetary fields are copied by value and every quote line item is
        copied into a new invoice line item, so later edits to the quote
        never reach the invoice.

        Raises:
            UnauthorizedError: If the actor is not the quote's contractor
            InvalidStateError: If the quote is not accepted or already invoiced
        """
        self.get_quote(quote_id)  # lazy expiry

        now = self._now()
        with self.storage.transaction():
            quote = self._load(DocumentType.QUOTE, quote_id)
            if actor.actor_id != quote.contractor_id:
                raise UnauthorizedError("Only the quote's contractor can convert it to an invoice")
            if quote.status != QuoteStatus.ACCEPTED.value:
                raise InvalidStateError(
                    f"Only accepted quotes can be invoiced; quote {quote_id} is {quote.status}"
                )
            if self.storage.get_invoice_by_quote(quote_id) is not None:
                raise InvalidStateError(f"Quote {quote_id} has already been invoiced")

            try:
                invoice = Invoice(
                    id=new_id(),
                    number=self._next_number(self.config.invoice_number_prefix, now),
                    title=title or quote.title,
                    requester_id=quote.requester_id,
                    contractor_id=quote.contractor_id,
                    job_id=quote.job_id,
                    tax_rate=quote.tax_rate,
                    discount_amount=quote.discount_amount,
                    subtotal=quote.subtotal,
                    tax_amount=quote.tax_amount,
                    total=quote.total,
                    notes=quote.notes,
                    terms=quote.terms,
                    quote_id=quote.id,
                    due_date=due_date or now + timedelta(days=self.config.invoice_due_days),
                    created_at=now,
                    updated_at=now,
                )
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
            self.storage.save_invoice(invoice)

            for item in self.storage.list_line_items(quote):
                self.storage.save_line_item(
                    InvoiceLineItem(
                        id=new_id(),
                        document_id=invoice.id,
                        description=item.description,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        sort_order=item.sort_order,
                        created_at=now,
                        updated_at=now,
                    )
                )

        logger.info(f"Quote {quote.number} converted to invoice {invoice.number} ({invoice.id})")
        return invoice

    def delete_document(
        self, actor: Actor, document_type: Union[str, DocumentType], document_id: str
    ) -> None:
        """Delete a draft document together with its line items."""
        document_type = _coerce_type(document_type)
        with self.storage.transaction():
            document = self._load_editable(actor, document_type, document_id)
            if document_type == DocumentType.QUOTE:
                self.storage.delete_quote(document.id)
            else:
                self.storage.delete_invoice(document.id)
        logger.info(f"Deleted draft {document_type.value} {document.number} ({document.id})")

    # === Line items and pricing ===

    def add_line_item(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        description: str,
        quantity: Decimal,
        unit_price: Decimal,
        sort_order: Optional[int] = None,
    ) -> "LineItemT":
        """Append a line item to a draft document and recompute its totals.

        Without ``sort_order`` the item goes after the existing ones.
        """
        with self.storage.transaction():
            document = self._load_editable(actor, _coerce_type(document_type), document_id)
            existing = self.storage.list_line_items(document)
            if len(existing) >= self.config.max_line_items:
                raise InvalidInputError(f"Too many line items (max {self.config.max_line_items})")
            if sort_order is None:
                sort_order = max((i.sort_order for i in existing), default=-1) + 1

            item = self._build_item(
                document,
                {
                    "description": description,
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "sort_order": sort_order,
                },
                sort_order,
                self._now(),
            )
            self.storage.save_line_item(item)
            self._recompute(document)
        return item

    def update_line_item(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        item_id: str,
        description: Optional[str] = None,
        quantity: Optional[Decimal] = None,
        unit_price: Optional[Decimal] = None,
        sort_order: Optional[int] = None,
    ) -> "LineItemT":
        with self.storage.transaction():
            document = self._load_editable(actor, _coerce_type(document_type), document_id)
            item = self._load_item(document, item_id)

            changes = {
                "description": description,
                "quantity": quantity,
                "unit_price": unit_price,
                "sort_order": sort_order,
            }
            changes = {k: v for k, v in changes.items() if v is not None}
            try:
                item = dataclasses.replace(item, updated_at=self._now(), **changes)
            except ValueError as e:
                raise InvalidInputError(str(e)) from e

            self.storage.save_line_item(item)
            self._recompute(document)
        return item

    def remove_line_item(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        item_id: str,
    ) -> DocumentTotals:
        """Delete a line item and return the document's new totals.

        Raises:
            NotFoundError: If the item does not belong to the document
            InvalidStateError: If the remaining subtotal falls below the discount
        """
        with self.storage.transaction():
            document = self._load_editable(actor, _coerce_type(document_type), document_id)
            item = self._load_item(document, item_id)
            self.storage.delete_line_item(item)
            return self._recompute(document)

    def set_discount(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        discount_amount: Decimal,
    ) -> "DocumentT":
        try:
            discount = to_money(discount_amount)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if discount < 0:
            raise InvalidInputError("Discount cannot be negative")

        with self.storage.transaction():
            document = self._load_editable(actor, _coerce_type(document_type), document_id)
            document.discount_amount = discount
            self._recompute(document)
        return document

    def set_tax_rate(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        tax_rate: Decimal,
    ) -> "DocumentT":
        try:
            rate = to_rate(tax_rate)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if rate < 0 or rate > 1:
            raise InvalidInputError("Tax rate must be between 0 and 1")

        with self.storage.transaction():
            document = self._load_editable(actor, _coerce_type(document_type), document_id)
            document.tax_rate = rate
            self._recompute(document)
        return document

    def recompute_totals(
        self, document_type: Union[str, DocumentType], document_id: str
    ) -> DocumentTotals:
        """Derive and persist a document's aggregates from its line items.

        Idempotent: running it again without an intervening mutation
        yields the same totals.
        """
        with self.storage.transaction():
            document = self._load(_coerce_type(document_type), document_id)
            return self._recompute(document)

    # === Status machine ===

    def transition(
        self,
        actor: Actor,
        document_type: Union[str, DocumentType],
        document_id: str,
        target_status: Union[str, QuoteStatus, InvoiceStatus],
    ) -> "DocumentT":
        """Move a document to ``target_status``.

        Raises:
            UnauthorizedError: If the actor may not request this status
            InvalidTransitionError: If the move is not in the state machine,
                or a time-driven status is requested before its deadline
            InvalidStateError: If a precondition fails (sending an empty
                document, marking an invoice paid before full payment)
        """
        document_type = _coerce_type(document_type)
        self.get_document(document_type, document_id)  # lazy expiry / overdue

        target = getattr(target_status, "value", target_status)
        with self.storage.transaction():
            document = self._load(document_type, document_id)
            self._check_party(actor, document)
            current = document.status

            if target in _TIME_DRIVEN and current == target:
                return document

            table = (
                VALID_QUOTE_TRANSITIONS
                if document_type == DocumentType.QUOTE
                else VALID_INVOICE_TRANSITIONS
            )
            allowed = {s.value for s in table.get(document._status_enum(current), set())}
            if target not in allowed:
                raise InvalidTransitionError(document_type.value, current, str(target))

            if target in _REQUESTER_ONLY and actor.actor_id != document.requester_id:
                raise UnauthorizedError(f"Only the requester can mark a {document_type.value} {target}")
            if target in _CONTRACTOR_ONLY and actor.actor_id != document.contractor_id:
                raise UnauthorizedError(f"Only the contractor can mark a {document_type.value} {target}")

            now = self._now()
            self._apply_transition(document, target, now)
            document.status = target
            document.updated_at = now
            self._update(document)

        logger.info(
            f"{document_type.value.capitalize()} {document.number}: {current} -> {target} "
            f"by {actor.actor_id}"
        )
        return document

    def _apply_transition(self, document: "DocumentT", target: str, now: datetime) -> None:
        if target == "sent":
            if not self.storage.list_line_items(document) or document.total <= 0:
                raise InvalidStateError(
                    f"{document.number} needs at least one line item and a positive total to be sent"
                )
            document.sent_at = now
            if isinstance(document, Invoice) and document.issued_date is None:
                document.issued_date = now
        elif target == "viewed":
            document.viewed_at = now
        elif target == QuoteStatus.ACCEPTED.value:
            document.accepted_at = now
        elif target == QuoteStatus.REJECTED.value:
            document.rejected_at = now
        elif target == QuoteStatus.EXPIRED.value:
            if not document.is_past_validity(now):
                raise InvalidTransitionError(
                    "quote", document.status, target, "validity deadline has not passed"
                )
        elif target == InvoiceStatus.OVERDUE.value:
            if not document.is_past_due(now):
                raise InvalidTransitionError(
                    "invoice", document.status, target, "due date has not passed"
                )
        elif target == InvoiceStatus.PAID.value:
            if document.amount_paid != document.total:
                raise InvalidStateError(
                    f"Invoice {document.number} has {document.balance_due} outstanding"
                )
            document.paid_date = now

    # === Payments ===

    def record_payment(
        self,
        actor: Actor,
        invoice_id: str,
        amount: Decimal,
        method: Optional[Union[str, PaymentMethod]] = None,
        details: Optional[str] = None,
    ) -> Invoice:
        """Record a payment against an invoice.

        Reaching the invoice total moves it to paid.

        Raises:
            InvalidInputError: If amount is not positive or method is unknown
            InvalidStateError: If the invoice is not awaiting payment
            OverPaymentError: If the payment would exceed the total
        """
        try:
            amount = to_money(amount)
            method = PaymentMethod(method).value if method is not None else None
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if amount <= 0:
            raise InvalidInputError("Payment amount must be positive")

        self.get_invoice(invoice_id)  # lazy overdue

        with self.storage.transaction():
            invoice = self._load(DocumentType.INVOICE, invoice_id)
            self._check_party(actor, invoice)
            if invoice.status not in INVOICE_PAYABLE:
                raise InvalidStateError(
                    f"Invoice {invoice.number} is not awaiting payment (status: {invoice.status})"
                )

            new_paid = invoice.amount_paid + amount
            if new_paid > invoice.total:
                raise OverPaymentError(invoice.id, new_paid, invoice.total)

            now = self._now()
            invoice.amount_paid = new_paid
            if method is not None:
                invoice.payment_method = method
            if details is not None:
                invoice.payment_details = details
            if new_paid == invoice.total:
                invoice.status = InvoiceStatus.PAID.value
                invoice.paid_date = now
            invoice.updated_at = now

            self.storage.save_payment(
                PaymentRecord(
                    id=new_id(),
                    invoice_id=invoice.id,
                    amount=amount,
                    recorded_by=actor.actor_id,
                    method=method,
                    details=details,
                    recorded_at=now,
                )
            )
            self.storage.update_invoice(invoice)

        logger.info(
            f"Payment of {amount} recorded on invoice {invoice.number}: "
            f"{invoice.amount_paid}/{invoice.total} ({invoice.status})"
        )
        return invoice

    # === Internals ===

    @staticmethod
    def _next_number(prefix: str, now: datetime) -> str:
        return f"{prefix}-{now.strftime('%Y-%m')}-{uuid.uuid4().hex[:8].upper()}"

    def _check_new_items(
        self, line_items: Optional[Iterable[Mapping[str, Any]]], discount_amount: Decimal
    ) -> Tuple[List[Mapping[str, Any]], Decimal]:
        items = list(line_items or [])
        if len(items) > self.config.max_line_items:
            raise InvalidInputError(f"Too many line items (max {self.config.max_line_items})")
        try:
            discount = to_money(discount_amount)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        if discount < 0:
            raise InvalidInputError("Discount cannot be negative")
        return items, discount

    def _load_awarded_job(self, actor: Actor, job_id: str, what: str) -> Job:
        job = self.storage.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        if actor.actor_id not in (job.requester_id, job.contractor_id):
            raise UnauthorizedError(f"Only parties to the job can create {what}")
        if job.status != JobStatus.IN_PROGRESS.value or job.contractor_id is None:
            raise InvalidStateError(
                f"{what.capitalize()} require an awarded job; job {job_id} is {job.status}"
            )
        return job

    def _add_items(
        self,
        document: "DocumentT",
        items: List[Mapping[str, Any]],
        discount: Decimal,
        now: datetime,
    ) -> None:
        for index, spec in enumerate(items):
            self.storage.save_line_item(self._build_item(document, spec, index, now))
        # Discount is applied once there is a subtotal to take it from
        document.discount_amount = discount
        self._recompute(document)

    def _load(self, document_type: DocumentType, document_id: str) -> "DocumentT":
        if document_type == DocumentType.QUOTE:
            document = self.storage.get_quote(document_id)
        else:
            document = self.storage.get_invoice(document_id)
        if document is None:
            raise NotFoundError(document_type.value.capitalize(), document_id)
        return document

    def _load_editable(
        self, actor: Actor, document_type: DocumentType, document_id: str
    ) -> "DocumentT":
        document = self._load(document_type, document_id)
        self._check_party(actor, document)
        if not document.is_draft:
            raise InvalidStateError(
                f"{document.number} can only be edited in draft (status: {document.status})"
            )
        return document

    def _load_item(self, document: "DocumentT", item_id: str) -> "LineItemT":
        item = self.storage.get_line_item(document, item_id)
        if item is None:
            raise NotFoundError(
                "Line item", item_id, f"Line item {item_id} not found on {document.number}"
            )
        return item

    @staticmethod
    def _check_party(actor: Actor, document: "DocumentT") -> None:
        if actor.actor_id not in (document.requester_id, document.contractor_id):
            raise UnauthorizedError(
                f"Actor {actor.actor_id} is not a party to {document.document_type.value} {document.id}"
            )

    @staticmethod
    def _build_item(
        document: "DocumentT", spec: Mapping[str, Any], index: int, now: datetime
    ) -> "LineItemT":
        cls = QuoteLineItem if isinstance(document, Quote) else InvoiceLineItem
        try:
            return cls(
                id=new_id(),
                document_id=document.id,
                description=spec.get("description"),
                quantity=spec.get("quantity"),
                unit_price=spec.get("unit_price"),
                sort_order=spec.get("sort_order", index),
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise InvalidInputError(f"Line item {index}: {e}") from e

    def _recompute(self, document: "DocumentT") -> DocumentTotals:
        items = self.storage.list_line_items(document)
        totals = compute_totals(
            (item.total for item in items), document.tax_rate, document.discount_amount
        )
        document.apply_totals(totals)
        document.updated_at = self._now()
        self._update(document)
        return totals

    def _update(self, document: "DocumentT") -> None:
        if isinstance(document, Quote):
            self.storage.update_quote(document)
        else:
            self.storage.update_invoice(document)

    @staticmethod
    def _lapsed_status(document: "DocumentT", now: datetime) -> Optional[str]:
        """Status the clock moves an outstanding document to, if its deadline passed."""
        if isinstance(document, Quote):
            return QuoteStatus.EXPIRED.value if document.is_past_validity(now) else None
        return InvoiceStatus.OVERDUE.value if document.is_past_due(now) else None

    def _refresh(self, document: "DocumentT") -> "DocumentT":
        """Apply expiry or overdue if the document's deadline has passed."""
        now = self._now()
        if self._lapsed_status(document, now) is None:
            return document

        with self.storage.transaction():
            current = self._load(document.document_type, document.id)
            target = self._lapsed_status(current, now)
            if target is None:
                return current
            previous = current.status
            current.status = target
            current.updated_at = now
            self._update(current)

        logger.info(f"{current.number}: {previous} -> {target} (deadline passed)")
        return current

    def _refresh_and_filter(self, documents: list, status) -> list:
        documents = [self._refresh(d) for d in documents]
        if status is None:
            return documents
        wanted = getattr(status, "value", status)
        return [d for d in documents if d.status == wanted]
