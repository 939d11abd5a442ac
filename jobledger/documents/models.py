"""
Quote and invoice data models.

Quotes and invoices share one shape: a header with monetary aggregates
and a list of priced line items. Aggregates are derived, never taken
from caller input: construction rejects a header whose total does not
match its subtotal, discount and tax.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union

from jobledger.documents.totals import DocumentTotals, line_total
from jobledger.money import ZERO, to_money, to_quantity, to_rate, to_unit_price
from jobledger.utils import ensure_utc

MAX_DESCRIPTION_LENGTH = 500


class DocumentType(str, Enum):
    """Kind of financial document."""

    QUOTE = "quote"
    INVOICE = "invoice"


class QuoteStatus(str, Enum):
    """Quote lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"  # Validity deadline passed while sent or viewed


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"  # Due date passed while unpaid


class PaymentMethod(str, Enum):
    """How a payment was made. Recorded only; no funds move."""

    CASH = "cash"
    CHECK = "check"
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    VENMO = "venmo"
    OTHER = "other"


VALID_QUOTE_TRANSITIONS: Dict[QuoteStatus, set] = {
    QuoteStatus.DRAFT: {QuoteStatus.SENT},
    QuoteStatus.SENT: {
        QuoteStatus.VIEWED,
        QuoteStatus.ACCEPTED,
        QuoteStatus.REJECTED,
        QuoteStatus.EXPIRED,
    },
    QuoteStatus.VIEWED: {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED},
    QuoteStatus.ACCEPTED: set(),
    QuoteStatus.REJECTED: set(),
    QuoteStatus.EXPIRED: set(),
}

VALID_INVOICE_TRANSITIONS: Dict[InvoiceStatus, set] = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT},
    InvoiceStatus.SENT: {InvoiceStatus.VIEWED, InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.VIEWED: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID},
    InvoiceStatus.PAID: set(),
}

# Statuses in which the validity/due clock is running
QUOTE_OUTSTANDING = frozenset({QuoteStatus.SENT.value, QuoteStatus.VIEWED.value})
INVOICE_OUTSTANDING = frozenset({InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value})
INVOICE_PAYABLE = frozenset(
    {InvoiceStatus.SENT.value, InvoiceStatus.VIEWED.value, InvoiceStatus.OVERDUE.value}
)


def _status_value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else status


# Aggregates written only by construction and apply_totals()
DERIVED_FIELDS = frozenset({"subtotal", "tax_amount", "total"})


# === Line items ===


@dataclass
class LineItem:
    """A priced entry on a quote or invoice.

    ``total`` is a read-only property derived from quantity and unit
    price, so it can never be set from input.
    """

    id: str
    document_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    sort_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Line item ID cannot be empty")
        if not self.document_id:
            raise ValueError("Document ID cannot be empty")
        if not self.description or not self.description.strip():
            raise ValueError("Description cannot be empty")
        if len(self.description) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f"Description too long (max {MAX_DESCRIPTION_LENGTH} chars)")
        self.quantity = to_quantity(self.quantity)
        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative")
        self.unit_price = to_unit_price(self.unit_price)
        if self.unit_price < 0:
            raise ValueError("Unit price cannot be negative")
        if isinstance(self.sort_order, bool) or not isinstance(self.sort_order, int):
            raise ValueError(f"Invalid sort order: {self.sort_order!r}")

    @property
    def total(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)


@dataclass
class QuoteLineItem(LineItem):
    """Line item owned by a quote."""

    @property
    def quote_id(self) -> str:
        return self.document_id


@dataclass
class InvoiceLineItem(LineItem):
    """Line item owned by an invoice."""

    @property
    def invoice_id(self) -> str:
        return self.document_id


# === Documents ===


@dataclass
class FinancialDocument:
    """Fields shared by quotes and invoices.

    Attributes:
        id: Unique document identifier
        number: Human-facing document number (QT-/INV-)
        title: Document title
        requester_id: Party paying for the work
        contractor_id: Party doing the work
        job_id: Job the document belongs to
        status: Current lifecycle status
        tax_rate: Fraction between 0 and 1 (0.08 = 8%)
        discount_amount: Flat discount applied before tax
        subtotal, tax_amount, total: Derived aggregates, read-only after
            construction; change them through apply_totals()
    """

    id: str
    number: str
    title: str
    requester_id: str
    contractor_id: str
    job_id: str
    status: str = "draft"
    tax_rate: Decimal = ZERO
    discount_amount: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    total: Decimal = ZERO
    notes: Optional[str] = None
    terms: Optional[str] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    document_type = None  # Set by subclasses
    _status_enum = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Document ID cannot be empty")
        if not self.number:
            raise ValueError("Document number cannot be empty")
        if not self.title or not self.title.strip():
            raise ValueError("Title cannot be empty")
        if not self.requester_id or not self.contractor_id or not self.job_id:
            raise ValueError("Requester, contractor and job references are required")

        self.status = _status_value(self.status)
        if self.status not in {s.value for s in self._status_enum}:
            raise ValueError(f"Invalid status: {self.status}")

        self.tax_rate = to_rate(self.tax_rate)
        if self.tax_rate < 0 or self.tax_rate > 1:
            raise ValueError("Tax rate must be between 0 and 1")
        self.discount_amount = to_money(self.discount_amount)
        if self.discount_amount < 0:
            raise ValueError("Discount cannot be negative")

        self.subtotal = to_money(self.subtotal)
        self.tax_amount = to_money(self.tax_amount)
        self.total = to_money(self.total)
        self.check_totals()
        self.sent_at = ensure_utc(self.sent_at)
        self.viewed_at = ensure_utc(self.viewed_at)
        object.__setattr__(self, "_totals_locked", True)

    def __setattr__(self, name, value):
        if name in DERIVED_FIELDS and getattr(self, "_totals_locked", False):
            raise AttributeError(f"{name} is derived from the line items; use apply_totals()")
        super().__setattr__(name, value)

    def check_totals(self) -> None:
        """Raise ValueError if the aggregates do not add up."""
        if self.total < 0:
            raise ValueError("Total cannot be negative")
        if self.total != self.subtotal - self.discount_amount + self.tax_amount:
            raise ValueError(
                f"Total {self.total} does not equal subtotal {self.subtotal} "
                f"- discount {self.discount_amount} + tax {self.tax_amount}"
            )

    @property
    def totals(self) -> DocumentTotals:
        return DocumentTotals(subtotal=self.subtotal, tax_amount=self.tax_amount, total=self.total)

    def apply_totals(self, totals: DocumentTotals) -> None:
        """Store aggregates produced by compute_totals()."""
        object.__setattr__(self, "subtotal", totals.subtotal)
        object.__setattr__(self, "tax_amount", totals.tax_amount)
        object.__setattr__(self, "total", totals.total)

    @property
    def is_draft(self) -> bool:
        return self.status == "draft"


@dataclass
class Quote(FinancialDocument):
    """A contractor's priced offer for an awarded job."""

    valid_until: Optional[datetime] = None
    preferred_start_date: Optional[datetime] = None
    estimated_duration_days: Optional[int] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    document_type = DocumentType.QUOTE
    _status_enum = QuoteStatus

    def __post_init__(self):
        super().__post_init__()
        self.valid_until = ensure_utc(self.valid_until)
        self.preferred_start_date = ensure_utc(self.preferred_start_date)
        if self.estimated_duration_days is not None and self.estimated_duration_days < 1:
            raise ValueError("Estimated duration must be at least one day")

    def is_past_validity(self, now: datetime) -> bool:
        """True when the quote is outstanding and its validity deadline has passed."""
        return (
            self.status in QUOTE_OUTSTANDING
            and self.valid_until is not None
            and now > self.valid_until
        )


@dataclass
class Invoice(FinancialDocument):
    """A bill for an awarded job, optionally converted from a quote."""

    quote_id: Optional[str] = None
    amount_paid: Decimal = ZERO
    due_date: Optional[datetime] = None
    issued_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_details: Optional[str] = None

    document_type = DocumentType.INVOICE
    _status_enum = InvoiceStatus

    def __post_init__(self):
        super().__post_init__()
        self.amount_paid = to_money(self.amount_paid)
        if self.amount_paid < 0:
            raise ValueError("Amount paid cannot be negative")
        if self.amount_paid > self.total:
            raise ValueError(f"Amount paid {self.amount_paid} exceeds total {self.total}")
        if self.status == InvoiceStatus.PAID.value and self.amount_paid != self.total:
            raise ValueError("A paid invoice must have amount paid equal to total")
        if self.payment_method is not None:
            self.payment_method = _status_value(self.payment_method)
            if self.payment_method not in {m.value for m in PaymentMethod}:
                raise ValueError(f"Invalid payment method: {self.payment_method}")
        self.due_date = ensure_utc(self.due_date)
        self.issued_date = ensure_utc(self.issued_date)
        self.paid_date = ensure_utc(self.paid_date)

    @property
    def balance_due(self) -> Decimal:
        return self.total - self.amount_paid

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value

    def is_past_due(self, now: datetime) -> bool:
        """True when the invoice is outstanding and its due date has passed."""
        return (
            self.status in INVOICE_OUTSTANDING
            and self.due_date is not None
            and now > self.due_date
        )


@dataclass
class PaymentRecord:
    """A payment recorded against an invoice."""

    id: str
    invoice_id: str
    amount: Decimal
    recorded_by: str
    method: Optional[str] = None
    details: Optional[str] = None
    recorded_at: Optional[datetime] = None

    def __post_init__(self):
        self.amount = to_money(self.amount)
        if self.amount <= 0:
            raise ValueError("Payment amount must be positive")
        if self.method is not None:
            self.method = _status_value(self.method)
            if self.method not in {m.value for m in PaymentMethod}:
                raise ValueError(f"Invalid payment method: {self.method}")
