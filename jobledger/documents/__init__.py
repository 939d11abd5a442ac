"""Quotes, invoices and the financial document builder."""

from .builder import DocumentBuilder
from .models import (
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
from .totals import DocumentTotals, compute_totals, line_total

__all__ = [
    "DocumentBuilder",
    "DocumentType",
    "Quote",
    "QuoteStatus",
    "QuoteLineItem",
    "Invoice",
    "InvoiceStatus",
    "InvoiceLineItem",
    "PaymentMethod",
    "PaymentRecord",
    "VALID_QUOTE_TRANSITIONS",
    "VALID_INVOICE_TRANSITIONS",
    "DocumentTotals",
    "compute_totals",
    "line_total",
]
