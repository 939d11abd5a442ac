"""
Totals derivation for quotes and invoices.

This is the single source of truth for every derived monetary field:
line-item totals and the document-level subtotal, tax and total. The
functions here are pure; the builder persists what they return.

Rules:
- line total = round2(quantity x unit_price)
- subtotal = sum of line totals
- tax = round2(max(subtotal - discount, 0) x tax_rate), discount applied before tax
- total = subtotal - discount + tax, never negative

round2 uses ROUND_HALF_EVEN so rounding carries no systematic bias
across many documents.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from jobledger.errors import InvalidStateError
from jobledger.money import ZERO, round2


@dataclass(frozen=True)
class DocumentTotals:
    """Derived aggregates of a financial document."""

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    """Total of a single line item."""
    return round2(quantity * unit_price)


def compute_totals(
    line_totals: Iterable[Decimal],
    tax_rate: Decimal,
    discount_amount: Decimal,
) -> DocumentTotals:
    """Derive subtotal, tax and total from line totals.

    Raises:
        InvalidStateError: If the discount exceeds the subtotal. The
            caller has to reduce the discount first.
    """
    subtotal = round2(sum(line_totals, ZERO))
    taxable = subtotal - discount_amount
    if taxable < ZERO:
        raise InvalidStateError(
            f"Discount {discount_amount} exceeds subtotal {subtotal}; reduce the discount first"
        )
    tax_amount = round2(max(taxable, ZERO) * tax_rate)
    total = round2(subtotal - discount_amount + tax_amount)
    return DocumentTotals(subtotal=subtotal, tax_amount=tax_amount, total=max(total, ZERO))
