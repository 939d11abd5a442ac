"""
Lifecycle orchestrator.

The facade callers use to drive a job from posting to settlement. It is
the only component that calls across bid arbitration and the document
builder in one logical operation, and it does so inside one storage
transaction so a failure part-way leaves nothing behind:

    post_job -> submit_bid -> award_and_quote -> (quote sent, accepted)
             -> convert_quote_to_invoice -> settle_invoice -> complete_job
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from jobledger.config import LedgerConfig, get_config
from jobledger.documents.builder import DocumentBuilder
from jobledger.documents.models import MAX_DESCRIPTION_LENGTH, Invoice, Quote
from jobledger.errors import InvalidInputError
from jobledger.identity import Actor
from jobledger.jobs.arbitration import BidArbitrator
from jobledger.jobs.models import Bid, Job
from jobledger.jobs.service import JobService
from jobledger.utils import utc_now

if TYPE_CHECKING:
    from jobledger.storage.base import LedgerStorage

logger = logging.getLogger(__name__)


class LineItemInput(BaseModel):
    """Caller-supplied line item. Totals are never accepted from input."""

    description: str = Field(..., min_length=1, max_length=MAX_DESCRIPTION_LENGTH)
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal = Field(..., ge=0)
    sort_order: Optional[int] = None


@dataclass
class AwardResult:
    """Outcome of award_and_quote."""

    job: Job
    bid: Bid
    quote: Quote


@dataclass
class SettlementResult:
    """Outcome of settle_invoice."""

    invoice: Invoice
    completion_eligible: bool


def parse_line_items(line_items: Iterable[Any]) -> List[LineItemInput]:
    """Validate raw line items (dicts or LineItemInput)."""
    parsed = []
    for index, item in enumerate(line_items):
        try:
            parsed.append(LineItemInput.model_validate(item))
        except ValidationError as e:
            raise InvalidInputError(f"Line item {index}: {e}") from e
    return parsed


class LifecycleOrchestrator:
    """Sequences jobs, bids and financial documents."""

    def __init__(
        self,
        storage: "LedgerStorage",
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.config = config or get_config()
        self.jobs = JobService(storage, clock=clock)
        self.bids = BidArbitrator(storage, clock=clock)
        self.documents = DocumentBuilder(storage, config=self.config, clock=clock)

    def post_job(self, actor: Actor, title: str, description: str, **kwargs) -> Job:
        return self.jobs.post_job(actor, title, description, **kwargs)

    def submit_bid(self, actor: Actor, job_id: str, amount: Decimal, proposal: str, **kwargs) -> Bid:
        return self.bids.submit_bid(actor, job_id, amount, proposal, **kwargs)

    def award_and_quote(
        self,
        actor: Actor,
        job_id: str,
        bid_id: str,
        line_items: Iterable[Any],
        title: Optional[str] = None,
        tax_rate: Optional[Decimal] = None,
        discount_amount: Decimal = Decimal("0"),
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        valid_until: Optional[datetime] = None,
    ) -> AwardResult:
        """Accept a bid and draft the quote for it as one unit.

        If drafting the quote fails, the award is rolled back with it:
        the bid stays pending and the job stays open.
        """
        items = parse_line_items(line_items)

        with self.storage.transaction():
            bid = self.bids.accept_bid(actor, job_id, bid_id)
            quote = self.documents.create_quote(
                actor,
                job_id,
                title=title,
                line_items=[item.model_dump(exclude_none=True) for item in items],
                tax_rate=tax_rate,
                discount_amount=discount_amount,
                notes=notes,
                terms=terms,
                valid_until=valid_until,
            )
            job = self.jobs.get_job(job_id)

        logger.info(f"Job {job_id} awarded to {bid.contractor_id}; quote {quote.number} drafted")
        return AwardResult(job=job, bid=bid, quote=quote)

    def convert_quote_to_invoice(self, actor: Actor, quote_id: str, **kwargs) -> Invoice:
        return self.documents.convert_quote_to_invoice(actor, quote_id, **kwargs)

    def create_invoice(
        self, actor: Actor, job_id: str, line_items: Iterable[Any], **kwargs
    ) -> Invoice:
        """Draft an invoice for an awarded job without going through a quote."""
        items = parse_line_items(line_items)
        return self.documents.create_invoice(
            actor,
            job_id,
            line_items=[item.model_dump(exclude_none=True) for item in items],
            **kwargs,
        )

    def settle_invoice(
        self,
        actor: Actor,
        invoice_id: str,
        payment_amount: Decimal,
        method: Optional[str] = None,
        details: Optional[str] = None,
    ) -> SettlementResult:
        """Record a payment and report whether the job may now be completed.

        Completion itself stays a separate caller action.
        """
        invoice = self.documents.record_payment(
            actor, invoice_id, payment_amount, method=method, details=details
        )
        eligible = invoice.is_paid and self.jobs.is_completion_eligible(invoice.job_id)
        if eligible:
            logger.info(f"Job {invoice.job_id} is eligible for completion")
        return SettlementResult(invoice=invoice, completion_eligible=eligible)

    def is_completion_eligible(self, job_id: str) -> bool:
        return self.jobs.is_completion_eligible(job_id)

    def complete_job(self, actor: Actor, job_id: str) -> Job:
        return self.jobs.complete_job(actor, job_id)

    def cancel_job(self, actor: Actor, job_id: str, reason: Optional[str] = None) -> Job:
        """Cancel a job and reject every bid still pending on it."""
        with self.storage.transaction():
            job = self.jobs.cancel_job(actor, job_id, reason=reason)
            rejected = self.bids.reject_pending_bids(job_id)
        logger.info(f"Job {job_id} cancelled; {rejected} pending bid(s) rejected")
        return job
