"""Tests for the lifecycle orchestrator."""

from decimal import Decimal

import pytest

from jobledger.errors import InvalidInputError, InvalidStateError, UnauthorizedError
from jobledger.lifecycle import LineItemInput, parse_line_items

ITEMS = [
    {"description": "Labour (hours)", "quantity": 3, "unit_price": "49.99"},
    {"description": "Cartridge and seal kit", "quantity": 3, "unit_price": "49.99"},
]


class TestLineItemInput:
    """Tests for caller-supplied line item validation."""

    def test_parse_dicts_and_models(self):
        items = parse_line_items(
            [ITEMS[0], LineItemInput(description="Kit", quantity=1, unit_price=Decimal("9.99"))]
        )
        assert items[0].quantity == Decimal("3")
        assert items[1].unit_price == Decimal("9.99")

    @pytest.mark.parametrize(
        "raw",
        [
            {"description": "", "quantity": 1, "unit_price": 1},
            {"description": "Labour", "quantity": -1, "unit_price": 1},
            {"description": "Labour", "quantity": 1, "unit_price": -1},
            {"description": "Labour", "quantity": 1},
            {"description": "x" * 501, "quantity": 1, "unit_price": 1},
        ],
    )
    def test_invalid_items(self, raw):
        with pytest.raises(InvalidInputError, match="Line item 0"):
            parse_line_items([raw])


class TestAwardAndQuote:
    """Tests for the atomic award plus quote operation."""

    def test_award_and_quote(self, ledger, requester, contractor, open_job, bid, rival_bid):
        result = ledger.award_and_quote(
            requester,
            open_job.id,
            bid.id,
            line_items=ITEMS,
            tax_rate=Decimal("0.08"),
            discount_amount=Decimal("10.00"),
            notes="Parts warranty 1 year",
        )

        assert result.job.status == "in_progress"
        assert result.job.contractor_id == contractor.actor_id
        assert result.bid.status == "accepted"
        assert ledger.bids.get_bid(rival_bid.id).status == "rejected"

        assert result.quote.status == "draft"
        assert result.quote.job_id == open_job.id
        assert result.quote.notes == "Parts warranty 1 year"
        assert result.quote.total == Decimal("313.14")

    def test_quote_failure_rolls_back_award(self, ledger, requester, open_job, bid, rival_bid, storage):
        """A discount above the subtotal fails quote drafting after the bid was accepted."""
        with pytest.raises(InvalidStateError):
            ledger.award_and_quote(
                requester,
                open_job.id,
                bid.id,
                line_items=ITEMS,
                discount_amount=Decimal("1000.00"),
            )

        job = storage.get_job(open_job.id)
        assert job.status == "open"
        assert job.contractor_id is None
        assert storage.get_bid(bid.id).status == "pending"
        assert storage.get_bid(rival_bid.id).status == "pending"
        assert storage.list_quotes(job_id=open_job.id) == []
        assert [t.to_status for t in storage.get_transitions(open_job.id)] == ["open"]

        # The job can still be awarded afterwards
        result = ledger.award_and_quote(requester, open_job.id, rival_bid.id, line_items=ITEMS)
        assert result.job.contractor_id == rival_bid.contractor_id

    def test_invalid_line_item_fails_before_award(self, ledger, requester, open_job, bid, storage):
        with pytest.raises(InvalidInputError):
            ledger.award_and_quote(
                requester,
                open_job.id,
                bid.id,
                line_items=[{"description": "Labour", "quantity": "-2", "unit_price": 10}],
            )
        assert storage.get_bid(bid.id).status == "pending"

    def test_only_owner_can_award(self, ledger, outsider, open_job, bid, storage):
        with pytest.raises(UnauthorizedError):
            ledger.award_and_quote(outsider, open_job.id, bid.id, line_items=ITEMS)
        assert storage.get_job(open_job.id).status == "open"

    def test_uses_default_tax_rate(self, ledger, requester, open_job, bid):
        result = ledger.award_and_quote(requester, open_job.id, bid.id, line_items=ITEMS)
        assert result.quote.tax_rate == Decimal("0")
        assert result.quote.total == Decimal("299.94")


class TestSettlement:
    """Tests for settle_invoice and completion."""

    def test_partial_payment_not_eligible(self, ledger, requester, sent_invoice):
        result = ledger.settle_invoice(requester, sent_invoice.id, Decimal("100.00"))
        assert result.invoice.status == "sent"
        assert result.invoice.amount_paid == Decimal("100.00")
        assert result.completion_eligible is False

    def test_full_payment_makes_job_eligible(self, ledger, requester, sent_invoice):
        ledger.settle_invoice(requester, sent_invoice.id, Decimal("100.00"))
        result = ledger.settle_invoice(requester, sent_invoice.id, Decimal("213.14"), method="check")

        assert result.invoice.status == "paid"
        assert result.completion_eligible is True
        # Completion is never automatic
        assert ledger.jobs.get_job(sent_invoice.job_id).status == "in_progress"

    def test_end_to_end(self, ledger, requester, contractor, rival):
        """Post, bid, award, quote, invoice, pay and complete."""
        job = ledger.post_job(requester, "Rewire garage", "Add two outlets and a light")
        first = ledger.submit_bid(contractor, job.id, Decimal("600"), "Two days")
        ledger.submit_bid(rival, job.id, Decimal("750"), "One day")

        award = ledger.award_and_quote(
            requester,
            job.id,
            first.id,
            line_items=[
                {"description": "Electrician labour", "quantity": 8, "unit_price": "65.00"},
                {"description": "Outlets and fixture", "quantity": 1, "unit_price": "80.00"},
            ],
            tax_rate=Decimal("0.0725"),
        )
        docs = ledger.documents
        docs.transition(contractor, "quote", award.quote.id, "sent")
        docs.transition(requester, "quote", award.quote.id, "viewed")
        docs.transition(requester, "quote", award.quote.id, "accepted")

        invoice = ledger.convert_quote_to_invoice(contractor, award.quote.id)
        docs.transition(contractor, "invoice", invoice.id, "sent")
        # 600.00 + 43.50 tax
        assert invoice.total == Decimal("643.50")

        settled = ledger.settle_invoice(requester, invoice.id, invoice.total, method="credit_card")
        assert settled.completion_eligible

        done = ledger.complete_job(requester, job.id)
        assert done.status == "completed"
        history = [t.to_status for t in ledger.jobs.get_job_history(job.id)]
        assert history == ["open", "in_progress", "completed"]
