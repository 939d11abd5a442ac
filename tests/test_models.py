"""Tests for ledger entity models."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from jobledger.documents.models import (
    Invoice,
    InvoiceLineItem,
    PaymentRecord,
    Quote,
    QuoteLineItem,
)
from jobledger.documents.totals import DocumentTotals
from jobledger.identity import Actor, Role
from jobledger.jobs.models import VALID_JOB_TRANSITIONS, Bid, Job, JobStatus

NOW = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)


def make_job(**overrides) -> Job:
    fields = dict(
        id="job-1",
        requester_id="req-1",
        title="Replace water heater",
        description="40 gallon tank is leaking",
    )
    fields.update(overrides)
    return Job(**fields)


class TestActor:
    """Tests for the identity collaborator contract."""

    def test_role_from_string(self):
        actor = Actor("user-1", "contractor")
        assert actor.role is Role.CONTRACTOR
        assert actor.is_contractor and not actor.is_requester

    def test_invalid_role(self):
        with pytest.raises(ValueError, match="Invalid role"):
            Actor("user-1", "admin")

    def test_empty_id(self):
        with pytest.raises(ValueError):
            Actor.requester("  ")


class TestJob:
    """Tests for Job dataclass."""

    def test_defaults(self):
        job = make_job()
        assert job.status == "open"
        assert job.contractor_id is None
        assert job.category_tags == []

    def test_tags_are_normalised(self):
        job = make_job(category_tags=["Plumbing", " plumbing", "HVAC", ""])
        assert job.category_tags == ["plumbing", "hvac"]

    def test_budget_must_be_positive(self):
        with pytest.raises(ValueError, match="Budget"):
            make_job(budget=0)

    def test_title_too_long(self):
        with pytest.raises(ValueError, match="too long"):
            make_job(title="x" * 201)

    def test_in_progress_requires_contractor(self):
        with pytest.raises(ValueError, match="requires an assigned contractor"):
            make_job(status="in_progress")

    def test_open_job_cannot_have_contractor(self):
        with pytest.raises(ValueError, match="cannot have"):
            make_job(contractor_id="con-1")

    def test_assign(self):
        job = make_job()
        job.assign("con-1", NOW)
        assert job.status == JobStatus.IN_PROGRESS.value
        assert job.contractor_id == "con-1"
        assert job.start_date == NOW

    def test_in_progress_only_through_assign(self):
        job = make_job()
        with pytest.raises(ValueError, match="assign"):
            job.transition_to(JobStatus.IN_PROGRESS, NOW)

    def test_cannot_cancel_after_award(self):
        job = make_job()
        job.assign("con-1", NOW)
        assert not job.can_transition_to(JobStatus.CANCELLED)
        with pytest.raises(ValueError):
            job.transition_to(JobStatus.CANCELLED, NOW)

    def test_completion_sets_date(self):
        job = make_job()
        job.assign("con-1", NOW)
        job.transition_to("completed", NOW)
        assert job.completion_date == NOW
        assert job.is_terminal
        assert job.progress == 100

    @pytest.mark.parametrize("progress", [-1, 101, 50.5, True])
    def test_invalid_progress(self, progress):
        with pytest.raises(ValueError, match="rogress"):
            make_job(progress=progress)

    def test_terminal_states_have_no_exits(self):
        assert VALID_JOB_TRANSITIONS[JobStatus.COMPLETED] == set()
        assert VALID_JOB_TRANSITIONS[JobStatus.CANCELLED] == set()

    def test_to_dict(self):
        data = make_job(budget="250.5").to_dict()
        assert data["budget"] == "250.50"
        assert data["status"] == "open"


class TestBid:
    """Tests for Bid dataclass."""

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError, match="positive"):
            Bid(id="b1", job_id="j1", contractor_id="c1", amount=0, proposal="Do it")

    def test_proposal_required(self):
        with pytest.raises(ValueError, match="Proposal"):
            Bid(id="b1", job_id="j1", contractor_id="c1", amount=10, proposal=" ")

    def test_resolve_once(self):
        bid = Bid(id="b1", job_id="j1", contractor_id="c1", amount="99.90", proposal="Do it")
        bid.resolve("accepted", NOW)
        assert bid.status == "accepted"
        with pytest.raises(ValueError, match="already accepted"):
            bid.resolve("rejected", NOW)

    def test_cannot_resolve_to_pending(self):
        bid = Bid(id="b1", job_id="j1", contractor_id="c1", amount=10, proposal="Do it")
        with pytest.raises(ValueError, match="Invalid bid resolution"):
            bid.resolve("pending", NOW)


class TestLineItem:
    """Tests for line items."""

    def test_total_is_derived(self):
        item = QuoteLineItem(
            id="li-1", document_id="q-1", description="Labour", quantity=3, unit_price="49.99"
        )
        assert item.total == Decimal("149.97")
        assert item.quote_id == "q-1"

    def test_unit_price_keeps_full_precision(self):
        """Only the line total is rounded to cents."""
        item = QuoteLineItem(
            id="li-1", document_id="q-1", description="Screws", quantity=1000, unit_price="0.004"
        )
        assert item.unit_price == Decimal("0.004")
        assert item.total == Decimal("4.00")

    def test_negative_quantity(self):
        with pytest.raises(ValueError, match="Quantity"):
            InvoiceLineItem(
                id="li-1", document_id="i-1", description="Labour", quantity=-1, unit_price=10
            )

    def test_negative_unit_price(self):
        with pytest.raises(ValueError, match="Unit price"):
            QuoteLineItem(
                id="li-1", document_id="q-1", description="Labour", quantity=1, unit_price=-10
            )

    def test_description_required(self):
        with pytest.raises(ValueError, match="Description"):
            QuoteLineItem(id="li-1", document_id="q-1", description="", quantity=1, unit_price=1)


class TestDocuments:
    """Tests for Quote and Invoice headers."""

    def _quote(self, **overrides) -> Quote:
        fields = dict(
            id="q-1",
            number="QT-2025-03-ABCDEF12",
            title="Water heater",
            requester_id="req-1",
            contractor_id="con-1",
            job_id="job-1",
        )
        fields.update(overrides)
        return Quote(**fields)

    def test_defaults_to_draft(self):
        quote = self._quote()
        assert quote.is_draft
        assert quote.total == Decimal("0")

    def test_total_must_match_components(self):
        with pytest.raises(ValueError, match="does not equal"):
            self._quote(subtotal="100.00", total="120.00")

    def test_consistent_totals(self):
        quote = self._quote(
            subtotal="299.94", discount_amount="10.00", tax_amount="23.20", total="313.14"
        )
        assert quote.totals.total == Decimal("313.14")

    def test_totals_are_read_only(self):
        quote = self._quote(subtotal="100.00", total="100.00")
        with pytest.raises(AttributeError, match="apply_totals"):
            quote.total = Decimal("1.00")
        with pytest.raises(AttributeError):
            quote.subtotal = Decimal("999.00")
        assert quote.total == Decimal("100.00")

        quote.apply_totals(
            DocumentTotals(subtotal=Decimal("50.00"), tax_amount=Decimal("0"), total=Decimal("50.00"))
        )
        assert quote.totals.subtotal == Decimal("50.00")

    def test_check_totals_catches_stale_discount(self):
        quote = self._quote(subtotal="100.00", total="100.00")
        quote.discount_amount = Decimal("20.00")
        with pytest.raises(ValueError, match="does not equal"):
            quote.check_totals()

    def test_tax_rate_range(self):
        with pytest.raises(ValueError, match="Tax rate"):
            self._quote(tax_rate="1.5")

    def test_quote_rejects_invoice_status(self):
        with pytest.raises(ValueError, match="Invalid status"):
            self._quote(status="paid")

    def test_estimated_duration(self):
        with pytest.raises(ValueError, match="duration"):
            self._quote(estimated_duration_days=0)

    def _invoice(self, **overrides) -> Invoice:
        fields = dict(
            id="inv-1",
            number="INV-2025-03-ABCDEF12",
            title="Water heater",
            requester_id="req-1",
            contractor_id="con-1",
            job_id="job-1",
            subtotal="100.00",
            total="100.00",
        )
        fields.update(overrides)
        return Invoice(**fields)

    def test_amount_paid_not_above_total(self):
        with pytest.raises(ValueError, match="exceeds total"):
            self._invoice(amount_paid="100.01")

    def test_paid_requires_full_amount(self):
        with pytest.raises(ValueError, match="paid invoice"):
            self._invoice(status="paid", amount_paid="60.00")

    def test_balance_due(self):
        invoice = self._invoice(status="sent", amount_paid="60")
        assert invoice.balance_due == Decimal("40.00")
        assert not invoice.is_paid

    def test_invalid_payment_method(self):
        with pytest.raises(ValueError, match="payment method"):
            self._invoice(payment_method="barter")


class TestPaymentRecord:
    """Tests for PaymentRecord."""

    def test_amount_positive(self):
        with pytest.raises(ValueError, match="positive"):
            PaymentRecord(id="p-1", invoice_id="inv-1", amount=0, recorded_by="req-1")

    def test_method_coerced(self):
        record = PaymentRecord(
            id="p-1", invoice_id="inv-1", amount="20", recorded_by="req-1", method="cash"
        )
        assert record.method == "cash"
        assert record.amount == Decimal("20.00")
