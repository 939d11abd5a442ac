"""Tests for job service."""

from datetime import timedelta
from decimal import Decimal

import pytest

from jobledger.errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from jobledger.jobs.models import JobStatus


class TestJobPosting:
    """Tests for job creation."""

    def test_post_job_open(self, ledger, requester, storage):
        """Test posting a job that is immediately open for bids."""
        job = ledger.post_job(
            requester,
            "Fix gutter",
            "Gutter above the porch is sagging",
            budget=Decimal("150"),
            category_tags=["Roofing", "Exterior"],
        )

        assert job.status == "open"
        assert job.requester_id == requester.actor_id
        assert job.contractor_id is None
        assert job.budget == Decimal("150.00")
        assert job.category_tags == ["roofing", "exterior"]

        saved = storage.get_job(job.id)
        assert saved is not None
        assert saved.title == "Fix gutter"
        assert saved.budget == Decimal("150.00")

        history = ledger.jobs.get_job_history(job.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == "open"

    def test_post_draft_then_publish(self, ledger, requester):
        job = ledger.post_job(requester, "Paint fence", "Two coats, white", publish=False)
        assert job.status == "draft"

        job = ledger.jobs.publish_job(requester, job.id)
        assert job.status == "open"
        assert [t.to_status for t in ledger.jobs.get_job_history(job.id)] == ["draft", "open"]

    def test_contractor_cannot_post(self, ledger, contractor):
        with pytest.raises(UnauthorizedError):
            ledger.post_job(contractor, "Anything", "Anything at all")

    def test_empty_title_rejected(self, ledger, requester):
        with pytest.raises(InvalidInputError, match="Title"):
            ledger.post_job(requester, "  ", "Description")

    def test_past_deadline_rejected(self, ledger, requester, clock):
        with pytest.raises(InvalidInputError, match="future"):
            ledger.post_job(
                requester, "Late job", "Too late", deadline=clock() - timedelta(days=1)
            )

    def test_invalid_budget_rejected(self, ledger, requester):
        with pytest.raises(InvalidInputError):
            ledger.post_job(requester, "Job", "Description", budget="lots")


class TestJobRetrieval:
    """Tests for job retrieval and listing."""

    def test_get_job_not_found(self, ledger):
        with pytest.raises(NotFoundError, match="not found"):
            ledger.jobs.get_job("nonexistent-id")

    def test_list_jobs_filters(self, ledger, requester, outsider):
        first = ledger.post_job(requester, "Job A", "A", category_tags=["plumbing"])
        second = ledger.post_job(requester, "Job B", "B", category_tags=["electrical"])
        ledger.post_job(outsider, "Job C", "C", category_tags=["plumbing"], publish=False)

        mine = ledger.jobs.list_jobs(requester_id=requester.actor_id)
        assert {j.id for j in mine} == {first.id, second.id}

        plumbing = ledger.jobs.list_jobs(tag="Plumbing")
        assert len(plumbing) == 2

        open_plumbing = ledger.jobs.list_jobs(status=JobStatus.OPEN, tag="plumbing")
        assert [j.id for j in open_plumbing] == [first.id]

    def test_list_jobs_newest_first_with_paging(self, ledger, requester, clock):
        ids = []
        for i in range(3):
            ids.append(ledger.post_job(requester, f"Job {i}", "Work").id)
            clock.advance(minutes=1)

        assert [j.id for j in ledger.jobs.list_jobs()] == list(reversed(ids))
        assert [j.id for j in ledger.jobs.list_jobs(limit=1, offset=1)] == [ids[1]]

    def test_list_jobs_bad_paging(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.jobs.list_jobs(limit=0)


class TestJobCancellation:
    """Tests for cancelling jobs."""

    def test_cancel_open_job_rejects_pending_bids(self, ledger, requester, open_job, bid, rival_bid):
        job = ledger.cancel_job(requester, open_job.id, reason="Fixed it myself")

        assert job.status == "cancelled"
        statuses = {b.status for b in ledger.bids.list_bids(job_id=open_job.id)}
        assert statuses == {"rejected"}
        assert ledger.jobs.get_job_history(open_job.id)[-1].reason == "Fixed it myself"

    def test_cancel_draft(self, ledger, requester):
        job = ledger.post_job(requester, "Draft", "Not yet", publish=False)
        assert ledger.cancel_job(requester, job.id).status == "cancelled"

    def test_only_owner_can_cancel(self, ledger, outsider, open_job, bid):
        with pytest.raises(UnauthorizedError):
            ledger.cancel_job(outsider, open_job.id)
        assert ledger.bids.get_bid(bid.id).status == "pending"

    def test_cannot_cancel_after_award(self, ledger, requester, awarded):
        with pytest.raises(InvalidStateError):
            ledger.cancel_job(requester, awarded.job.id)
        assert ledger.jobs.get_job(awarded.job.id).status == "in_progress"

    def test_cancelled_job_cannot_be_published(self, ledger, requester, open_job):
        ledger.cancel_job(requester, open_job.id)
        with pytest.raises(InvalidStateError):
            ledger.jobs.publish_job(requester, open_job.id)


class TestJobCompletion:
    """Tests for completion eligibility and completion."""

    def test_not_eligible_without_paid_invoice(self, ledger, requester, awarded):
        assert not ledger.is_completion_eligible(awarded.job.id)
        with pytest.raises(InvalidStateError, match="paid invoice"):
            ledger.complete_job(requester, awarded.job.id)

    def test_open_job_cannot_complete(self, ledger, requester, open_job):
        assert not ledger.is_completion_eligible(open_job.id)
        with pytest.raises(InvalidStateError):
            ledger.complete_job(requester, open_job.id)

    def test_complete_after_payment(self, ledger, requester, contractor, sent_invoice, clock):
        ledger.settle_invoice(requester, sent_invoice.id, sent_invoice.total)

        job = ledger.complete_job(contractor, sent_invoice.job_id)
        assert job.status == "completed"
        assert job.completion_date == clock()
        assert job.contractor_id == contractor.actor_id

    def test_outsider_cannot_complete(self, ledger, requester, outsider, sent_invoice):
        ledger.settle_invoice(requester, sent_invoice.id, sent_invoice.total)
        with pytest.raises(UnauthorizedError):
            ledger.complete_job(outsider, sent_invoice.job_id)


class TestJobProgress:
    """Tests for contractor progress reports."""

    def test_contractor_reports_progress(self, ledger, contractor, awarded, storage):
        assert awarded.job.progress == 0
        job = ledger.jobs.update_progress(contractor, awarded.job.id, 40)
        assert job.progress == 40
        assert storage.get_job(awarded.job.id).progress == 40

    def test_requester_cannot_report_progress(self, ledger, requester, awarded):
        with pytest.raises(UnauthorizedError):
            ledger.jobs.update_progress(requester, awarded.job.id, 40)

    def test_other_contractor_cannot_report_progress(self, ledger, rival, awarded):
        with pytest.raises(UnauthorizedError):
            ledger.jobs.update_progress(rival, awarded.job.id, 40)

    @pytest.mark.parametrize("progress", [-1, 101, 12.5, "50", True])
    def test_invalid_progress(self, ledger, contractor, awarded, progress):
        with pytest.raises(InvalidInputError):
            ledger.jobs.update_progress(contractor, awarded.job.id, progress)
        assert ledger.jobs.get_job(awarded.job.id).progress == 0

    def test_unknown_job(self, ledger, contractor):
        with pytest.raises(NotFoundError):
            ledger.jobs.update_progress(contractor, "no-such-job", 10)

    def test_completion_sets_full_progress(self, ledger, requester, contractor, sent_invoice):
        ledger.jobs.update_progress(contractor, sent_invoice.job_id, 90)
        ledger.settle_invoice(requester, sent_invoice.id, sent_invoice.total)
        job = ledger.complete_job(requester, sent_invoice.job_id)
        assert job.progress == 100

        with pytest.raises(InvalidStateError, match="not in progress"):
            ledger.jobs.update_progress(contractor, sent_invoice.job_id, 50)
