"""
Bid arbitration.

Enforces the single-winner rule: for any job at most one bid is
accepted, and once one is, every sibling bid is rejected. Award is the
only path that moves a job to in_progress.

Award algorithm (accept_bid):
    1. Load the bid; it must exist and belong to the job.
    2. The bid must be pending and the job open.
    3. In one transaction: accept the bid, reject every other pending
       bid on the job, assign the contractor and move the job to
       in_progress.

The storage transaction holds the write lock from the first read to
commit, so a second concurrent award waits, then sees the job is no
longer open and fails with InvalidStateError. The job write is also
conditional on the status read in step 2; if that ever loses,
ConcurrencyConflictError is raised. Neither failure is retried here.
"""

import dataclasses
import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, List, Optional

from jobledger.errors import (
    DuplicateBidError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from jobledger.identity import Actor
from jobledger.jobs.models import Bid, BidStatus, Job
from jobledger.jobs.service import record_transition, write_job
from jobledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from jobledger.storage.base import LedgerStorage

logger = logging.getLogger(__name__)


class BidArbitrator:
    """Owns every bid status change and the award transition of a job."""

    def __init__(
        self,
        storage: "LedgerStorage",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self._now = clock

    # === Queries ===

    def get_bid(self, bid_id: str) -> Bid:
        bid = self.storage.get_bid(bid_id)
        if bid is None:
            raise NotFoundError("Bid", bid_id)
        return bid

    def list_bids(
        self,
        job_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        status: Optional[BidStatus] = None,
    ) -> List[Bid]:
        return self.storage.list_bids(job_id=job_id, contractor_id=contractor_id, status=status)

    def get_bid_count(self, job_id: str) -> int:
        return len(self.storage.list_bids(job_id=job_id))

    def get_accepted_bid(self, job_id: str) -> Optional[Bid]:
        accepted = self.storage.list_bids(job_id=job_id, status=BidStatus.ACCEPTED)
        return accepted[0] if accepted else None

    # === Mutations ===

    def submit_bid(
        self,
        actor: Actor,
        job_id: str,
        amount: Decimal,
        proposal: str,
        time_estimate: Optional[str] = None,
        proposed_start_date: Optional[datetime] = None,
    ) -> Bid:
        """Create a pending bid on an open job.

        A contractor may hold one live bid per job. To bid again the
        prior bid must first be withdrawn (which rejects it).

        Raises:
            UnauthorizedError: If the actor is not a contractor
            NotFoundError: If the job does not exist
            InvalidStateError: If the job is not open
            DuplicateBidError: If the contractor already has a live bid
            InvalidInputError: If amount or proposal are invalid
        """
        if not actor.is_contractor:
            raise UnauthorizedError("Only contractors can submit bids")

        now = self._now()
        try:
            bid = Bid(
                id=new_id(),
                job_id=job_id,
                contractor_id=actor.actor_id,
                amount=amount,
                proposal=proposal,
                time_estimate=time_estimate,
                proposed_start_date=proposed_start_date,
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        with self.storage.transaction():
            job = self._get_job(job_id)
            if job.requester_id == actor.actor_id:
                raise InvalidStateError("Cannot bid on your own job")
            if not job.is_open:
                raise InvalidStateError(f"Job {job_id} is not accepting bids (status: {job.status})")

            existing = self.storage.list_bids(job_id=job_id, contractor_id=actor.actor_id)
            if any(b.is_live for b in existing):
                raise DuplicateBidError(
                    f"Contractor {actor.actor_id} already has an active bid on job {job_id}"
                )

            self.storage.save_bid(bid)

        logger.info(f"Bid submitted: {bid.id} on job {job_id} by {actor.actor_id} ({bid.amount})")
        return bid

    def accept_bid(self, actor: Actor, job_id: str, bid_id: str) -> Bid:
        """Award the job to a bid.

        Raises:
            NotFoundError: If the bid or job is missing, or the bid is for another job
            UnauthorizedError: If the actor is not the job's requester
            InvalidStateError: If the bid is not pending or the job is not open
            ConcurrencyConflictError: If the conditional job write loses a race
        """
        with self.storage.transaction():
            bid = self.storage.get_bid(bid_id)
            if bid is None or bid.job_id != job_id:
                raise NotFoundError("Bid", bid_id, f"Bid {bid_id} not found on job {job_id}")
            job = self._get_job(job_id)
            if job.requester_id != actor.actor_id:
                raise UnauthorizedError("Only the job's requester can accept bids")
            if not bid.is_pending:
                raise InvalidStateError(f"Bid {bid_id} is not pending (status: {bid.status})")
            if not job.is_open:
                raise InvalidStateError(f"Job {job_id} is not open (status: {job.status})")

            now = self._now()
            bid.resolve(BidStatus.ACCEPTED, now)
            self.storage.update_bid(bid)

            rejected = self._reject_pending(job_id, now, exclude_bid_id=bid.id)

            from_status = job.status
            job.assign(bid.contractor_id, now)
            write_job(self.storage, job, expected_status=from_status)
            record_transition(
                self.storage,
                job.id,
                from_status,
                job.status,
                actor.actor_id,
                now,
                reason=f"bid {bid.id} accepted",
            )

        logger.info(
            f"Bid {bid.id} accepted on job {job_id}; contractor {bid.contractor_id} assigned, "
            f"{rejected} other bid(s) rejected"
        )
        return bid

    def update_bid(
        self,
        actor: Actor,
        job_id: str,
        bid_id: str,
        amount: Optional[Decimal] = None,
        proposal: Optional[str] = None,
        time_estimate: Optional[str] = None,
        proposed_start_date: Optional[datetime] = None,
    ) -> Bid:
        """Revise a pending bid. Accepted and rejected bids are immutable.

        Raises:
            UnauthorizedError: If the actor is not the bid's contractor
            InvalidStateError: If the bid is no longer pending
            InvalidInputError: If the new amount or proposal is invalid
        """
        changes = {
            "amount": amount,
            "proposal": proposal,
            "time_estimate": time_estimate,
            "proposed_start_date": proposed_start_date,
        }
        changes = {k: v for k, v in changes.items() if v is not None}

        with self.storage.transaction():
            bid = self._get_job_bid(job_id, bid_id)
            if bid.contractor_id != actor.actor_id:
                raise UnauthorizedError("Only the bid's contractor can revise it")
            if not bid.is_pending:
                raise InvalidStateError(f"Bid {bid_id} is not pending (status: {bid.status})")
            try:
                bid = dataclasses.replace(bid, updated_at=self._now(), **changes)
            except ValueError as e:
                raise InvalidInputError(str(e)) from e
            self.storage.update_bid(bid)

        logger.info(f"Bid {bid_id} revised by {actor.actor_id}: {sorted(changes)}")
        return bid

    def reject_bid(self, actor: Actor, job_id: str, bid_id: str) -> Bid:
        """Reject a pending bid. The job is unaffected."""
        with self.storage.transaction():
            bid = self._get_job_bid(job_id, bid_id)
            job = self._get_job(job_id)
            if job.requester_id != actor.actor_id:
                raise UnauthorizedError("Only the job's requester can reject bids")
            return self._reject(bid)

    def withdraw_bid(self, actor: Actor, job_id: str, bid_id: str) -> Bid:
        """Contractor-initiated withdrawal; modelled as rejection."""
        with self.storage.transaction():
            bid = self._get_job_bid(job_id, bid_id)
            if bid.contractor_id != actor.actor_id:
                raise UnauthorizedError("Only the bid's contractor can withdraw it")
            return self._reject(bid)

    def reject_pending_bids(self, job_id: str) -> int:
        """Reject every pending bid on a job. Used when a job is cancelled."""
        with self.storage.transaction():
            return self._reject_pending(job_id, self._now())

    # === Internals ===

    def _get_job(self, job_id: str) -> Job:
        job = self.storage.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def _get_job_bid(self, job_id: str, bid_id: str) -> Bid:
        bid = self.storage.get_bid(bid_id)
        if bid is None or bid.job_id != job_id:
            raise NotFoundError("Bid", bid_id, f"Bid {bid_id} not found on job {job_id}")
        return bid

    def _reject(self, bid: Bid) -> Bid:
        if not bid.is_pending:
            raise InvalidStateError(f"Bid {bid.id} is not pending (status: {bid.status})")
        bid.resolve(BidStatus.REJECTED, self._now())
        self.storage.update_bid(bid)
        logger.info(f"Bid {bid.id} rejected on job {bid.job_id}")
        return bid

    def _reject_pending(
        self,
        job_id: str,
        now: datetime,
        exclude_bid_id: Optional[str] = None,
    ) -> int:
        count = 0
        for other in self.storage.list_bids(job_id=job_id, status=BidStatus.PENDING):
            if other.id == exclude_bid_id:
                continue
            other.resolve(BidStatus.REJECTED, now)
            self.storage.update_bid(other)
            count += 1
        return count
