"""
Job service.

Requester-facing job operations: posting, publishing, cancelling and
completing jobs. Every status change is written to the job's audit log
inside the same transaction as the change itself.

Bid award is not here: it belongs to the BidArbitrator, which is the only
component allowed to move a job to in_progress.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, List, Optional

from jobledger.errors import (
    ConcurrencyConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from jobledger.identity import Actor
from jobledger.jobs.models import Job, JobStateTransition, JobStatus
from jobledger.utils import new_id, utc_now

if TYPE_CHECKING:
    from jobledger.storage.base import LedgerStorage

logger = logging.getLogger(__name__)


def record_transition(
    storage: "LedgerStorage",
    job_id: str,
    from_status: Optional[str],
    to_status: str,
    actor_id: str,
    now: datetime,
    reason: Optional[str] = None,
) -> JobStateTransition:
    """Append an entry to a job's audit log."""
    transition = JobStateTransition(
        id=new_id(),
        job_id=job_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        reason=reason,
        created_at=now,
    )
    storage.save_transition(transition)
    return transition


def write_job(storage: "LedgerStorage", job: Job, expected_status: str) -> None:
    """Conditionally persist a job, surfacing a lost race as ConcurrencyConflictError."""
    if not storage.update_job(job, expected_status=expected_status):
        logger.warning(
            f"Race condition detected on job {job.id}: expected status '{expected_status}'"
        )
        raise ConcurrencyConflictError("job", job.id, expected_status)


class JobService:
    """Job posting and lifecycle operations."""

    def __init__(
        self,
        storage: "LedgerStorage",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self._now = clock

    # === Queries ===

    def get_job(self, job_id: str) -> Job:
        job = self.storage.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        requester_id: Optional[str] = None,
        contractor_id: Optional[str] = None,
        tag: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        if limit <= 0 or offset < 0:
            raise InvalidInputError("limit must be positive and offset non-negative")
        return self.storage.list_jobs(
            status=status,
            requester_id=requester_id,
            contractor_id=contractor_id,
            tag=tag,
            limit=limit,
            offset=offset,
        )

    def get_job_history(self, job_id: str) -> List[JobStateTransition]:
        self.get_job(job_id)
        return self.storage.get_transitions(job_id)

    # === Mutations ===

    def post_job(
        self,
        actor: Actor,
        title: str,
        description: str,
        budget: Optional[Decimal] = None,
        category_tags: Optional[List[str]] = None,
        is_urgent: bool = False,
        deadline: Optional[datetime] = None,
        publish: bool = True,
    ) -> Job:
        """Create a job in open status, or draft when ``publish`` is False."""
        if not actor.is_requester:
            raise UnauthorizedError("Only requesters can post jobs")

        now = self._now()
        try:
            job = Job(
                id=new_id(),
                requester_id=actor.actor_id,
                title=title,
                description=description,
                status=JobStatus.OPEN if publish else JobStatus.DRAFT,
                budget=budget,
                category_tags=category_tags or [],
                is_urgent=is_urgent,
                deadline=deadline,
                created_at=now,
                updated_at=now,
            )
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

        if job.deadline is not None and job.deadline <= now:
            raise InvalidInputError("Deadline must be in the future")

        with self.storage.transaction():
            self.storage.save_job(job)
            record_transition(self.storage, job.id, None, job.status, actor.actor_id, now)

        logger.info(f"Job posted: {job.id} by {actor.actor_id} ({job.status})")
        return job

    def publish_job(self, actor: Actor, job_id: str) -> Job:
        """Move a draft job to open so contractors can bid."""
        return self._transition(actor, job_id, JobStatus.OPEN)

    def cancel_job(self, actor: Actor, job_id: str, reason: Optional[str] = None) -> Job:
        """Cancel a draft or open job.

        Pending bids are not touched here; the orchestrator rejects them
        through the arbitrator in the same transaction.
        """
        return self._transition(actor, job_id, JobStatus.CANCELLED, reason=reason)

    def update_progress(self, actor: Actor, job_id: str, progress: int) -> Job:
        """Report how much of an in-progress job is done, as a percentage.

        Raises:
            InvalidInputError: If progress is not an integer from 0 to 100
            UnauthorizedError: If the actor is not the assigned contractor
            InvalidStateError: If the job is not in progress
        """
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise InvalidInputError("Progress must be an integer between 0 and 100")

        with self.storage.transaction():
            job = self.get_job(job_id)
            if job.contractor_id is None or job.contractor_id != actor.actor_id:
                raise UnauthorizedError("Only the assigned contractor can update progress")
            if job.status != JobStatus.IN_PROGRESS.value:
                raise InvalidStateError(f"Job {job_id} is not in progress (status: {job.status})")
            job.progress = progress
            job.updated_at = self._now()
            write_job(self.storage, job, expected_status=job.status)

        logger.info(f"Job {job_id} progress: {progress}%")
        return job

    def is_completion_eligible(self, job_id: str) -> bool:
        """True when the job is in progress and one of its invoices is paid."""
        job = self.get_job(job_id)
        if job.status != JobStatus.IN_PROGRESS.value:
            return False
        return any(invoice.is_paid for invoice in self.storage.list_invoices(job_id=job_id))

    def complete_job(self, actor: Actor, job_id: str) -> Job:
        """Confirm an in-progress job as completed.

        Completion is an explicit action by either party, allowed only
        once an invoice for the job has been paid in full.
        """
        with self.storage.transaction():
            job = self.get_job(job_id)
            if actor.actor_id not in (job.requester_id, job.contractor_id):
                raise UnauthorizedError("Only the job's requester or contractor can complete it")
            if job.status == JobStatus.IN_PROGRESS.value and not self.is_completion_eligible(job_id):
                raise InvalidStateError(f"Job {job_id} has no paid invoice yet")
            return self._apply(actor, job, JobStatus.COMPLETED)

    def _transition(
        self,
        actor: Actor,
        job_id: str,
        target: JobStatus,
        reason: Optional[str] = None,
    ) -> Job:
        with self.storage.transaction():
            job = self.get_job(job_id)
            if job.requester_id != actor.actor_id:
                raise UnauthorizedError("Only the job's requester can change it")
            return self._apply(actor, job, target, reason)

    def _apply(
        self,
        actor: Actor,
        job: Job,
        target: JobStatus,
        reason: Optional[str] = None,
    ) -> Job:
        if not job.can_transition_to(target):
            raise InvalidStateError(
                f"Cannot move job {job.id} from '{job.status}' to '{target.value}'"
            )
        now = self._now()
        from_status = job.status
        job.transition_to(target, now)
        write_job(self.storage, job, expected_status=from_status)
        record_transition(self.storage, job.id, from_status, job.status, actor.actor_id, now, reason)
        logger.info(f"Job {job.id}: {from_status} -> {job.status} by {actor.actor_id}")
        return job
