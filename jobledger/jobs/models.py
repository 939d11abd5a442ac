"""
Job and bid data models.

A Job is posted by a requester. Contractors submit Bids against open
jobs; exactly one bid may be awarded, which moves the job to
in_progress and assigns the winning contractor.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from jobledger.money import to_money
from jobledger.utils import ensure_utc, format_datetime

MAX_TITLE_LENGTH = 200
MAX_TAG_LENGTH = 50


class JobStatus(str, Enum):
    """Job lifecycle status."""

    DRAFT = "draft"  # Created, not yet visible to contractors
    OPEN = "open"  # Accepting bids
    IN_PROGRESS = "in_progress"  # Bid awarded, contractor assigned
    COMPLETED = "completed"  # Work confirmed done
    CANCELLED = "cancelled"  # Withdrawn before award


class BidStatus(str, Enum):
    """Bid lifecycle status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# Job state machine. Cancellation is only possible before award.
VALID_JOB_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.DRAFT: {JobStatus.OPEN, JobStatus.CANCELLED},
    JobStatus.OPEN: {JobStatus.IN_PROGRESS, JobStatus.CANCELLED},
    JobStatus.IN_PROGRESS: {JobStatus.COMPLETED},
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

# Statuses in which a contractor must be assigned
ASSIGNED_STATUSES = frozenset({JobStatus.IN_PROGRESS.value, JobStatus.COMPLETED.value})

VALID_JOB_STATUS_VALUES = frozenset(s.value for s in JobStatus)
VALID_BID_STATUS_VALUES = frozenset(s.value for s in BidStatus)


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Lower-case, strip and de-duplicate category tags, keeping first-seen order."""
    result: List[str] = []
    for tag in tags or []:
        if not isinstance(tag, str):
            raise ValueError(f"Invalid category tag: {tag!r}")
        norm = tag.strip().lower()
        if not norm:
            continue
        if len(norm) > MAX_TAG_LENGTH:
            raise ValueError(f"Category tag too long (max {MAX_TAG_LENGTH} chars)")
        if norm not in result:
            result.append(norm)
    return result


def _status_value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else status


@dataclass
class Job:
    """A repair or maintenance job posted by a requester.

    Attributes:
        id: Unique job identifier
        requester_id: Owner of the job
        title: Short description (max 200 chars)
        description: Full description of the work
        status: Current lifecycle status
        contractor_id: Assigned contractor, set only through bid award
        budget: Optional budget ceiling
        category_tags: Normalised category tags
        is_urgent: Whether the requester flagged the job as urgent
        deadline: Optional requested completion date
        start_date: When the contractor was assigned
        completion_date: When the job was confirmed complete
        progress: Percentage of the work done (0-100), reported by the contractor
    """

    id: str
    requester_id: str
    title: str
    description: str
    status: str = JobStatus.OPEN.value
    contractor_id: Optional[str] = None
    budget: Optional[Decimal] = None
    category_tags: List[str] = field(default_factory=list)
    is_urgent: bool = False
    deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    progress: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Job ID cannot be empty")
        if not self.requester_id:
            raise ValueError("Requester ID cannot be empty")
        if not self.title or not self.title.strip():
            raise ValueError("Title cannot be empty")
        if len(self.title) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title too long (max {MAX_TITLE_LENGTH} chars)")
        if not self.description or not self.description.strip():
            raise ValueError("Description cannot be empty")

        self.status = _status_value(self.status)
        if self.status not in VALID_JOB_STATUS_VALUES:
            raise ValueError(f"Invalid status: {self.status}")

        if self.budget is not None:
            self.budget = to_money(self.budget)
            if self.budget <= 0:
                raise ValueError("Budget must be positive")

        self.category_tags = normalize_tags(self.category_tags)
        self.deadline = ensure_utc(self.deadline)
        self.start_date = ensure_utc(self.start_date)
        self.completion_date = ensure_utc(self.completion_date)
        if isinstance(self.progress, bool) or not isinstance(self.progress, int):
            raise ValueError(f"Invalid progress: {self.progress!r}")
        if not 0 <= self.progress <= 100:
            raise ValueError("Progress must be between 0 and 100")
        self.check_assignment()

    def check_assignment(self) -> None:
        """Contractor is assigned iff the job is in_progress or completed."""
        assigned = self.contractor_id is not None
        if assigned != (self.status in ASSIGNED_STATUSES):
            raise ValueError(
                f"Job in status '{self.status}' "
                f"{'cannot have' if assigned else 'requires'} an assigned contractor"
            )

    def can_transition_to(self, new_status: Union[str, JobStatus]) -> bool:
        """Check if the job can move to the given status."""
        current = JobStatus(self.status)
        target = JobStatus(_status_value(new_status))
        return target in VALID_JOB_TRANSITIONS.get(current, set())

    def transition_to(self, new_status: Union[str, JobStatus], now: datetime) -> None:
        """Move to a new status, validating the state machine and the assignment invariant."""
        target = _status_value(new_status)
        if not self.can_transition_to(target):
            raise ValueError(f"Cannot transition job from '{self.status}' to '{target}'")
        if target == JobStatus.IN_PROGRESS.value:
            raise ValueError("Jobs move to in_progress only through assign()")
        self.status = target
        if target == JobStatus.COMPLETED.value:
            self.completion_date = now
            self.progress = 100
        self.updated_at = now
        self.check_assignment()

    def assign(self, contractor_id: str, now: datetime) -> None:
        """Award the job to a contractor."""
        if not contractor_id:
            raise ValueError("Contractor ID cannot be empty")
        if not self.can_transition_to(JobStatus.IN_PROGRESS):
            raise ValueError(f"Cannot assign a job in status '{self.status}'")
        self.status = JobStatus.IN_PROGRESS.value
        self.contractor_id = contractor_id
        self.start_date = now
        self.updated_at = now
        self.check_assignment()

    @property
    def is_open(self) -> bool:
        return self.status == JobStatus.OPEN.value

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "requester_id": self.requester_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "contractor_id": self.contractor_id,
            "budget": str(self.budget) if self.budget is not None else None,
            "category_tags": list(self.category_tags),
            "is_urgent": self.is_urgent,
            "deadline": format_datetime(self.deadline),
            "start_date": format_datetime(self.start_date),
            "completion_date": format_datetime(self.completion_date),
            "progress": self.progress,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }


@dataclass
class Bid:
    """A contractor's offer to do a job.

    Only the bid arbitrator changes a bid's status. Once accepted or
    rejected a bid is immutable.
    """

    id: str
    job_id: str
    contractor_id: str
    amount: Decimal
    proposal: str
    time_estimate: Optional[str] = None
    proposed_start_date: Optional[datetime] = None
    status: str = BidStatus.PENDING.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Bid ID cannot be empty")
        if not self.job_id:
            raise ValueError("Job ID cannot be empty")
        if not self.contractor_id:
            raise ValueError("Contractor ID cannot be empty")
        self.amount = to_money(self.amount)
        if self.amount <= 0:
            raise ValueError("Bid amount must be positive")
        if not self.proposal or not self.proposal.strip():
            raise ValueError("Proposal cannot be empty")
        self.status = _status_value(self.status)
        if self.status not in VALID_BID_STATUS_VALUES:
            raise ValueError(f"Invalid status: {self.status}")
        self.proposed_start_date = ensure_utc(self.proposed_start_date)

    @property
    def is_pending(self) -> bool:
        return self.status == BidStatus.PENDING.value

    @property
    def is_live(self) -> bool:
        """A bid blocks resubmission until it has been rejected."""
        return self.status != BidStatus.REJECTED.value

    def resolve(self, new_status: Union[str, BidStatus], now: datetime) -> None:
        """Settle a pending bid as accepted or rejected."""
        target = _status_value(new_status)
        if not self.is_pending:
            raise ValueError(f"Bid {self.id} is already {self.status}")
        if target not in (BidStatus.ACCEPTED.value, BidStatus.REJECTED.value):
            raise ValueError(f"Invalid bid resolution: {target}")
        self.status = target
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "contractor_id": self.contractor_id,
            "amount": str(self.amount),
            "proposal": self.proposal,
            "time_estimate": self.time_estimate,
            "proposed_start_date": format_datetime(self.proposed_start_date),
            "status": self.status,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }


@dataclass
class JobStateTransition:
    """Audit log entry for a job status change."""

    id: str
    job_id: str
    from_status: Optional[str]
    to_status: str
    actor_id: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
