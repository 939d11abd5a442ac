"""Jobs, bids and bid arbitration."""

from .arbitration import BidArbitrator
from .models import (
    VALID_JOB_TRANSITIONS,
    Bid,
    BidStatus,
    Job,
    JobStateTransition,
    JobStatus,
)
from .service import JobService

__all__ = [
    "Job",
    "JobStatus",
    "JobStateTransition",
    "VALID_JOB_TRANSITIONS",
    "Bid",
    "BidStatus",
    "JobService",
    "BidArbitrator",
]
