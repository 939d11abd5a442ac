"""
Jobledger - job, bid, quote and invoice lifecycle engine.

Tracks a repair job from posting through competitive bidding, award,
quoting, invoicing and settlement.
"""

from .errors import (
    ConcurrencyConflictError,
    DuplicateBidError,
    InvalidInputError,
    InvalidStateError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    OverPaymentError,
    UnauthorizedError,
)
from .identity import Actor, Role
from .lifecycle import AwardResult, LifecycleOrchestrator, LineItemInput, SettlementResult

try:
    from importlib.metadata import version

    __version__ = version("jobledger")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "LifecycleOrchestrator",
    "LineItemInput",
    "AwardResult",
    "SettlementResult",
    "Actor",
    "Role",
    # Errors
    "LedgerError",
    "NotFoundError",
    "UnauthorizedError",
    "InvalidStateError",
    "InvalidTransitionError",
    "InvalidInputError",
    "DuplicateBidError",
    "OverPaymentError",
    "ConcurrencyConflictError",
]
