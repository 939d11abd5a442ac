"""Typed errors raised by the jobledger core.

Every error carries a stable ``kind`` string. Transport layers map kinds
to client-facing statuses; the core itself knows nothing about them.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger operations."""

    kind = "ledger_error"


class NotFoundError(LedgerError):
    """Referenced entity is missing or not owned by the caller."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None, message: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        if message is None:
            message = f"{entity} {entity_id} not found" if entity_id else f"{entity} not found"
        super().__init__(message)


class UnauthorizedError(NotFoundError):
    """Actor is not allowed to act on the referenced entity."""

    kind = "unauthorized"

    def __init__(self, message: str):
        super().__init__("actor", None, message)


class InvalidStateError(LedgerError):
    """Operation is illegal for the entity's current status."""

    kind = "invalid_state"


class InvalidTransitionError(LedgerError):
    """Requested status change is not part of the state machine."""

    kind = "invalid_transition"

    def __init__(self, entity: str, from_status: str, to_status: str, reason: Optional[str] = None):
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot transition {entity} from '{from_status}' to '{to_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidInputError(LedgerError):
    """Malformed or out-of-range input."""

    kind = "invalid_input"


class DuplicateBidError(LedgerError):
    """Contractor already holds a live bid on the job."""

    kind = "duplicate_bid"


class OverPaymentError(LedgerError):
    """Payment would push amount_paid above the invoice total."""

    kind = "over_payment"

    def __init__(self, invoice_id: str, amount_paid, total):
        self.invoice_id = invoice_id
        self.amount_paid = amount_paid
        self.total = total
        super().__init__(
            f"Payment on invoice {invoice_id} would bring amount paid to "
            f"{amount_paid}, exceeding total {total}"
        )


class ConcurrencyConflictError(LedgerError):
    """A conditional write lost to a concurrent modification.

    Not retried by the core. Retrying an award after losing the race
    would be a bug, so the decision belongs to the caller.
    """

    kind = "concurrency_conflict"

    def __init__(
        self,
        entity: str,
        entity_id: str,
        expected_status: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_status = expected_status
        if message is None:
            message = (
                f"Concurrent modification on {entity} {entity_id}: "
                f"expected status '{expected_status}'"
            )
        super().__init__(message)
