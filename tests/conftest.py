"""
Pytest fixtures and test configuration for jobledger tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from jobledger.config import LedgerConfig
from jobledger.identity import Actor
from jobledger.lifecycle import LifecycleOrchestrator
from jobledger.storage import InMemoryLedgerStorage, SQLiteLedgerStorage

START = datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc)

# Two lines of 3 x 49.99: subtotal 299.94
FAUCET_ITEMS = [
    {"description": "Labour (hours)", "quantity": "3", "unit_price": "49.99"},
    {"description": "Cartridge and seal kit", "quantity": 3, "unit_price": "49.99"},
]


class FakeClock:
    """Controllable clock injected into the services."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Create test configuration."""
    return LedgerConfig(
        db_path=tmp_path / "ledger.db",
        default_tax_rate=Decimal("0"),
        quote_validity_days=30,
        invoice_due_days=30,
        max_line_items=20,
    )


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path, config):
    """Every storage backend, so behaviour is checked against both."""
    if request.param == "memory":
        return InMemoryLedgerStorage()
    return SQLiteLedgerStorage(db_path=tmp_path / "ledger.db", config=config)


@pytest.fixture
def sqlite_storage(tmp_path, config):
    return SQLiteLedgerStorage(db_path=tmp_path / "ledger.db", config=config)


@pytest.fixture
def requester():
    return Actor.requester("req-alice")


@pytest.fixture
def contractor():
    return Actor.contractor("con-bob")


@pytest.fixture
def rival():
    return Actor.contractor("con-carol")


@pytest.fixture
def outsider():
    return Actor.requester("req-mallory")


@pytest.fixture
def ledger(storage, config, clock):
    """Orchestrator wired to the parametrised storage."""
    return LifecycleOrchestrator(storage, config=config, clock=clock)


@pytest.fixture
def open_job(ledger, requester):
    return ledger.post_job(
        requester,
        "Fix leaking kitchen faucet",
        "The kitchen faucet drips constantly, cartridge probably worn",
        budget=Decimal("400"),
        category_tags=["Plumbing", " kitchen "],
    )


@pytest.fixture
def bid(ledger, open_job, contractor):
    return ledger.submit_bid(contractor, open_job.id, Decimal("350"), "Replace cartridge and seals")


@pytest.fixture
def rival_bid(ledger, open_job, rival):
    return ledger.submit_bid(rival, open_job.id, Decimal("380"), "Full faucet replacement")


@pytest.fixture
def awarded(ledger, open_job, bid, requester):
    """Job awarded to ``contractor`` with a draft quote of 313.14."""
    return ledger.award_and_quote(
        requester,
        open_job.id,
        bid.id,
        line_items=FAUCET_ITEMS,
        tax_rate=Decimal("0.08"),
        discount_amount=Decimal("10.00"),
    )


@pytest.fixture
def accepted_quote(ledger, awarded, requester, contractor):
    docs = ledger.documents
    docs.transition(contractor, "quote", awarded.quote.id, "sent")
    return docs.transition(requester, "quote", awarded.quote.id, "accepted")


@pytest.fixture
def sent_invoice(ledger, accepted_quote, contractor):
    invoice = ledger.convert_quote_to_invoice(contractor, accepted_quote.id)
    return ledger.documents.transition(contractor, "invoice", invoice.id, "sent")


@pytest.fixture
def invoice_factory(ledger, requester, contractor):
    """Build a sent invoice for a fresh job from the given line items."""

    def make(line_items, tax_rate=Decimal("0"), discount_amount=Decimal("0")):
        job = ledger.post_job(requester, "Patch drywall", "Hole in the hallway wall")
        bid = ledger.submit_bid(contractor, job.id, Decimal("100"), "Patch, sand and paint")
        award = ledger.award_and_quote(
            requester,
            job.id,
            bid.id,
            line_items=line_items,
            tax_rate=tax_rate,
            discount_amount=discount_amount,
        )
        docs = ledger.documents
        docs.transition(contractor, "quote", award.quote.id, "sent")
        docs.transition(requester, "quote", award.quote.id, "accepted")
        invoice = docs.convert_quote_to_invoice(contractor, award.quote.id)
        return docs.transition(contractor, "invoice", invoice.id, "sent")

    return make
