"""Database schema for jobledger SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)

Monetary columns are TEXT holding Decimal strings, never REAL.
"""

import logging
import os
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 2

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    requester_id TEXT NOT NULL,
    contractor_id TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open'
        CHECK (status IN ('draft', 'open', 'in_progress', 'completed', 'cancelled')),
    budget TEXT,
    category_tags TEXT NOT NULL DEFAULT '[]',
    is_urgent INTEGER NOT NULL DEFAULT 0,
    deadline TEXT,
    start_date TEXT,
    completion_date TEXT,
    progress INTEGER NOT NULL DEFAULT 0 CHECK (progress BETWEEN 0 AND 100),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    -- contractor assigned iff awarded
    CHECK ((contractor_id IS NOT NULL) = (status IN ('in_progress', 'completed')))
);
CREATE INDEX IF NOT EXISTS idx_jobs_requester ON jobs(requester_id);
CREATE INDEX IF NOT EXISTS idx_jobs_contractor ON jobs(contractor_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

CREATE TABLE IF NOT EXISTS job_state_transitions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
    from_status TEXT,
    to_status TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    reason TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_job_transitions_job ON job_state_transitions(job_id);

CREATE TABLE IF NOT EXISTS bids (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    contractor_id TEXT NOT NULL,
    amount TEXT NOT NULL,
    proposal TEXT NOT NULL,
    time_estimate TEXT,
    proposed_start_date TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'accepted', 'rejected')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_bids_job ON bids(job_id);
CREATE INDEX IF NOT EXISTS idx_bids_contractor ON bids(contractor_id);
-- at most one accepted bid per job
CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_one_accepted
    ON bids(job_id) WHERE status = 'accepted';

CREATE TABLE IF NOT EXISTS quotes (
    id TEXT PRIMARY KEY,
    number TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    requester_id TEXT NOT NULL,
    contractor_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    subtotal TEXT NOT NULL DEFAULT '0.00',
    tax_rate TEXT NOT NULL DEFAULT '0',
    tax_amount TEXT NOT NULL DEFAULT '0.00',
    discount_amount TEXT NOT NULL DEFAULT '0.00',
    total TEXT NOT NULL DEFAULT '0.00',
    notes TEXT,
    terms TEXT,
    valid_until TEXT,
    preferred_start_date TEXT,
    estimated_duration_days INTEGER,
    sent_at TEXT,
    viewed_at TEXT,
    accepted_at TEXT,
    rejected_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_quotes_job ON quotes(job_id);
CREATE INDEX IF NOT EXISTS idx_quotes_requester ON quotes(requester_id);
CREATE INDEX IF NOT EXISTS idx_quotes_contractor ON quotes(contractor_id);

CREATE TABLE IF NOT EXISTS quote_line_items (
    id TEXT PRIMARY KEY,
    quote_id TEXT NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    description TEXT NOT NULL,
    quantity TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    total TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_quote_line_items_quote ON quote_line_items(quote_id);

CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    number TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    job_id TEXT NOT NULL REFERENCES jobs(id),
    quote_id TEXT UNIQUE REFERENCES quotes(id),
    requester_id TEXT NOT NULL,
    contractor_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    subtotal TEXT NOT NULL DEFAULT '0.00',
    tax_rate TEXT NOT NULL DEFAULT '0',
    tax_amount TEXT NOT NULL DEFAULT '0.00',
    discount_amount TEXT NOT NULL DEFAULT '0.00',
    total TEXT NOT NULL DEFAULT '0.00',
    amount_paid TEXT NOT NULL DEFAULT '0.00',
    notes TEXT,
    terms TEXT,
    due_date TEXT,
    issued_date TEXT,
    paid_date TEXT,
    payment_method TEXT,
    payment_details TEXT,
    sent_at TEXT,
    viewed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_invoices_job ON invoices(job_id);
CREATE INDEX IF NOT EXISTS idx_invoices_requester ON invoices(requester_id);
CREATE INDEX IF NOT EXISTS idx_invoices_contractor ON invoices(contractor_id);

CREATE TABLE IF NOT EXISTS invoice_line_items (
    id TEXT PRIMARY KEY,
    invoice_id TEXT NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    description TEXT NOT NULL,
    quantity TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    total TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_invoice_line_items_invoice ON invoice_line_items(invoice_id);

CREATE TABLE IF NOT EXISTS invoice_payments (
    id TEXT PRIMARY KEY,
    invoice_id TEXT NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    amount TEXT NOT NULL,
    method TEXT,
    details TEXT,
    recorded_by TEXT NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_invoice_payments_invoice ON invoice_payments(invoice_id);
"""


def _migrate(conn: sqlite3.Connection, from_version: int) -> None:
    """Bring tables created by an older schema up to date."""
    if from_version < 2:
        columns = {r[1] for r in conn.execute("PRAGMA table_info(jobs)").fetchall()}
        if "progress" not in columns:
            conn.execute(
                "ALTER TABLE jobs ADD COLUMN progress INTEGER NOT NULL DEFAULT 0 "
                "CHECK (progress BETWEEN 0 AND 100)"
            )


def init_db(conn: sqlite3.Connection, db_path: Path) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    # CREATE TABLE IF NOT EXISTS is safe to re-run
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        _migrate(conn, row[0])
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    # Set secure file permissions (owner read/write only)
    try:
        os.chmod(db_path, 0o600)
    except OSError as e:
        logger.warning(f"Could not set secure permissions: {e}")
