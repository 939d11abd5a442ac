"""Jobledger storage backends.

The core talks to persistence only through the LedgerStorage protocol.
SQLite is the durable backend; the in-memory backend serves tests and
local development.
"""

from .base import DocumentT, LedgerStorage, LineItemT
from .memory import InMemoryLedgerStorage
from .schema import SCHEMA_VERSION
from .sqlite import SQLiteLedgerStorage

__all__ = [
    "LedgerStorage",
    "LineItemT",
    "DocumentT",
    "InMemoryLedgerStorage",
    "SQLiteLedgerStorage",
    "SCHEMA_VERSION",
]
