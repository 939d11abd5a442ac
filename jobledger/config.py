"""Configuration settings for jobledger."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

from jobledger.utils import get_jobledger_home


class LedgerConfig(BaseSettings):
    """Ledger settings loaded from environment."""

    # Storage
    db_path: Optional[Path] = None  # Falls back to ~/.jobledger/ledger.db
    busy_timeout_ms: int = 5000

    # Financial documents
    default_tax_rate: Decimal = Decimal("0")
    quote_validity_days: int = 30
    invoice_due_days: int = 30
    quote_number_prefix: str = "QT"
    invoice_number_prefix: str = "INV"
    max_line_items: int = 200

    @field_validator("default_tax_rate")
    @classmethod
    def tax_rate_in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("Tax rate must be between 0 and 1")
        return v

    @field_validator("quote_validity_days", "invoice_due_days", "max_line_items", "busy_timeout_ms")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be positive")
        return v

    def resolve_db_path(self) -> Path:
        return self.db_path or get_jobledger_home() / "ledger.db"

    class Config:
        env_prefix = "JOBLEDGER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_config() -> LedgerConfig:
    """Get cached config instance."""
    return LedgerConfig()
