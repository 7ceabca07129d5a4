"""Runtime configuration loaded from the environment."""

from datetime import date
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Payments and sales dated on or before this day are already folded into the
# starting balances.
DEFAULT_CUTOFF_DATE = date(2025, 4, 29)


class Settings(BaseSettings):
    # Storage; falls back to DATABASE_URL / local sqlite when unset
    database_url: Optional[str] = None

    # Revenue service SOAP endpoint
    ledger_endpoint: str = "https://services.rs.ge/WayBillService/WayBillService.asmx"
    ledger_username: str = ""
    ledger_password: str = ""
    ledger_timeout_seconds: float = 120.0
    ledger_connect_timeout_seconds: float = 30.0
    ledger_chunk_days: int = 3
    ledger_max_chunk_workers: int = 8

    # Aggregation
    cutoff_date: date = DEFAULT_CUTOFF_DATE

    # Background jobs
    job_max_workers: int = 5
    job_queue_capacity: int = 25
    job_retention_minutes: int = 60

    class Config:
        env_prefix = "DEBT_ENGINE_"
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
