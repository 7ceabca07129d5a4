"""Database module for debt engine persistence."""

from .models import (
    Base,
    Payment,
    InitialDebt,
    DebtSummary,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_tables,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    PaymentRepository,
    InitialDebtRepository,
    DebtSummaryRepository,
)

__all__ = [
    # Models
    "Base",
    "Payment",
    "InitialDebt",
    "DebtSummary",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_tables",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "PaymentRepository",
    "InitialDebtRepository",
    "DebtSummaryRepository",
]
