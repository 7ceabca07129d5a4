"""Customer debt engine.

Combines sales waybills from the revenue service, deduplicated bank and
cash payments and configured starting balances into per-customer debt
summaries, refreshed by background aggregation jobs.
"""

from .exceptions import (
    DebtEngineError,
    ExternalServiceError,
    ValidationError,
    DuplicateRecordError,
    JobQueueFullError,
)
from .identity import build_unique_code

__version__ = "0.1.0"

__all__ = [
    "DebtEngineError",
    "ExternalServiceError",
    "ValidationError",
    "DuplicateRecordError",
    "JobQueueFullError",
    "build_unique_code",
]
