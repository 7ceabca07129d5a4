"""Payment ingestion with identity-based deduplication."""

from .importer import (
    PaymentCandidate,
    PaymentImporter,
    ImportResult,
    BackfillResult,
    SkippedRow,
    UPLOAD_TRIGGER,
)

__all__ = [
    "PaymentCandidate",
    "PaymentImporter",
    "ImportResult",
    "BackfillResult",
    "SkippedRow",
    "UPLOAD_TRIGGER",
]
