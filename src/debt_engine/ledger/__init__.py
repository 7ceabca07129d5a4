"""Revenue service ledger access.

Fetches sale and purchase waybills over SOAP, recovering from the
service's missing-seller and range-too-large faults, and normalizes the
loosely structured responses into LedgerDocument instances.
"""

from .models import (
    LedgerDirection,
    LedgerDocument,
    LineItem,
    SoapResult,
    CANCELLED_STATUSES,
    STATUS_MISSING_SELLER,
    STATUS_RANGE_TOO_LARGE,
)
from .client import LedgerClient, split_date_range
from .extraction import extract_records, choose_richer, completeness_score
from .normalize import normalize_document, normalize_documents, normalize_tin

__all__ = [
    # Models
    "LedgerDirection",
    "LedgerDocument",
    "LineItem",
    "SoapResult",
    "CANCELLED_STATUSES",
    "STATUS_MISSING_SELLER",
    "STATUS_RANGE_TOO_LARGE",
    # Client
    "LedgerClient",
    "split_date_range",
    # Parsing
    "extract_records",
    "choose_richer",
    "completeness_score",
    "normalize_document",
    "normalize_documents",
    "normalize_tin",
]
