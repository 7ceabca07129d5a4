"""Customer debt reconciliation.

This module aggregates sales from the revenue service ledger, stored
bank and cash payments and configured starting debts into per-customer
debt summaries.

Features:
- Cutoff-aware filtering of sales and payments
- Exact decimal debt arithmetic
- Change-detection writes that skip unchanged customers
- Progress milestones for background runs
- Payment status colours by days since the last payment
"""

from .models import (
    CASH_SOURCE,
    CustomerDebtSummary,
    PaymentRecord,
    ProgressCallback,
    ReconciliationResult,
    ReconciliationStep,
    StartingDebt,
    WriteResult,
)
from .reconciler import Reconciler
from .writer import ChangeDetectionWriter, COMPARED_FIELDS, has_changed
from .service import ReconciliationService
from .status import PaymentStatus, days_since_last_payment, payment_status

__all__ = [
    # Models
    "CASH_SOURCE",
    "CustomerDebtSummary",
    "PaymentRecord",
    "ProgressCallback",
    "ReconciliationResult",
    "ReconciliationStep",
    "StartingDebt",
    "WriteResult",
    # Engine
    "Reconciler",
    "ChangeDetectionWriter",
    "COMPARED_FIELDS",
    "has_changed",
    "ReconciliationService",
    # Payment status
    "PaymentStatus",
    "days_since_last_payment",
    "payment_status",
]
