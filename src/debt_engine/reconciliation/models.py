"""Models for customer debt reconciliation."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from pydantic import BaseModel, Field

ZERO = Decimal("0.00")

# Source tag for cash payments entered by hand; every other source is a bank channel
CASH_SOURCE = "manual-cash"
UNKNOWN_CUSTOMER = "Unknown"


class ReconciliationStep(str, enum.Enum):
    """Progress milestones of one reconciliation run."""
    QUEUED = "Queued"
    STARTING = "Starting"
    FETCHING_LEDGER = "Fetching ledger documents"
    FETCHING_PAYMENTS = "Fetching payments"
    FETCHING_STARTING_DEBTS = "Fetching starting debts"
    AGGREGATING = "Aggregating"
    WRITING = "Writing summaries"
    COMPLETED = "Completed"

    @property
    def percent(self) -> int:
        return _STEP_PERCENT[self]


_STEP_PERCENT = {
    ReconciliationStep.QUEUED: 0,
    ReconciliationStep.STARTING: 5,
    ReconciliationStep.FETCHING_LEDGER: 20,
    ReconciliationStep.FETCHING_PAYMENTS: 40,
    ReconciliationStep.FETCHING_STARTING_DEBTS: 60,
    ReconciliationStep.AGGREGATING: 70,
    ReconciliationStep.WRITING: 90,
    ReconciliationStep.COMPLETED: 100,
}

ProgressCallback = Callable[[ReconciliationStep], None]


class PaymentRecord(BaseModel):
    """A stored payment as seen by the reconciler."""
    unique_code: Optional[str] = None
    counterparty_id: str
    counterparty_name: Optional[str] = None
    payment_date: date
    amount: Decimal
    post_balance: Optional[Decimal] = None
    source: str = "bank"
    after_window: bool = False

    class Config:
        from_attributes = True

    @property
    def is_cash(self) -> bool:
        return self.source == CASH_SOURCE


class StartingDebt(BaseModel):
    """Opening balance of a customer at the cutoff date."""
    counterparty_id: str
    name: Optional[str] = None
    debt: Decimal = ZERO
    debt_date: Optional[date] = None

    class Config:
        from_attributes = True


class CustomerDebtSummary(BaseModel):
    """Aggregated debt position of one customer."""
    counterparty_id: str
    counterparty_name: str = UNKNOWN_CUSTOMER
    total_sales: Decimal = ZERO
    sale_count: int = 0
    last_sale_date: Optional[date] = None
    total_payments: Decimal = ZERO
    payment_count: int = 0
    last_payment_date: Optional[date] = None
    total_cash_payments: Decimal = ZERO
    cash_payment_count: int = 0
    starting_debt: Decimal = ZERO
    starting_debt_date: Optional[date] = None
    current_debt: Decimal = ZERO
    last_updated: Optional[datetime] = None
    update_source: Optional[str] = None

    class Config:
        from_attributes = True


class WriteResult(BaseModel):
    """Outcome of a change-detection write pass."""
    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0


class ReconciliationResult(BaseModel):
    """Outcome of a full reconciliation run."""
    total_customers: int = 0
    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    sale_document_count: int = Field(default=0, description="Ledger documents considered")
    payment_record_count: int = Field(default=0, description="Payment records considered")
