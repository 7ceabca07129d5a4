"""Models for documents fetched from the revenue service ledger."""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Status codes returned in the SOAP payload
STATUS_OK = 0
STATUS_OK_ALT = 1
STATUS_MISSING_SELLER = -101
STATUS_RANGE_TOO_LARGE = -1064

SUCCESS_STATUSES = frozenset({STATUS_OK, STATUS_OK_ALT})

# Document statuses that mark a waybill as cancelled/deleted
CANCELLED_STATUSES = frozenset({-1, -2})


class LedgerDirection(str, enum.Enum):
    """Which side of the trade the documents are fetched for."""
    SALE = "sale"
    PURCHASE = "purchase"

    @property
    def operation(self) -> str:
        """SOAP operation serving this direction."""
        return "get_waybills" if self is LedgerDirection.SALE else "get_buyer_waybills"


@dataclass
class SoapResult:
    """Outcome of one SOAP call.

    Expected faults come back as status codes rather than exceptions so the
    client can branch on them.
    """
    status: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES


class LineItem(BaseModel):
    """A goods line on a waybill."""
    name: str
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None


class LedgerDocument(BaseModel):
    """A normalized sale or purchase waybill."""
    id: str = Field(..., description="Document id in the revenue service")
    direction: LedgerDirection
    counterparty_id: Optional[str] = Field(None, description="Normalized tax id of the other party")
    counterparty_name: Optional[str] = None
    document_date: Optional[date] = None
    gross_amount: Decimal = Field(default=Decimal("0.00"))
    status_code: Optional[int] = None
    buyer_tin: Optional[str] = None
    buyer_name: Optional[str] = None
    seller_tin: Optional[str] = None
    seller_name: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)

    class Config:
        from_attributes = True
