"""Aggregation of sales, payments and starting debts into debt summaries."""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..amounts import quantize
from ..ledger import LedgerDocument
from .models import (
    ZERO,
    UNKNOWN_CUSTOMER,
    CustomerDebtSummary,
    PaymentRecord,
    StartingDebt,
)

logger = logging.getLogger(__name__)


class _Accumulator:
    """Running totals for one customer."""

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        self.sale_name: Optional[str] = None
        self.payment_name: Optional[str] = None
        self.total_sales = ZERO
        self.sale_count = 0
        self.last_sale_date: Optional[date] = None
        self.total_payments = ZERO
        self.payment_count = 0
        self.last_payment_date: Optional[date] = None
        self.total_cash_payments = ZERO
        self.cash_payment_count = 0


def _later(current: Optional[date], candidate: Optional[date]) -> Optional[date]:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class Reconciler:
    """Computes per-customer debt from already loaded inputs.

    Sales count when dated strictly after the cutoff day, payments when
    dated on or after the following day. Anything earlier is already part
    of the starting debts.
    """

    def __init__(self, cutoff_date: date):
        """Initialize the reconciler.

        Args:
            cutoff_date: Last day already folded into the starting debts.
        """
        self.cutoff_date = cutoff_date

    @property
    def window_start(self) -> date:
        """First day whose sales and payments are aggregated."""
        return self.cutoff_date + timedelta(days=1)

    def filter_sales(self, documents: Iterable[LedgerDocument]) -> List[LedgerDocument]:
        """Keep sales dated after the cutoff that name a counterparty."""
        kept = []
        for document in documents:
            if document.document_date is None or document.document_date <= self.cutoff_date:
                continue
            if _blank(document.counterparty_id):
                continue
            kept.append(document)
        return kept

    def filter_payments(self, payments: Iterable[PaymentRecord]) -> List[PaymentRecord]:
        """Keep payments dated on or after the day following the cutoff."""
        return [
            p for p in payments
            if p.payment_date >= self.window_start and not _blank(p.counterparty_id)
        ]

    def aggregate(
        self,
        sales: Iterable[LedgerDocument],
        payments: Iterable[PaymentRecord],
        starting_debts: Iterable[StartingDebt],
        update_source: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[CustomerDebtSummary]:
        """Build one summary per customer seen in any input.

        Args:
            sales: Sale documents; filtered by the cutoff here.
            payments: Payment records; filtered by the cutoff here.
            starting_debts: Opening balances. The first entry per customer wins.
            update_source: Trigger that caused this run.
            now: Timestamp stamped on every summary.

        Returns:
            Summaries sorted by counterparty id.
        """
        now = now or datetime.utcnow()
        accumulators: Dict[str, _Accumulator] = {}

        def accumulator(counterparty_id: str) -> _Accumulator:
            key = counterparty_id.strip()
            if key not in accumulators:
                accumulators[key] = _Accumulator(key)
            return accumulators[key]

        for document in self.filter_sales(sales):
            acc = accumulator(document.counterparty_id)
            acc.total_sales += document.gross_amount
            acc.sale_count += 1
            acc.last_sale_date = _later(acc.last_sale_date, document.document_date)
            if acc.sale_name is None and not _blank(document.counterparty_name):
                acc.sale_name = document.counterparty_name.strip()

        for payment in self.filter_payments(payments):
            acc = accumulator(payment.counterparty_id)
            if payment.is_cash:
                acc.total_cash_payments += payment.amount
                acc.cash_payment_count += 1
            else:
                acc.total_payments += payment.amount
                acc.payment_count += 1
            acc.last_payment_date = _later(acc.last_payment_date, payment.payment_date)
            if acc.payment_name is None and not _blank(payment.counterparty_name):
                acc.payment_name = payment.counterparty_name.strip()

        debts: Dict[str, StartingDebt] = {}
        for debt in starting_debts:
            key = debt.counterparty_id.strip()
            if not key:
                continue
            if key in debts:
                logger.warning(f"Duplicate starting debt for {key}, keeping the first")
                continue
            debts[key] = debt
            accumulator(key)

        summaries = []
        for key in sorted(accumulators):
            acc = accumulators[key]
            debt = debts.get(key)
            starting = quantize(Decimal(debt.debt)) if debt else ZERO
            name = acc.sale_name or acc.payment_name
            if name is None and debt is not None and not _blank(debt.name):
                name = debt.name.strip()

            total_sales = quantize(acc.total_sales)
            total_payments = quantize(acc.total_payments)
            total_cash = quantize(acc.total_cash_payments)

            summaries.append(CustomerDebtSummary(
                counterparty_id=key,
                counterparty_name=name or UNKNOWN_CUSTOMER,
                total_sales=total_sales,
                sale_count=acc.sale_count,
                last_sale_date=acc.last_sale_date,
                total_payments=total_payments,
                payment_count=acc.payment_count,
                last_payment_date=acc.last_payment_date,
                total_cash_payments=total_cash,
                cash_payment_count=acc.cash_payment_count,
                starting_debt=starting,
                starting_debt_date=debt.debt_date if debt else None,
                current_debt=quantize(starting + total_sales - total_payments - total_cash),
                last_updated=now,
                update_source=update_source,
            ))

        logger.info(f"Aggregated debt for {len(summaries)} customers")
        return summaries
