"""Persist debt summaries, writing only the ones whose figures changed."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import DebtSummary, DebtSummaryRepository
from .models import CustomerDebtSummary, WriteResult

logger = logging.getLogger(__name__)

# Name and bookkeeping fields are written but never compared
COMPARED_FIELDS = (
    "total_sales",
    "sale_count",
    "last_sale_date",
    "total_payments",
    "payment_count",
    "last_payment_date",
    "total_cash_payments",
    "cash_payment_count",
    "starting_debt",
    "starting_debt_date",
    "current_debt",
)

WRITTEN_FIELDS = COMPARED_FIELDS + ("counterparty_name", "last_updated", "update_source")


def _same(stored: Any, computed: Any) -> bool:
    if isinstance(stored, Decimal) or isinstance(computed, Decimal):
        if stored is None or computed is None:
            return stored is computed
        return Decimal(stored) == Decimal(computed)
    return stored == computed


def has_changed(stored: DebtSummary, summary: CustomerDebtSummary) -> bool:
    """True if any compared field of ``summary`` differs from the stored row."""
    return any(
        not _same(getattr(stored, field), getattr(summary, field))
        for field in COMPARED_FIELDS
    )


class ChangeDetectionWriter:
    """Writes new and changed summaries in one batch and skips the rest."""

    def __init__(self, session: AsyncSession):
        """Initialize the writer.

        Args:
            session: Async database session. The caller owns the transaction.
        """
        self.session = session
        self.summary_repo = DebtSummaryRepository(session)

    async def write(self, summaries: Iterable[CustomerDebtSummary]) -> WriteResult:
        """Compare against stored rows and save what differs.

        Args:
            summaries: Freshly computed summaries.

        Returns:
            Counts of new, updated and unchanged summaries.
        """
        summaries = list(summaries)
        stored = await self.summary_repo.get_many(s.counterparty_id for s in summaries)

        result = WriteResult()
        pending: List[Dict[str, Any]] = []

        for summary in summaries:
            row = stored.get(summary.counterparty_id)
            if row is None:
                result.new_count += 1
            elif has_changed(row, summary):
                result.updated_count += 1
            else:
                result.unchanged_count += 1
                continue

            values = {field: getattr(summary, field) for field in WRITTEN_FIELDS}
            values["counterparty_id"] = summary.counterparty_id
            if values["last_updated"] is None:
                values["last_updated"] = datetime.utcnow()
            pending.append(values)

        await self.summary_repo.upsert_all(pending)

        logger.info(
            f"Debt summaries: {result.new_count} new, {result.updated_count} updated, "
            f"{result.unchanged_count} unchanged"
        )
        return result
