"""Service layer for customer debt reconciliation runs."""

import asyncio
import logging
import time
from datetime import date, timedelta
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import InitialDebtRepository, PaymentRepository
from ..ledger import LedgerClient, LedgerDirection, LedgerDocument
from .models import (
    PaymentRecord,
    ProgressCallback,
    ReconciliationResult,
    ReconciliationStep,
    StartingDebt,
)
from .reconciler import Reconciler
from .writer import ChangeDetectionWriter

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Runs one full pass: fetch, aggregate and write debt summaries."""

    def __init__(
        self,
        session: AsyncSession,
        ledger_client: LedgerClient,
        cutoff_date: Optional[date] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session. The caller commits.
            ledger_client: Client used to fetch sale documents.
            cutoff_date: Last day folded into starting debts. Defaults to the
                configured cutoff.
            today: Clock used to bound the sales window, for tests.
        """
        self.session = session
        self.ledger_client = ledger_client
        self.reconciler = Reconciler(cutoff_date or get_settings().cutoff_date)
        self.payment_repo = PaymentRepository(session)
        self.initial_debt_repo = InitialDebtRepository(session)
        self.writer = ChangeDetectionWriter(session)
        self._today = today or date.today

    def fetch_sales(self) -> List[LedgerDocument]:
        """Fetch sale documents from the day after the cutoff through today."""
        start = self.reconciler.window_start
        end_exclusive = self._today() + timedelta(days=1)
        if start >= end_exclusive:
            logger.info(f"Sales window starting {start} has not opened yet")
            return []
        return self.ledger_client.fetch(LedgerDirection.SALE, start, end_exclusive)

    async def load_payments(self) -> List[PaymentRecord]:
        """Load stored payments dated inside the aggregation window."""
        rows = await self.payment_repo.list_from(self.reconciler.window_start)
        return [PaymentRecord.model_validate(row) for row in rows]

    async def load_starting_debts(self) -> List[StartingDebt]:
        rows = await self.initial_debt_repo.list_all()
        return [StartingDebt.model_validate(row) for row in rows]

    async def run(
        self,
        trigger_source: str,
        progress: Optional[ProgressCallback] = None,
    ) -> ReconciliationResult:
        """Execute a reconciliation pass.

        Args:
            trigger_source: What caused the run, e.g. ``excel_upload``.
            progress: Optional callback told about each milestone.

        Returns:
            ReconciliationResult with write counts.

        Raises:
            ExternalServiceError: If sale documents cannot be fetched. Nothing
                is written in that case.
        """
        def report(step: ReconciliationStep) -> None:
            if progress is not None:
                progress(step)

        started = time.monotonic()
        logger.info(f"Starting reconciliation (source={trigger_source})")
        report(ReconciliationStep.STARTING)

        report(ReconciliationStep.FETCHING_LEDGER)
        # Ledger client is blocking
        sales = await asyncio.to_thread(self.fetch_sales)

        report(ReconciliationStep.FETCHING_PAYMENTS)
        payments = await self.load_payments()

        report(ReconciliationStep.FETCHING_STARTING_DEBTS)
        starting_debts = await self.load_starting_debts()

        report(ReconciliationStep.AGGREGATING)
        summaries = self.reconciler.aggregate(
            sales, payments, starting_debts, update_source=trigger_source,
        )

        report(ReconciliationStep.WRITING)
        written = await self.writer.write(summaries)

        result = ReconciliationResult(
            total_customers=len(summaries),
            new_count=written.new_count,
            updated_count=written.updated_count,
            unchanged_count=written.unchanged_count,
            sale_document_count=len(sales),
            payment_record_count=len(payments),
        )
        logger.info(
            f"Reconciliation finished in {time.monotonic() - started:.2f}s: "
            f"{result.total_customers} customers, {result.new_count} new, "
            f"{result.updated_count} updated"
        )
        return result
