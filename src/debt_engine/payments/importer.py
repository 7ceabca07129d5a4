"""Ingestion of bank statement rows and manual cash payments.

Every payment gets its identity at ingestion. Rows whose identity is
already stored, or that repeat within the same upload, are reported as
duplicates and never saved, so overlapping statement exports can be
uploaded repeatedly without double counting.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Set

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..amounts import ZERO, parse_amount
from ..config import get_settings
from ..database import Payment, PaymentRepository
from ..dates import parse_date
from ..exceptions import DebtEngineError, DuplicateRecordError, ValidationError
from ..identity import build_unique_code
from ..jobs import AggregationOrchestrator
from ..ledger import normalize_tin
from ..reconciliation import CASH_SOURCE

logger = logging.getLogger(__name__)

UPLOAD_TRIGGER = "excel_upload"
DEDUPLICATION_TRIGGER = "deduplication"
MANUAL_CASH_DESCRIPTION = "Manual Cash Payment"

# Totals may differ by rounding noise only
VALIDATION_TOLERANCE = Decimal("0.01")


class PaymentCandidate(BaseModel):
    """One raw row of a bank statement, before validation."""
    row_index: int = 0
    payment_date: Any = None
    amount: Any = None
    counterparty_id: Any = None
    counterparty_name: Optional[str] = None
    post_balance: Any = None
    description: Optional[str] = None


class SkippedRow(BaseModel):
    row_index: int
    reason: str
    counterparty_id: Optional[str] = None


class ImportResult(BaseModel):
    """Outcome of a statement import."""
    added_count: int = 0
    duplicate_existing_count: int = 0
    duplicate_in_upload_count: int = 0
    before_window_count: int = 0
    skipped: List[SkippedRow] = Field(default_factory=list)
    added_total: Decimal = ZERO
    duplicate_total: Decimal = ZERO
    window_total: Decimal = ZERO
    validation_passed: bool = True
    job_id: Optional[str] = None

    @property
    def duplicate_count(self) -> int:
        return self.duplicate_existing_count + self.duplicate_in_upload_count


class BackfillResult(BaseModel):
    """Outcome of assigning identities to legacy payments."""
    updated_count: int = 0
    duplicate_count: int = 0
    removed_count: int = 0
    duplicate_ids: List[str] = Field(default_factory=list)
    job_id: Optional[str] = None


def _clean_id(value: Any) -> Optional[str]:
    """Customer ids come from spreadsheets, sometimes as floats."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


class PaymentImporter:
    """Validates, deduplicates and stores incoming payments."""

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: Optional[AggregationOrchestrator] = None,
        cutoff_date: Optional[date] = None,
    ):
        """Initialize the importer.

        Args:
            session: Async database session. Imports commit it so that the
                aggregation job they trigger sees the new rows.
            orchestrator: Optional orchestrator to trigger aggregation with.
            cutoff_date: Overrides the configured cutoff.
        """
        self.session = session
        self.orchestrator = orchestrator
        self.cutoff_date = cutoff_date or get_settings().cutoff_date
        self.payment_repo = PaymentRepository(session)

    @property
    def window_start(self) -> date:
        return self.cutoff_date + timedelta(days=1)

    def _trigger(self, source: str) -> Optional[str]:
        if self.orchestrator is None:
            return None
        try:
            return self.orchestrator.trigger(source)
        except DebtEngineError as e:
            # Stored payments stay; aggregation can be triggered again later
            logger.error(f"Could not trigger aggregation after {source}: {e}")
            return None

    async def import_payments(
        self,
        candidates: Iterable[PaymentCandidate],
        source: str,
        validate_only: bool = False,
        keep_before_window: bool = False,
    ) -> ImportResult:
        """Import bank statement rows.

        Args:
            candidates: Raw statement rows.
            source: Bank channel name stored on each payment.
            validate_only: Analyze without saving or triggering aggregation.
            keep_before_window: Also store rows dated on or before the cutoff.

        Returns:
            ImportResult with counts and totals.
        """
        if not source or not source.strip():
            raise ValidationError("Payment source is required", field="source")
        source = source.strip().lower()
        if source == CASH_SOURCE:
            raise ValidationError(f"{CASH_SOURCE} is reserved for manual entries", field="source")

        candidates = list(candidates)
        result = ImportResult()
        rows = []

        for candidate in candidates:
            amount = parse_amount(candidate.amount)
            counterparty_id = _clean_id(candidate.counterparty_id)
            payment_date = parse_date(candidate.payment_date)

            reason = None
            if amount is None or amount <= ZERO:
                reason = "Payment amount <= 0"
            elif counterparty_id is None:
                reason = "Missing customer ID"
            elif payment_date is None:
                reason = "Invalid date format"
            if reason is not None:
                result.skipped.append(SkippedRow(
                    row_index=candidate.row_index, reason=reason, counterparty_id=counterparty_id,
                ))
                continue

            balance = parse_amount(candidate.post_balance)
            code = build_unique_code(payment_date, amount, counterparty_id, balance)
            rows.append((candidate, payment_date, amount, counterparty_id, balance, code))

        existing = await self.payment_repo.find_existing_codes(row[-1] for row in rows)
        seen: Set[str] = set()
        pending: List[Payment] = []
        uploaded_at = datetime.utcnow()

        for candidate, payment_date, amount, counterparty_id, balance, code in rows:
            after_window = payment_date >= self.window_start
            if after_window:
                result.window_total += amount

            if code in existing or code in seen:
                if code in existing:
                    result.duplicate_existing_count += 1
                else:
                    result.duplicate_in_upload_count += 1
                if after_window:
                    result.duplicate_total += amount
                continue
            seen.add(code)

            if not after_window:
                result.before_window_count += 1
                if not keep_before_window:
                    continue

            result.added_count += 1
            if after_window:
                result.added_total += amount
            pending.append(Payment(
                id=code,
                unique_code=code,
                counterparty_id=counterparty_id,
                counterparty_name=candidate.counterparty_name,
                payment_date=payment_date,
                amount=amount,
                post_balance=balance,
                source=source,
                description=candidate.description,
                after_window=after_window,
                uploaded_at=uploaded_at,
            ))

        difference = abs(result.window_total - result.added_total - result.duplicate_total)
        result.validation_passed = difference <= VALIDATION_TOLERANCE
        if not result.validation_passed:
            logger.warning(
                f"Window total {result.window_total} does not match processed total "
                f"{result.added_total} added + {result.duplicate_total} duplicates"
            )

        logger.info(
            f"Import from {source}: {len(candidates)} rows, {result.added_count} added, "
            f"{result.duplicate_count} duplicates, {len(result.skipped)} skipped"
        )

        if validate_only:
            return result

        if pending:
            await self.payment_repo.save_all(pending)
            await self.session.commit()
            result.job_id = self._trigger(UPLOAD_TRIGGER)
        else:
            logger.info("No new payments added, skipping aggregation")
        return result

    async def add_manual_cash_payment(
        self,
        counterparty_id: str,
        amount: Any,
        payment_date: Any,
        counterparty_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Payment:
        """Record a cash payment entered by hand.

        Args:
            counterparty_id: Customer tax id; separators are stripped.
            amount: Positive amount.
            payment_date: Date of the payment.
            counterparty_name: Optional display name.
            description: Optional note.

        Returns:
            The stored Payment.

        Raises:
            ValidationError: If any field is missing or invalid.
            DuplicateRecordError: If an identical cash payment exists.
        """
        normalized_id = normalize_tin(_clean_id(counterparty_id))
        if normalized_id is None:
            raise ValidationError("Customer ID is required", field="counterparty_id")
        parsed_amount = parse_amount(amount)
        if parsed_amount is None or parsed_amount <= ZERO:
            raise ValidationError("Amount must be positive", field="amount")
        parsed_date = parse_date(payment_date)
        if parsed_date is None:
            raise ValidationError("Payment date is invalid", field="payment_date")

        code = build_unique_code(parsed_date, parsed_amount, normalized_id, ZERO)
        if await self.payment_repo.get_by_unique_code(code) is not None:
            raise DuplicateRecordError(f"Payment {code} already exists", unique_code=code)

        payment = Payment(
            id=code,
            unique_code=code,
            counterparty_id=normalized_id,
            counterparty_name=counterparty_name,
            payment_date=parsed_date,
            amount=parsed_amount,
            post_balance=ZERO,
            source=CASH_SOURCE,
            description=description or MANUAL_CASH_DESCRIPTION,
            after_window=parsed_date >= self.window_start,
            uploaded_at=datetime.utcnow(),
        )
        await self.payment_repo.save_all([payment])
        await self.session.commit()

        logger.info(f"Added manual cash payment for {normalized_id}: {parsed_amount}")
        return payment

    async def backfill_unique_codes(self, remove_duplicates: bool = False) -> BackfillResult:
        """Assign identities to payments stored before identities existed.

        Rows are processed oldest upload first, so the earliest copy of a
        payment keeps the identity and later copies are reported.

        Args:
            remove_duplicates: Delete rows whose identity is already taken.

        Returns:
            BackfillResult with counts and the ids of duplicate rows.
        """
        taken = await self.payment_repo.list_all_codes()
        result = BackfillResult()

        for payment in await self.payment_repo.list_missing_codes():
            code = build_unique_code(
                payment.payment_date, payment.amount, payment.counterparty_id, payment.post_balance,
            )
            if code in taken:
                result.duplicate_count += 1
                result.duplicate_ids.append(payment.id)
                if remove_duplicates:
                    await self.payment_repo.delete(payment)
                    result.removed_count += 1
                continue
            payment.unique_code = code
            taken.add(code)
            result.updated_count += 1

        await self.session.flush()
        await self.session.commit()
        logger.info(
            f"Backfilled {result.updated_count} identities, found {result.duplicate_count} duplicates, "
            f"removed {result.removed_count}"
        )

        if result.removed_count:
            result.job_id = self._trigger(DEDUPLICATION_TRIGGER)
        return result
