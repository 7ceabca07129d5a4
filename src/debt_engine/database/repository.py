"""Repository layer for payments, starting debts and debt summaries."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DebtSummary, InitialDebt, Payment

logger = logging.getLogger(__name__)

# Keeps IN (...) lists under the bound-parameter limits of SQLite
IN_CLAUSE_CHUNK = 500

# Rows per upsert statement; 15 columns each stays below 999 parameters
UPSERT_CHUNK = 60

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def _chunks(values: List[str], size: int = IN_CLAUSE_CHUNK) -> Iterable[List[str]]:
    for i in range(0, len(values), size):
        yield values[i:i + size]


class PaymentRepository:
    """Repository for payment records."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_unique_code(self, unique_code: str) -> Optional[Payment]:
        """Get a payment by its identity.

        Args:
            unique_code: Payment identity.

        Returns:
            Payment instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Payment).where(Payment.unique_code == unique_code)
        )
        return result.scalar_one_or_none()

    async def list_from(self, start: date) -> List[Payment]:
        """List payments dated on or after ``start``, oldest first.

        Args:
            start: First payment date to include.

        Returns:
            List of Payment instances.
        """
        result = await self.session.execute(
            select(Payment)
            .where(Payment.payment_date >= start)
            .order_by(Payment.payment_date, Payment.id)
        )
        payments = list(result.scalars().all())
        logger.debug(f"Loaded {len(payments)} payments dated from {start}")
        return payments

    async def find_existing_codes(self, codes: Iterable[str]) -> Set[str]:
        """Return the subset of ``codes`` that is already stored.

        Args:
            codes: Candidate identities.

        Returns:
            Set of identities present in storage.
        """
        wanted = sorted({c for c in codes if c})
        found: Set[str] = set()
        for chunk in _chunks(wanted):
            result = await self.session.execute(
                select(Payment.unique_code).where(Payment.unique_code.in_(chunk))
            )
            found.update(code for code in result.scalars().all() if code)
        return found

    async def list_all_codes(self) -> Set[str]:
        """Return every identity currently stored."""
        result = await self.session.execute(
            select(Payment.unique_code).where(Payment.unique_code.is_not(None))
        )
        return set(result.scalars().all())

    async def list_missing_codes(self) -> List[Payment]:
        """List legacy payments that have no identity yet, oldest upload first."""
        result = await self.session.execute(
            select(Payment)
            .where(Payment.unique_code.is_(None))
            .order_by(Payment.uploaded_at, Payment.id)
        )
        return list(result.scalars().all())

    async def save_all(self, payments: List[Payment]) -> int:
        """Persist new payments in one flush.

        Args:
            payments: Payment instances to insert.

        Returns:
            Number of payments saved.
        """
        if not payments:
            return 0
        self.session.add_all(payments)
        await self.session.flush()
        logger.info(f"Saved {len(payments)} payments")
        return len(payments)

    async def delete(self, payment: Payment) -> None:
        """Delete a payment."""
        await self.session.delete(payment)
        await self.session.flush()
        logger.info(f"Deleted payment {payment.id}")


class InitialDebtRepository:
    """Repository for configured starting balances."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_all(self) -> List[InitialDebt]:
        """List every starting balance ordered by counterparty id."""
        result = await self.session.execute(
            select(InitialDebt).order_by(InitialDebt.counterparty_id)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        counterparty_id: str,
        debt: Decimal,
        name: Optional[str] = None,
        debt_date: Optional[date] = None,
    ) -> InitialDebt:
        """Create or replace the starting balance of a customer.

        Args:
            counterparty_id: Customer identifier.
            debt: Opening balance.
            name: Optional display name.
            debt_date: Date the balance refers to.

        Returns:
            The stored InitialDebt.
        """
        row = await self.session.get(InitialDebt, counterparty_id)
        if row is None:
            row = InitialDebt(counterparty_id=counterparty_id)
            self.session.add(row)
        row.debt = debt
        row.name = name
        row.debt_date = debt_date
        await self.session.flush()
        return row


class DebtSummaryRepository:
    """Repository for materialized customer debt summaries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, counterparty_id: str) -> Optional[DebtSummary]:
        """Get the summary of one customer."""
        return await self.session.get(DebtSummary, counterparty_id)

    async def get_many(self, counterparty_ids: Iterable[str]) -> Dict[str, DebtSummary]:
        """Load the stored summaries for the given customers.

        Args:
            counterparty_ids: Customer identifiers.

        Returns:
            Mapping of counterparty id to its stored summary.
        """
        wanted = sorted(set(counterparty_ids))
        found: Dict[str, DebtSummary] = {}
        for chunk in _chunks(wanted):
            result = await self.session.execute(
                select(DebtSummary).where(DebtSummary.counterparty_id.in_(chunk))
            )
            for row in result.scalars().all():
                found[row.counterparty_id] = row
        return found

    async def list_all(self) -> List[DebtSummary]:
        """List every stored summary ordered by counterparty id."""
        result = await self.session.execute(
            select(DebtSummary).order_by(DebtSummary.counterparty_id)
        )
        return list(result.scalars().all())

    async def upsert_all(self, rows: List[Dict[str, Any]]) -> int:
        """Insert or overwrite summaries keyed by counterparty id.

        Each row becomes a single ``INSERT ... ON CONFLICT DO UPDATE`` so two
        runs writing the same new customer both succeed and the last one to
        commit wins. Summaries already loaded in the session are refreshed
        with the written values.

        Args:
            rows: Column values per summary; each must hold ``counterparty_id``.

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0

        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            for values in rows:
                await self.session.merge(DebtSummary(**values))
            await self.session.flush()
        else:
            for i in range(0, len(rows), UPSERT_CHUNK):
                stmt = insert(DebtSummary).values(rows[i:i + UPSERT_CHUNK])
                stmt = stmt.on_conflict_do_update(
                    index_elements=[DebtSummary.counterparty_id],
                    set_={
                        column.name: stmt.excluded[column.name]
                        for column in DebtSummary.__table__.columns
                        if not column.primary_key
                    },
                )
                result = await self.session.scalars(
                    stmt.returning(DebtSummary),
                    execution_options={"populate_existing": True},
                )
                result.all()
        logger.info(f"Upserted {len(rows)} debt summaries")
        return len(rows)
