"""Tests for database models, repositories and the schema migration."""

import importlib.util
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

import debt_engine.database
from debt_engine.database import (
    Base,
    DebtSummaryRepository,
    InitialDebtRepository,
    Payment,
    PaymentRepository,
    close_db,
    get_async_session_factory,
    get_db,
    init_db,
)

MIGRATION = (
    Path(debt_engine.database.__file__).parent / "migrations" / "versions" / "001_initial.py"
)


def make_payment(code, on=date(2025, 5, 2), amount="10.00", **overrides):
    values = dict(
        id=code,
        unique_code=code,
        counterparty_id="405123456",
        payment_date=on,
        amount=Decimal(amount),
        source="tbc",
        after_window=True,
    )
    values.update(overrides)
    return Payment(**values)


class TestPaymentModel:
    """Tests for the Payment model."""

    async def test_defaults(self, db_session):
        """Test generated id and defaults of a legacy payment."""
        payment = Payment(counterparty_id="1", payment_date=date(2025, 5, 2), amount=Decimal("5"))
        db_session.add(payment)
        await db_session.flush()

        assert payment.id is not None
        assert payment.unique_code is None
        assert payment.source == "bank"
        assert payment.after_window is False
        assert isinstance(payment.uploaded_at, datetime)

    async def test_to_dict(self, db_session):
        """Test conversion to a dictionary."""
        payment = make_payment("2025-05-02|1000|405123456|0")
        db_session.add(payment)
        await db_session.flush()

        data = payment.to_dict()
        assert data["unique_code"] == "2025-05-02|1000|405123456|0"
        assert data["payment_date"] == "2025-05-02"
        assert data["amount"] == "10.00"


class TestPaymentRepository:
    """Tests for PaymentRepository."""

    async def test_find_existing_codes(self, db_session):
        """Test only stored identities are returned."""
        repo = PaymentRepository(db_session)
        await repo.save_all([make_payment("a"), make_payment("b")])

        assert await repo.find_existing_codes(["a", "c", "", "b"]) == {"a", "b"}
        assert await repo.find_existing_codes([]) == set()

    async def test_find_existing_codes_many(self, db_session):
        """Test lookups larger than one IN clause."""
        repo = PaymentRepository(db_session)
        await repo.save_all([make_payment(f"code-{i}") for i in range(1200)])

        found = await repo.find_existing_codes(f"code-{i}" for i in range(0, 1300, 2))
        assert len(found) == 600

    async def test_list_from(self, db_session):
        """Test payments are listed from a date, oldest first."""
        repo = PaymentRepository(db_session)
        await repo.save_all([
            make_payment("late", on=date(2025, 5, 5)),
            make_payment("early", on=date(2025, 4, 29)),
            make_payment("mid", on=date(2025, 4, 30)),
        ])

        assert [p.id for p in await repo.list_from(date(2025, 4, 30))] == ["mid", "late"]

    async def test_get_by_unique_code_and_delete(self, db_session):
        """Test lookup and deletion by identity."""
        repo = PaymentRepository(db_session)
        await repo.save_all([make_payment("a")])

        payment = await repo.get_by_unique_code("a")
        assert payment is not None
        await repo.delete(payment)
        assert await repo.get_by_unique_code("a") is None

    async def test_missing_codes(self, db_session):
        """Test legacy rows without identity are listed oldest upload first."""
        repo = PaymentRepository(db_session)
        await repo.save_all([
            make_payment("x", unique_code=None, uploaded_at=datetime(2025, 5, 3)),
            make_payment("y", unique_code=None, uploaded_at=datetime(2025, 5, 1)),
            make_payment("z"),
        ])

        assert [p.id for p in await repo.list_missing_codes()] == ["y", "x"]
        assert await repo.list_all_codes() == {"z"}


class TestInitialDebtRepository:
    """Tests for InitialDebtRepository."""

    async def test_upsert(self, db_session):
        """Test a starting balance is created and then replaced."""
        repo = InitialDebtRepository(db_session)
        await repo.upsert("B", Decimal("10"), name="Old")
        await repo.upsert("A", Decimal("5"))
        await repo.upsert("B", Decimal("20"), name="New", debt_date=date(2025, 4, 29))

        debts = await repo.list_all()
        assert [(d.counterparty_id, d.debt, d.name) for d in debts] == [
            ("A", Decimal("5.00"), None),
            ("B", Decimal("20.00"), "New"),
        ]


def summary_values(counterparty_id, current_debt, name="Shop"):
    return dict(
        counterparty_id=counterparty_id,
        counterparty_name=name,
        total_sales=Decimal(current_debt),
        sale_count=1,
        last_sale_date=date(2025, 5, 2),
        total_payments=Decimal("0"),
        payment_count=0,
        last_payment_date=None,
        total_cash_payments=Decimal("0"),
        cash_payment_count=0,
        starting_debt=Decimal("0"),
        starting_debt_date=None,
        current_debt=Decimal(current_debt),
        last_updated=datetime(2025, 5, 11, 9, 0),
        update_source="manual_sync",
    )


class TestDebtSummaryRepository:
    """Tests for DebtSummaryRepository."""

    async def test_upsert_and_get_many(self, db_session):
        """Test new rows are inserted and existing rows overwritten."""
        repo = DebtSummaryRepository(db_session)
        assert await repo.upsert_all([summary_values("A", "1")]) == 1

        found = await repo.get_many(["A", "B"])
        assert list(found) == ["A"]
        loaded = found["A"]

        await repo.upsert_all([summary_values("A", "2", name="Shop 2"), summary_values("C", "3")])

        assert loaded.current_debt == Decimal("2.00")
        assert loaded.counterparty_name == "Shop 2"
        assert loaded.to_dict()["current_debt"] == "2.00"
        assert [s.counterparty_id for s in await repo.list_all()] == ["A", "C"]
        assert await repo.get("B") is None
        assert await repo.upsert_all([]) == 0


class TestMigration:
    """Tests for the initial schema migration."""

    def _load(self):
        spec = importlib.util.spec_from_file_location("initial_migration", MIGRATION)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def test_upgrade_matches_models(self):
        """Test the migration creates the tables and columns of the models."""
        migration = self._load()
        engine = sa.create_engine("sqlite://")

        with engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                migration.upgrade()

            inspector = sa.inspect(conn)
            for table in Base.metadata.sorted_tables:
                columns = {c["name"] for c in inspector.get_columns(table.name)}
                assert columns == {c.name for c in table.columns}, table.name
            indexes = {i["name"] for i in inspector.get_indexes("payments")}
            assert {"ix_payments_counterparty_id", "ix_payments_payment_date"} <= indexes

    def test_downgrade_drops_tables(self):
        """Test the downgrade removes everything again."""
        migration = self._load()
        engine = sa.create_engine("sqlite://")

        with engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                migration.upgrade()
                migration.downgrade()
            assert sa.inspect(conn).get_table_names() == []


class TestApplicationDatabase:
    """Tests for the engine shared by request handlers."""

    async def test_open_use_and_close(self):
        """Test get_db sessions commit against the engine opened by init_db."""
        await init_db("sqlite+aiosqlite:///:memory:")
        try:
            sessions = get_db()
            session = await sessions.__anext__()
            await DebtSummaryRepository(session).upsert_all([summary_values("A", "5")])
            with pytest.raises(StopAsyncIteration):
                await sessions.__anext__()

            async for session in get_db():
                assert [s.counterparty_id for s in await DebtSummaryRepository(session).list_all()] == ["A"]
        finally:
            await close_db()

        with pytest.raises(RuntimeError):
            get_async_session_factory()
