"""Shared test fixtures and configuration."""

import os
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

import pytest

# Set up test environment variables before importing modules
os.environ.setdefault("DEBT_ENGINE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBT_ENGINE_LEDGER_ENDPOINT", "https://ledger.test/WayBillService.asmx")
os.environ.setdefault("DEBT_ENGINE_LEDGER_USERNAME", "tasty:206322102")
os.environ.setdefault("DEBT_ENGINE_LEDGER_PASSWORD", "secret")

from debt_engine.database import (  # noqa: E402
    Base,
    create_async_engine,
    get_async_session_factory,
)
from debt_engine.ledger import LedgerDirection, LedgerDocument  # noqa: E402
from debt_engine.reconciliation import PaymentRecord  # noqa: E402

CUTOFF = date(2025, 4, 29)


def soap_envelope(operation: str, result_xml: str) -> str:
    """Wrap result XML the way the revenue service does."""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soap:Body>"
        f'<{operation}Response xmlns="http://tempuri.org/">'
        f"<{operation}Result>{result_xml}</{operation}Result>"
        f"</{operation}Response>"
        "</soap:Body>"
        "</soap:Envelope>"
    )


def waybill_xml(
    waybill_id: str,
    create_date: str,
    amount: str = "100.00",
    buyer_tin: str = "405123456",
    buyer_name: str = "Buyer LLC",
    status: str = "1",
) -> str:
    return (
        "<WAYBILL>"
        f"<ID>{waybill_id}</ID>"
        f"<BUYER_TIN>{buyer_tin}</BUYER_TIN>"
        f"<BUYER_NAME>{buyer_name}</BUYER_NAME>"
        "<SELLER_TIN>206322102</SELLER_TIN>"
        f"<FULL_AMOUNT>{amount}</FULL_AMOUNT>"
        f"<CREATE_DATE>{create_date}T10:00:00</CREATE_DATE>"
        f"<STATUS>{status}</STATUS>"
        "</WAYBILL>"
    )


def status_xml(status: int) -> str:
    return f"<RESULT><STATUS>{status}</STATUS></RESULT>"


@pytest.fixture
def make_sale() -> Callable[..., LedgerDocument]:
    """Build sale documents for aggregation tests."""
    counter = {"n": 0}

    def build(
        counterparty_id: str,
        amount: str,
        on: date,
        name: Optional[str] = None,
    ) -> LedgerDocument:
        counter["n"] += 1
        return LedgerDocument(
            id=f"wb-{counter['n']}",
            direction=LedgerDirection.SALE,
            counterparty_id=counterparty_id,
            counterparty_name=name,
            document_date=on,
            gross_amount=Decimal(amount),
            status_code=1,
        )

    return build


@pytest.fixture
def make_payment() -> Callable[..., PaymentRecord]:
    """Build payment records for aggregation tests."""
    def build(
        counterparty_id: str,
        amount: str,
        on: date,
        source: str = "tbc",
        name: Optional[str] = None,
    ) -> PaymentRecord:
        return PaymentRecord(
            counterparty_id=counterparty_id,
            counterparty_name=name,
            payment_date=on,
            amount=Decimal(amount),
            source=source,
        )

    return build


# Database fixtures for integration tests
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def file_database_url(tmp_path) -> str:
    """URL of a file-backed SQLite database shared across event loops."""
    return f"sqlite+aiosqlite:///{tmp_path / 'debt_engine.db'}"
