"""SQLAlchemy models for payments, starting debts and debt summaries."""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

MONEY = Numeric(14, 2)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class Payment(Base):
    """A bank or cash payment received from a customer.

    New rows use their identity as primary key. Rows imported before
    identities existed keep a generated id and may have no ``unique_code``
    until backfilled.
    """
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(200), primary_key=True, default=lambda: str(uuid.uuid4()))
    unique_code: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, unique=True)
    counterparty_id: Mapped[str] = mapped_column(String(64), nullable=False)
    counterparty_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    post_balance: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="bank")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_window: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_payments_counterparty_id", "counterparty_id"),
        Index("ix_payments_payment_date", "payment_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary representation."""
        return {
            "id": self.id,
            "unique_code": self.unique_code,
            "counterparty_id": self.counterparty_id,
            "counterparty_name": self.counterparty_name,
            "payment_date": _iso(self.payment_date),
            "amount": _money(self.amount),
            "post_balance": _money(self.post_balance),
            "source": self.source,
            "description": self.description,
            "after_window": self.after_window,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, counterparty={self.counterparty_id}, amount={self.amount})>"


class InitialDebt(Base):
    """Configured opening balance for a customer as of the cutoff date."""
    __tablename__ = "initial_debts"

    counterparty_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    debt: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    debt_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<InitialDebt(counterparty={self.counterparty_id}, debt={self.debt})>"


class DebtSummary(Base):
    """Materialized per-customer debt, rewritten only when its figures change."""
    __tablename__ = "customer_debt_summary"

    counterparty_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    counterparty_name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    sale_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sale_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_payments: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_cash_payments: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    cash_payment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    starting_debt: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    starting_debt_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    current_debt: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    update_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary representation."""
        return {
            "counterparty_id": self.counterparty_id,
            "counterparty_name": self.counterparty_name,
            "total_sales": _money(self.total_sales),
            "sale_count": self.sale_count,
            "last_sale_date": _iso(self.last_sale_date),
            "total_payments": _money(self.total_payments),
            "payment_count": self.payment_count,
            "last_payment_date": _iso(self.last_payment_date),
            "total_cash_payments": _money(self.total_cash_payments),
            "cash_payment_count": self.cash_payment_count,
            "starting_debt": _money(self.starting_debt),
            "starting_debt_date": _iso(self.starting_debt_date),
            "current_debt": _money(self.current_debt),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "update_source": self.update_source,
        }

    def __repr__(self) -> str:
        return f"<DebtSummary(counterparty={self.counterparty_id}, current_debt={self.current_debt})>"
