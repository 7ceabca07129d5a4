"""Deterministic deduplication identity for payment records.

The identity has the form ``YYYY-MM-DD|amount_cents|counterparty_id|balance_cents``.
The post-transaction balance is part of it because a bank statement can
show two identical same-day payments from one customer; only the running
balance tells them apart.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union

from .amounts import ZERO, to_cents
from .dates import parse_date

SEPARATOR = "|"


def build_unique_code(
    payment_date: Union[date, str],
    amount: Decimal,
    counterparty_id: str,
    post_balance: Optional[Decimal] = None,
) -> str:
    """Build the identity of a payment.

    Args:
        payment_date: Payment date, or an ISO date string.
        amount: Payment amount.
        counterparty_id: Customer identifier; surrounding whitespace is ignored.
        post_balance: Account balance after the transaction. Manual entries
            have none and use zero.

    Returns:
        The identity string.
    """
    if isinstance(payment_date, str):
        parsed = parse_date(payment_date)
        if parsed is None:
            raise ValueError(f"Unparsable payment date: {payment_date!r}")
        payment_date = parsed

    balance = post_balance if post_balance is not None else ZERO
    return SEPARATOR.join([
        payment_date.isoformat(),
        str(to_cents(amount)),
        (counterparty_id or "").strip(),
        str(to_cents(balance)),
    ])


def extract_date(unique_code: str) -> Optional[date]:
    """Return the date component of an identity, or None if malformed."""
    parts = unique_code.split(SEPARATOR) if unique_code else []
    if not parts:
        return None
    try:
        return date.fromisoformat(parts[0])
    except ValueError:
        return None


def extract_counterparty_id(unique_code: str) -> Optional[str]:
    """Return the counterparty component of an identity, or None if malformed."""
    parts = unique_code.split(SEPARATOR) if unique_code else []
    if len(parts) < 3:
        return None
    return parts[2]
