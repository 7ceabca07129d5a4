"""Payment status colours derived from a customer's last payment date."""

from datetime import date
from enum import Enum
from typing import Optional

WARNING_THRESHOLD_DAYS = 14
DANGER_THRESHOLD_DAYS = 30


class PaymentStatus(str, Enum):
    NONE = "none"
    YELLOW = "yellow"
    RED = "red"


def days_since_last_payment(last_payment_date: Optional[date], today: date) -> Optional[int]:
    """Whole days from the last payment to ``today``; None without payments."""
    if last_payment_date is None:
        return None
    return (today - last_payment_date).days


def payment_status(last_payment_date: Optional[date], today: date) -> PaymentStatus:
    """Colour a customer by how long ago they last paid.

    Under 14 days is ``none``, 14 to 29 days ``yellow`` and 30 days or more
    ``red``. Customers with no payment after the cutoff are ``none``.

    Args:
        last_payment_date: Latest bank or cash payment after the cutoff.
        today: Reference day.

    Returns:
        The status colour.
    """
    days = days_since_last_payment(last_payment_date, today)
    if days is None or days < WARNING_THRESHOLD_DAYS:
        return PaymentStatus.NONE
    if days < DANGER_THRESHOLD_DAYS:
        return PaymentStatus.YELLOW
    return PaymentStatus.RED
