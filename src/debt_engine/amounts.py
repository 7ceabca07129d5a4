"""Money parsing and rounding helpers.

All money is handled as ``Decimal`` quantized to two places with
half-up rounding; floats are converted through their string form.
"""

import re
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def quantize(value: Decimal) -> Decimal:
    """Round a decimal to two places, half-up."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a loosely formatted money value.

    Accepts numbers and strings such as ``"1 410,50"`` or ``"1,410.50"``.
    A comma is read as the decimal separator only when no dot is present;
    otherwise commas are thousands separators.

    Args:
        value: Raw value from a ledger document or spreadsheet cell.

    Returns:
        The amount rounded to two places, or None if nothing numeric is found.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return quantize(value)
    if isinstance(value, int):
        return quantize(Decimal(value))
    if isinstance(value, float):
        return quantize(Decimal(str(value)))

    text = re.sub(r"[\s\u00a0]", "", str(value))
    if not text:
        return None
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    else:
        text = text.replace(",", "")

    match = _NUMBER_RE.search(text)
    if match is None:
        return None
    try:
        return quantize(Decimal(match.group(0)))
    except InvalidOperation:
        return None


def to_cents(amount: Decimal) -> int:
    """Convert an amount to integer cents, rounding half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
