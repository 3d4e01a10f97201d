"""Fixed-point money helpers.

Aggregates store amounts in Protean ``Float`` fields, but every computation
goes through ``Decimal`` and is quantized half-up to cents at the point a
value becomes visible to a user or a ledger.
"""

from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
    return Decimal(str(value))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def round2(value) -> float:
    """Round half-up to two decimal places."""
    return float(quantize(value))


def to_minor_units(value) -> int:
    """Convert a major-unit amount (e.g. dollars) to integer minor units (cents)."""
    return int((to_decimal(value) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount) -> float:
    """Convert integer minor units back to a major-unit amount."""
    return float((Decimal(int(amount or 0)) / 100).quantize(CENTS))


def format_amount(value) -> str:
    return f"${quantize(value)}"
