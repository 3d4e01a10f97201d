"""Discount types and the discount calculation shared by coupons and cart pricing.

A discount is a tagged variant: ``PercentageDiscount`` or ``FixedDiscount``.
Both carry a plain number; only the variant decides how it is read.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from storefront.shared.money import ZERO, round2, to_decimal


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class PercentageDiscount:
    value: float

    kind = DiscountType.PERCENTAGE

    def raw_amount(self, subtotal: Decimal) -> Decimal:
        return subtotal * to_decimal(self.value) / 100


@dataclass(frozen=True)
class FixedDiscount:
    value: float

    kind = DiscountType.FIXED

    def raw_amount(self, subtotal: Decimal) -> Decimal:  # noqa: ARG002
        return to_decimal(self.value)


Discount = PercentageDiscount | FixedDiscount

_VARIANTS = {
    DiscountType.PERCENTAGE: PercentageDiscount,
    DiscountType.FIXED: FixedDiscount,
}


def discount_for(discount_type, value) -> Discount:
    """Build the variant for a stored ``(discount_type, value)`` pair."""
    return _VARIANTS[DiscountType(discount_type)](value)


def compute_discount(discount: Discount, subtotal, max_discount=None) -> float:
    """Discount amount for ``subtotal``, always within ``[0, subtotal]``.

    The cap is applied before the subtotal ceiling, and the result is
    rounded once, at the end.
    """
    subtotal = max(to_decimal(subtotal), ZERO)
    amount = discount.raw_amount(subtotal)

    if max_discount is not None:
        amount = min(amount, to_decimal(max_discount))

    amount = min(amount, subtotal)
    return round2(max(amount, ZERO))
