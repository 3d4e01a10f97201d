"""Cart pricing — subtotal, discount and total derived from cart state.

Nothing here is stored. The discount comes from the coupon snapshot on the
cart, never from a live coupon lookup, so rendering a cart cannot fail
because a coupon expired after it was applied.
"""

from dataclasses import dataclass

from storefront.coupon.discounts import compute_discount
from storefront.shared.money import ZERO, round2, to_decimal


@dataclass(frozen=True)
class CartPricing:
    subtotal: float
    discount: float
    total: float


def line_subtotal(lines) -> float:
    """Sum of ``price * quantity`` over anything with those two attributes."""
    return round2(sum((to_decimal(line.price) * line.quantity for line in lines), ZERO))


def price_cart(cart) -> CartPricing:
    subtotal = line_subtotal(cart.items)

    coupon = cart.applied_coupon
    discount = 0.0
    if coupon is not None:
        discount = compute_discount(coupon.discount, subtotal, coupon.max_discount)

    total = round2(max(to_decimal(subtotal) - to_decimal(discount), ZERO))
    return CartPricing(subtotal=subtotal, discount=discount, total=total)
