"""Coupon preview — what a code would take off the shopper's current cart."""

from dataclasses import dataclass

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.cart.pricing import price_cart
from storefront.coupon.coupon import Coupon, normalize_code
from storefront.shared.money import ZERO, round2, to_decimal


@dataclass(frozen=True)
class CouponPreview:
    code: str
    discount_type: str
    discount_value: float
    calculated_discount: float
    subtotal: float
    new_total: float


def preview_coupon(code, user_id) -> CouponPreview:
    """Evaluate ``code`` against the user's cart without applying it."""
    if not normalize_code(code):
        raise ValidationError({"coupon_code": ["Coupon code is required"]})

    coupon = current_domain.repository_for(Coupon).find_by_code(code)
    if coupon is None:
        raise ObjectNotFoundError("Invalid coupon code")

    cart = current_domain.repository_for(Cart).find_for_user(user_id)
    subtotal = price_cart(cart).subtotal if cart is not None else 0.0

    coupon.evaluate(subtotal, user_id=user_id).raise_if_invalid()
    discount = coupon.compute_discount(subtotal)

    return CouponPreview(
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        calculated_discount=discount,
        subtotal=subtotal,
        new_total=round2(max(to_decimal(subtotal) - to_decimal(discount), ZERO)),
    )
