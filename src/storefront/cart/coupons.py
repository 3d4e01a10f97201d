"""Cart coupon management — apply and remove.

Applying runs the full eligibility check against the current subtotal and
then stores a snapshot of the coupon's terms on the cart.
"""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.cart.pricing import price_cart
from storefront.coupon.coupon import Coupon
from storefront.domain import storefront


@storefront.command(part_of="Cart")
class ApplyCouponToCart:
    user_id = Identifier(required=True)
    coupon_code = String(required=True, max_length=50)


@storefront.command(part_of="Cart")
class RemoveCouponFromCart:
    user_id = Identifier(required=True)


@storefront.command_handler(part_of=Cart)
class CartCouponHandler:
    @handle(ApplyCouponToCart)
    def apply_coupon(self, command):
        coupon = current_domain.repository_for(Coupon).find_by_code(command.coupon_code)
        if coupon is None:
            raise ObjectNotFoundError("Invalid coupon code")

        repo = current_domain.repository_for(Cart)
        cart = repo.find_for_user(command.user_id)
        if cart is None or cart.is_empty:
            raise ValidationError({"cart": ["Cart is empty"]})

        coupon.evaluate(price_cart(cart).subtotal, user_id=command.user_id).raise_if_invalid()

        cart.apply_coupon(coupon)
        repo.add(cart)

    @handle(RemoveCouponFromCart)
    def remove_coupon(self, command):
        repo = current_domain.repository_for(Cart)
        cart = repo.find_for_user(command.user_id)
        if cart is None:
            raise ObjectNotFoundError("Cart not found")
        cart.remove_coupon()
        repo.add(cart)
