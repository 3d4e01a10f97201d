"""Checkout session initiation — from the cart, or quick-buy for one product.

Starting checkout changes nothing locally. It validates what is about to
be bought, freezes prices into a provider checkout session and embeds the
fulfillment payload in the session metadata. The order only comes into
existence when the provider confirms payment.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront import config
from storefront.cart.cart import Cart
from storefront.cart.pricing import price_cart
from storefront.catalogue.product import Product, find_active_product
from storefront.checkout.metadata import FulfillmentLine, FulfillmentPayload
from storefront.coupon.coupon import INACTIVE, Coupon
from storefront.domain import storefront
from storefront.gateway import get_gateway
from storefront.gateway.port import CheckoutDiscount, CheckoutLineItem
from storefront.inventory.ledger import require_available
from storefront.shared.exceptions import CouponNotApplicable
from storefront.shared.money import to_minor_units

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSessionRef:
    id: str
    url: str


@storefront.command(part_of="Cart")
class StartCheckout:
    user_id = Identifier(required=True)


@storefront.command(part_of="Cart")
class StartQuickCheckout:
    """Buy a single product straight away, bypassing the cart."""

    user_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(default=1, min_value=1)
    size = String(max_length=50)
    color = String(max_length=50)


def _purchasable_product(product_id) -> Product:
    product = find_active_product(product_id)
    if product is None:
        try:
            name = current_domain.repository_for(Product).get(product_id).name
        except ObjectNotFoundError:
            name = str(product_id)
        raise ValidationError({"product_id": [f'Product "{name}" is no longer available']})
    return product


def _line_item(product: Product, price, quantity) -> CheckoutLineItem:
    return CheckoutLineItem(
        name=product.name,
        unit_amount=to_minor_units(price),
        quantity=quantity,
        currency=(product.currency or config.DEFAULT_CURRENCY).lower(),
        description=(product.description or "")[:100],
        image_url=product.image_url or None,
    )


def _fulfillment_line(product: Product, price, quantity, size, color) -> FulfillmentLine:
    return FulfillmentLine(
        product_id=str(product.id),
        quantity=quantity,
        price=price,
        name=product.name,
        size=size or None,
        color=color or None,
        image_url=product.image_url or "",
    )


def _open_session(
    line_items, payload: FulfillmentPayload, discount: CheckoutDiscount | None = None
) -> CheckoutSessionRef:
    result = get_gateway().create_checkout_session(
        line_items=line_items,
        metadata=payload.to_metadata(),
        success_url=config.CHECKOUT_SUCCESS_URL,
        cancel_url=config.CHECKOUT_CANCEL_URL,
        discount=discount,
    )
    logger.info(
        "checkout_session_created",
        session_id=result.session_id,
        user_id=payload.user_id,
        cart_id=payload.cart_id,
        coupon_code=payload.coupon_code,
        discount=discount.amount_off if discount else 0,
        line_count=len(line_items),
    )
    return CheckoutSessionRef(id=result.session_id, url=result.url)


def _resolve_cart_coupon(cart: Cart):
    """Re-check the cart's coupon snapshot against the live coupon."""
    if cart.applied_coupon is None:
        return None

    coupon = current_domain.repository_for(Coupon).find_active_by_code(cart.applied_coupon.code)
    if coupon is None:
        raise CouponNotApplicable(INACTIVE)

    coupon.evaluate(price_cart(cart).subtotal, user_id=cart.user_id).raise_if_invalid()
    return coupon


def _session_discount(cart: Cart, coupon) -> CheckoutDiscount | None:
    """The cart's own discount, sent as a fixed amount so the provider charges what the cart shows."""
    if coupon is None:
        return None
    amount_off = to_minor_units(price_cart(cart).discount)
    return CheckoutDiscount(name=coupon.code, amount_off=amount_off) if amount_off > 0 else None


@storefront.command_handler(part_of=Cart)
class CheckoutHandler:
    @handle(StartCheckout)
    def start_checkout(self, command):
        cart = current_domain.repository_for(Cart).find_for_user(command.user_id)
        if cart is None or cart.is_empty:
            raise ValidationError({"cart": ["Cart is empty"]})

        line_items, lines = [], []
        for item in cart.items:
            product = _purchasable_product(item.product_id)
            require_available(product, item.quantity)
            line_items.append(_line_item(product, item.price, item.quantity))
            lines.append(_fulfillment_line(product, item.price, item.quantity, item.size, item.color))

        coupon = _resolve_cart_coupon(cart)

        payload = FulfillmentPayload(
            user_id=str(command.user_id),
            items=lines,
            cart_id=str(cart.id),
            coupon_code=coupon.code if coupon else None,
        )
        return _open_session(line_items, payload, discount=_session_discount(cart, coupon))

    @handle(StartQuickCheckout)
    def start_quick_checkout(self, command):
        product = find_active_product(command.product_id)
        if product is None:
            raise ObjectNotFoundError("Product not found")

        product.validate_variant(size=command.size, color=command.color)
        require_available(product, command.quantity)

        price = product.effective_price
        payload = FulfillmentPayload(
            user_id=str(command.user_id),
            items=[_fulfillment_line(product, price, command.quantity, command.size, command.color)],
        )
        return _open_session([_line_item(product, price, command.quantity)], payload)
