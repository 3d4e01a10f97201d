"""Domain events for the Cart aggregate."""

from protean.fields import Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Cart")
class CartItemAdded:
    """A product line was added to the cart, or an existing line grew."""

    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(required=True)
    size = String(max_length=50)
    color = String(max_length=50)
    price = Float(required=True)


@storefront.event(part_of="Cart")
class CartItemQuantityUpdated:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@storefront.event(part_of="Cart")
class CartItemRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    item_id = Identifier(required=True)
    product_id = Identifier(required=True)


@storefront.event(part_of="Cart")
class CartSynced:
    """Client-side items were merged into the server cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    lines_merged = Integer(required=True)
    lines_skipped = Integer(required=True)


@storefront.event(part_of="Cart")
class CartCouponApplied:
    __version__ = 1

    cart_id = Identifier(required=True)
    coupon_code = String(required=True)


@storefront.event(part_of="Cart")
class CartCouponRemoved:
    __version__ = 1

    cart_id = Identifier(required=True)
    coupon_code = String(required=True)


@storefront.event(part_of="Cart")
class CartCleared:
    """All lines and the applied coupon were dropped."""

    __version__ = 1

    cart_id = Identifier(required=True)
    user_id = Identifier(required=True)
    order_id = Identifier()  # Set when cleared by fulfillment
