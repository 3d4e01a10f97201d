"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A confirmed payment was turned into an order."""

    __version__ = 1

    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    external_session_id = String(required=True)
    subtotal = Float(required=True)
    discount = Float(required=True)
    total = Float(required=True)
    currency = String(required=True)
    coupon_code = String()
    item_count = Integer(required=True)
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class FulfillmentIssueRecorded:
    """A post-payment fulfillment step failed and needs an operator."""

    __version__ = 1

    order_id = Identifier(required=True)
    step = String(required=True)
    message = String(required=True)
    recorded_at = DateTime(required=True)
