"""Order aggregate — the durable record of one paid checkout session.

An order is created exactly once per provider checkout session. Its identity
is derived from the session id, so the session id works as an idempotency
key twice over: the fulfillment pipeline looks it up before doing anything,
and a second insert for the same session lands on the same record.

Status machine:
    PENDING → PAID → PROCESSING → SHIPPED → DELIVERED
    CANCELLED and REFUNDED are terminal alternates.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import NAMESPACE_URL, uuid5

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, Text

from storefront.domain import storefront
from storefront.order.events import FulfillmentIssueRecorded, OrderPlaced, OrderStatusChanged


class OrderStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

_SESSION_NAMESPACE = uuid5(NAMESPACE_URL, "storefront/checkout-session")


def order_id_for_session(session_id) -> str:
    """Deterministic order id for a provider checkout session."""
    return str(uuid5(_SESSION_NAMESPACE, str(session_id)))


@storefront.entity(part_of="Order")
class OrderItem:
    """Fully denormalised line; independent of the product's current state."""

    product_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    size = String(max_length=50)
    color = String(max_length=50)
    image_url = String(max_length=500)


@storefront.aggregate
class Order:
    user_id = Identifier(required=True)
    items = HasMany(OrderItem)
    subtotal = Float(required=True, min_value=0.0)
    discount = Float(default=0.0, min_value=0.0)
    coupon_code = String(max_length=50)
    total = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="usd")
    external_session_id = String(required=True, max_length=255, unique=True)
    payment_intent_id = String(max_length=255)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    fulfillment_issues = Text()  # JSON array of {step, message, recorded_at}
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        user_id,
        external_session_id,
        items,
        subtotal,
        discount,
        total,
        currency="usd",
        coupon_code=None,
        payment_intent_id=None,
    ):
        """Record a paid checkout session as an order.

        ``items`` holds dicts with product_id, name, price, quantity and
        optional size, color and image_url.
        """
        if not items:
            raise ValidationError({"items": ["Order must have at least one item"]})

        now = datetime.now(UTC)
        order = cls(
            id=order_id_for_session(external_session_id),
            user_id=user_id,
            items=[
                OrderItem(
                    product_id=item["product_id"],
                    name=item["name"],
                    price=item["price"],
                    quantity=item["quantity"],
                    size=item.get("size"),
                    color=item.get("color"),
                    image_url=item.get("image_url"),
                )
                for item in items
            ],
            subtotal=subtotal,
            discount=discount,
            total=total,
            currency=(currency or "usd").lower(),
            coupon_code=coupon_code or None,
            external_session_id=external_session_id,
            payment_intent_id=payment_intent_id,
            status=OrderStatus.PENDING.value,
            fulfillment_issues=json.dumps([]),
            created_at=now,
            updated_at=now,
        )
        order.transition_to(OrderStatus.PAID)

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                user_id=str(user_id),
                external_session_id=external_session_id,
                subtotal=order.subtotal,
                discount=order.discount,
                total=order.total,
                currency=order.currency,
                coupon_code=order.coupon_code,
                item_count=len(order.items),
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    def transition_to(self, new_status: OrderStatus):
        current = OrderStatus(self.status)
        if new_status not in _VALID_TRANSITIONS[current]:
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {new_status.value}"]})

        now = datetime.now(UTC)
        self.status = new_status.value
        self.updated_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                previous_status=current.value,
                new_status=new_status.value,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Fulfillment issues
    # -------------------------------------------------------------------
    @property
    def issues(self):
        return json.loads(self.fulfillment_issues) if self.fulfillment_issues else []

    def record_fulfillment_issue(self, step, message, **context):
        now = datetime.now(UTC)
        issues = self.issues
        issues.append({"step": step, "message": message, "recorded_at": now.isoformat(), **context})
        self.fulfillment_issues = json.dumps(issues)
        self.updated_at = now

        self.raise_(
            FulfillmentIssueRecorded(
                order_id=str(self.id),
                step=step,
                message=message,
                recorded_at=now,
            )
        )
