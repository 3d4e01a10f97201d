"""Cart aggregate — one per user, holding price-snapshotted line items.

A line is identified by its ``(product, size, color)`` key. Adding a product
that already has a line grows that line instead of creating a second one,
and syncing a client-side cart goes through the same merge routine.

Each line keeps the price the product had when it went into the cart; the
price only changes when the cart is re-synced. The applied coupon is also a
snapshot, validated when applied and again when checkout starts.
"""

from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, ValueObject

from storefront.cart.events import (
    CartCleared,
    CartCouponApplied,
    CartCouponRemoved,
    CartItemAdded,
    CartItemQuantityUpdated,
    CartItemRemoved,
    CartSynced,
)
from storefront.coupon.discounts import discount_for
from storefront.domain import storefront


def line_key(product_id, size=None, color=None):
    return (str(product_id), size or None, color or None)


@storefront.value_object(part_of="Cart")
class AppliedCoupon:
    """Frozen copy of the coupon terms at the moment it was applied."""

    code = String(required=True, max_length=50)
    discount_type = String(required=True, max_length=20)
    discount_value = Float(required=True)
    max_discount = Float()

    @property
    def discount(self):
        return discount_for(self.discount_type, self.discount_value)


@storefront.entity(part_of="Cart")
class CartItem:
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    size = String(max_length=50)
    color = String(max_length=50)
    price = Float(required=True, min_value=0.0)  # Snapshot at add time
    added_at = DateTime()

    @property
    def line_key(self):
        return line_key(self.product_id, self.size, self.color)


@storefront.aggregate
class Cart:
    user_id = Identifier(required=True, unique=True)
    items = HasMany(CartItem)
    applied_coupon = ValueObject(AppliedCoupon)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, user_id):
        now = datetime.now(UTC)
        return cls(user_id=user_id, created_at=now, updated_at=now)

    @property
    def is_empty(self):
        return not self.items

    # -------------------------------------------------------------------
    # Line lookup and merge
    # -------------------------------------------------------------------
    def _find_line(self, key):
        return {item.line_key: item for item in self.items}.get(key)

    def quantity_in_cart(self, product_id, size=None, color=None):
        line = self._find_line(line_key(product_id, size, color))
        return line.quantity if line else 0

    def item_by_id(self, item_id):
        item = next((i for i in self.items if str(i.id) == str(item_id)), None)
        if item is None:
            raise ObjectNotFoundError("Item not found in cart")
        return item

    def _merge_line(self, product_id, quantity, price, size=None, color=None, refresh_price=False, max_quantity=None):
        """Grow the matching line or append a new one. Returns the line."""
        existing = self._find_line(line_key(product_id, size, color))

        if existing:
            new_quantity = existing.quantity + quantity
            if max_quantity is not None:
                new_quantity = min(new_quantity, max_quantity)
            existing.quantity = new_quantity
            if refresh_price:
                existing.price = price
            return existing

        if max_quantity is not None:
            quantity = min(quantity, max_quantity)
        item = CartItem(
            product_id=product_id,
            quantity=quantity,
            size=size or None,
            color=color or None,
            price=price,
            added_at=datetime.now(UTC),
        )
        self.add_items(item)
        return item

    # -------------------------------------------------------------------
    # Item management
    # -------------------------------------------------------------------
    def add_item(self, product_id, quantity, price, size=None, color=None):
        """Add a product line, merging with an existing line for the same variant."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        item = self._merge_line(product_id, quantity, price, size=size, color=color)
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemAdded(
                cart_id=str(self.id),
                item_id=str(item.id),
                product_id=str(product_id),
                quantity=quantity,
                size=item.size,
                color=item.color,
                price=item.price,
            )
        )
        return item

    def update_item_quantity(self, item_id, quantity):
        """Set a line's quantity. Zero or less removes the line."""
        item = self.item_by_id(item_id)
        if quantity <= 0:
            self.remove_item(item_id)
            return

        previous_quantity = item.quantity
        item.quantity = quantity
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemQuantityUpdated(
                cart_id=str(self.id),
                item_id=str(item_id),
                previous_quantity=previous_quantity,
                new_quantity=quantity,
            )
        )

    def remove_item(self, item_id):
        item = self.item_by_id(item_id)
        self.remove_items(item)
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartItemRemoved(
                cart_id=str(self.id),
                item_id=str(item_id),
                product_id=str(item.product_id),
            )
        )

    def sync_items(self, lines):
        """Merge client-side lines into the cart.

        ``lines`` holds dicts with ``product_id``, ``quantity``, ``price``,
        ``available`` and optional ``size``/``color``. Quantities are capped at
        ``available`` and the price snapshot is refreshed. Lines with nothing
        available are skipped.
        """
        merged = skipped = 0
        for line in lines:
            available = line["available"]
            if available < 1:
                skipped += 1
                continue
            self._merge_line(
                line["product_id"],
                max(int(line.get("quantity") or 1), 1),
                line["price"],
                size=line.get("size"),
                color=line.get("color"),
                refresh_price=True,
                max_quantity=available,
            )
            merged += 1

        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartSynced(
                cart_id=str(self.id),
                lines_merged=merged,
                lines_skipped=skipped,
            )
        )

    # -------------------------------------------------------------------
    # Coupon snapshot
    # -------------------------------------------------------------------
    def apply_coupon(self, coupon):
        """Store a snapshot of ``coupon``'s terms. Eligibility is checked by the caller."""
        if self.is_empty:
            raise ValidationError({"cart": ["Cart is empty"]})

        self.applied_coupon = AppliedCoupon(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            max_discount=coupon.max_discount,
        )
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCouponApplied(cart_id=str(self.id), coupon_code=coupon.code))

    def remove_coupon(self):
        if self.applied_coupon is None:
            return

        code = self.applied_coupon.code
        self.applied_coupon = None
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCouponRemoved(cart_id=str(self.id), coupon_code=code))

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def clear(self, order_id=None):
        """Empty the cart and drop the coupon snapshot."""
        for item in list(self.items):
            self.remove_items(item)
        self.applied_coupon = None
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartCleared(
                cart_id=str(self.id),
                user_id=str(self.user_id),
                order_id=str(order_id) if order_id else None,
            )
        )
