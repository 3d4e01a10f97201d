"""Cart item management — commands and handler.

Cart writes are read-modify-write on one user's cart, so they run under
that user's cart lock; different users never wait on each other.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.catalogue.product import find_active_product
from storefront.domain import storefront
from storefront.inventory.ledger import require_available
from storefront.shared.locks import cart_locks

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Cart")
class AddToCart:
    user_id = Identifier(required=True)
    product_id = Identifier(required=True)
    quantity = Integer(default=1, min_value=1)
    size = String(max_length=50)
    color = String(max_length=50)


@storefront.command(part_of="Cart")
class UpdateCartItem:
    user_id = Identifier(required=True)
    item_id = Identifier(required=True)
    quantity = Integer(required=True)  # <= 0 removes the line


@storefront.command(part_of="Cart")
class RemoveFromCart:
    user_id = Identifier(required=True)
    item_id = Identifier(required=True)


@storefront.command(part_of="Cart")
class ClearCart:
    user_id = Identifier(required=True)


@storefront.command(part_of="Cart")
class SyncCart:
    """Merge a client-side (pre-login) cart into the user's server cart."""

    user_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of {product_id, quantity, size, color}


def process_cart_command(command):
    """Process a cart command while holding the user's cart lock."""
    with cart_locks.hold(command.user_id):
        return current_domain.process(command, asynchronous=False)


def open_cart(user_id) -> Cart:
    """The user's cart, created on first read."""
    with cart_locks.hold(user_id):
        return current_domain.repository_for(Cart).get_or_create_for_user(user_id)


def _existing_cart(user_id) -> Cart:
    cart = current_domain.repository_for(Cart).find_for_user(user_id)
    if cart is None:
        raise ObjectNotFoundError("Cart not found")
    return cart


@storefront.command_handler(part_of=Cart)
class ManageCartItemsHandler:
    @handle(AddToCart)
    def add_to_cart(self, command):
        product = find_active_product(command.product_id)
        if product is None:
            raise ObjectNotFoundError("Product not found")

        product.validate_variant(size=command.size, color=command.color)

        repo = current_domain.repository_for(Cart)
        cart = repo.get_or_create_for_user(command.user_id)

        in_cart = cart.quantity_in_cart(command.product_id, command.size, command.color)
        require_available(product, in_cart + command.quantity)

        cart.add_item(
            product_id=command.product_id,
            quantity=command.quantity,
            price=product.effective_price,
            size=command.size,
            color=command.color,
        )
        repo.add(cart)
        return str(cart.id)

    @handle(UpdateCartItem)
    def update_cart_item(self, command):
        repo = current_domain.repository_for(Cart)
        cart = _existing_cart(command.user_id)

        if command.quantity > 0:
            item = cart.item_by_id(command.item_id)
            product = find_active_product(item.product_id)
            if product is not None:
                require_available(product, command.quantity)

        cart.update_item_quantity(command.item_id, command.quantity)
        repo.add(cart)

    @handle(RemoveFromCart)
    def remove_from_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = _existing_cart(command.user_id)
        cart.remove_item(command.item_id)
        repo.add(cart)

    @handle(ClearCart)
    def clear_cart(self, command):
        repo = current_domain.repository_for(Cart)
        cart = _existing_cart(command.user_id)
        cart.clear()
        repo.add(cart)

    @handle(SyncCart)
    def sync_cart(self, command):
        incoming = json.loads(command.items) if isinstance(command.items, str) else command.items
        if not isinstance(incoming, list) or not incoming:
            raise ValidationError({"items": ["Items array required"]})

        lines = []
        for entry in incoming:
            product = find_active_product(entry.get("product_id"))
            if product is None:
                continue
            lines.append(
                {
                    "product_id": str(product.id),
                    "quantity": entry.get("quantity") or 1,
                    "size": entry.get("size"),
                    "color": entry.get("color"),
                    "price": product.effective_price,
                    "available": product.stock or 0,
                }
            )

        repo = current_domain.repository_for(Cart)
        cart = repo.get_or_create_for_user(command.user_id)
        cart.sync_items(lines)
        repo.add(cart)

        logger.info(
            "cart_synced",
            user_id=str(command.user_id),
            received=len(incoming),
            known_products=len(lines),
        )
        return str(cart.id)
