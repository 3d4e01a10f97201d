"""Repository for the Cart aggregate."""

from storefront.cart.cart import Cart
from storefront.domain import storefront


@storefront.repository(part_of=Cart)
class CartRepository:
    def find_for_user(self, user_id) -> Cart | None:
        results = self._dao.query.filter(user_id=str(user_id)).all()
        if not results.items:
            return None
        return self.get(results.items[0].id)

    def get_or_create_for_user(self, user_id) -> Cart:
        """Carts are created lazily, on first read or first add."""
        cart = self.find_for_user(user_id)
        if cart is None:
            cart = Cart.create(user_id=user_id)
            self.add(cart)
        return cart
