"""Repository for the Order aggregate."""

from protean.exceptions import ObjectNotFoundError

from storefront.domain import storefront
from storefront.order.order import Order


@storefront.repository(part_of=Order)
class OrderRepository:
    def find_by_session(self, session_id) -> Order | None:
        """The order created for a provider checkout session, if any."""
        results = self._dao.query.filter(external_session_id=str(session_id)).all()
        if not results.items:
            return None
        return self.get(results.items[0].id)

    def list_for_user(self, user_id, page=1, limit=20) -> tuple[list[Order], int]:
        """Newest first, paged. Returns ``(orders, total)``."""
        results = (
            self._dao.query.filter(user_id=str(user_id))
            .order_by("-created_at")
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [self.get(o.id) for o in results.items], results.total

    def get_for_user(self, order_id, user_id) -> Order:
        """Raises ``ObjectNotFoundError`` unless the order belongs to ``user_id``."""
        try:
            order = self.get(order_id)
        except ObjectNotFoundError:
            order = None
        if order is None or str(order.user_id) != str(user_id):
            raise ObjectNotFoundError("Order not found")
        return order
