"""Repository for the Coupon aggregate."""

from storefront.coupon.coupon import Coupon, normalize_code
from storefront.domain import storefront


@storefront.repository(part_of=Coupon)
class CouponRepository:
    def find_by_code(self, code) -> Coupon | None:
        """Find a coupon by code, active or not. Codes are case-insensitive."""
        results = self._dao.query.filter(code=normalize_code(code)).all()
        if not results.items:
            return None
        return self.get(results.items[0].id)

    def find_active_by_code(self, code) -> Coupon | None:
        coupon = self.find_by_code(code)
        if coupon is None or not coupon.is_active:
            return None
        return coupon

    def list_by_source(self, source=None, page=1, limit=20) -> tuple[list[Coupon], int]:
        """Newest first, paged. Returns ``(coupons, total)``."""
        query = self._dao.query
        if source:
            query = query.filter(source=source)
        results = query.order_by("-created_at").offset((page - 1) * limit).limit(limit).all()
        return [self.get(c.id) for c in results.items], results.total
