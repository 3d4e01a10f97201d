"""Domain events for the Coupon aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="Coupon")
class CouponCreated:
    """A coupon was created by an administrator or the negotiation flow."""

    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    discount_type = String(required=True)
    discount_value = Float(required=True)
    source = String(required=True)
    expires_at = DateTime()
    usage_limit = Integer()


@storefront.event(part_of="Coupon")
class CouponRedeemed:
    """A fulfilled order consumed one use of the coupon."""

    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    user_id = Identifier()
    order_id = Identifier()
    used_count = Integer(required=True)
    redeemed_at = DateTime(required=True)


@storefront.event(part_of="Coupon")
class CouponDeactivated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    deactivated_at = DateTime(required=True)
