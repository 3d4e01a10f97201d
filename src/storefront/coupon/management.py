"""Coupon administration — create and deactivate.

Codes are unique: an application-level pre-check gives a friendly message,
and the ``unique`` constraint on ``Coupon.code`` backs it up in storage.
Every coupon is mirrored on the payment provider so checkout can attach
the provider's promotion code; a provider outage never blocks the local
write and is only logged.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront import config
from storefront.coupon.coupon import Coupon, CouponSource, normalize_code
from storefront.domain import storefront
from storefront.gateway import get_gateway
from storefront.gateway.port import ProviderCouponRefs
from storefront.shared.exceptions import ExternalProviderError

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=50)
    discount_type = String(required=True, max_length=20)
    discount_value = Float(required=True, min_value=0.0)
    min_purchase = Float(default=0.0, min_value=0.0)
    max_discount = Float(min_value=0.0)
    expires_at = DateTime()
    usage_limit = Integer(min_value=1)
    one_per_user = Boolean(default=True)
    created_by = Identifier()


@storefront.command(part_of="Coupon")
class DeactivateCoupon:
    coupon_id = Identifier(required=True)


def sync_with_provider(coupon: Coupon) -> None:
    """Create the provider-side coupon and promotion code, linking their ids."""
    try:
        refs = get_gateway().create_coupon(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            currency=config.DEFAULT_CURRENCY,
            expires_at=coupon.expires_at,
            usage_limit=coupon.usage_limit,
        )
    except ExternalProviderError as exc:
        logger.warning("coupon_provider_sync_failed", code=coupon.code, error=str(exc))
        return

    coupon.link_provider(refs.coupon_id, refs.promotion_id)


def ensure_code_available(code) -> str:
    code = normalize_code(code)
    if not code:
        raise ValidationError({"code": ["Coupon code is required"]})
    if current_domain.repository_for(Coupon).find_by_code(code) is not None:
        raise ValidationError({"code": ["Coupon code already exists"]})
    return code


def list_coupons(source=None, page=1, limit=20):
    """Coupons for the admin listing, newest first. Returns ``(coupons, total)``."""
    if source and source not in {s.value for s in CouponSource}:
        raise ValidationError({"source": [f"Unknown coupon source: {source}"]})
    return current_domain.repository_for(Coupon).list_by_source(source, page, limit)


@storefront.command_handler(part_of=Coupon)
class ManageCouponHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        code = ensure_code_available(command.code)

        try:
            coupon = Coupon.create(
                code=code,
                discount_type=command.discount_type,
                discount_value=command.discount_value,
                min_purchase=command.min_purchase,
                max_discount=command.max_discount,
                expires_at=command.expires_at,
                usage_limit=command.usage_limit,
                one_per_user=command.one_per_user,
                created_by=command.created_by,
            )
        except ValueError as exc:
            raise ValidationError({"discount_type": [f"Unknown discount type: {command.discount_type}"]}) from exc

        sync_with_provider(coupon)
        current_domain.repository_for(Coupon).add(coupon)

        logger.info("coupon_created", coupon_id=str(coupon.id), code=coupon.code)
        return str(coupon.id)

    @handle(DeactivateCoupon)
    def deactivate_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.deactivate()
        repo.add(coupon)

        if coupon.provider_promotion_id:
            try:
                get_gateway().deactivate_coupon(
                    ProviderCouponRefs(
                        coupon_id=coupon.provider_coupon_id,
                        promotion_id=coupon.provider_promotion_id,
                    )
                )
            except ExternalProviderError as exc:
                logger.warning("coupon_provider_deactivate_failed", code=coupon.code, error=str(exc))

        logger.info("coupon_deactivated", coupon_id=str(coupon.id), code=coupon.code)
