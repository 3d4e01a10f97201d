"""Coupon aggregate — eligibility rules, discount calculation and usage tracking.

Eligibility is checked in a fixed order and the first failing rule wins, so
a shopper always sees the most fundamental reason a code does not apply:

    inactive → expired → usage limit reached → already used by this user
    → below minimum purchase

``used_count`` only ever grows. Recording a use re-checks the limit, so a
single-use code cannot be redeemed twice even when two orders race for it.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from storefront import config
from storefront.coupon.discounts import DiscountType, compute_discount, discount_for
from storefront.coupon.events import CouponCreated, CouponDeactivated, CouponRedeemed
from storefront.domain import storefront
from storefront.shared.exceptions import CouponNotApplicable
from storefront.shared.money import format_amount, to_decimal

INACTIVE = "Coupon is inactive"
EXPIRED = "Coupon has expired"
LIMIT_REACHED = "Coupon usage limit reached"
ALREADY_USED = "You have already used this coupon"

NEGOTIATED_COUPON_TTL = timedelta(hours=config.NEGOTIATED_COUPON_TTL_HOURS)


class CouponSource(Enum):
    MANUAL = "manual"
    NEGOTIATION = "negotiation"


def normalize_code(code):
    return (code or "").strip().upper()


def _as_utc(value):
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class CouponEvaluation:
    valid: bool
    reason: str | None = None

    def raise_if_invalid(self):
        if not self.valid:
            raise CouponNotApplicable(self.reason)


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Coupon")
class NegotiationDetails:
    """Who negotiated the coupon, for which product, and why."""

    user_id = Identifier()
    product_id = Identifier()
    reason = String(max_length=500, default="")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Coupon")
class CouponRedemption:
    user_id = Identifier()
    order_id = Identifier()
    redeemed_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Coupon:
    code = String(required=True, max_length=50, unique=True)
    discount_type = String(required=True, choices=DiscountType)
    discount_value = Float(required=True, min_value=0.0)
    min_purchase = Float(default=0.0, min_value=0.0)
    max_discount = Float(min_value=0.0)  # None = no cap
    expires_at = DateTime()  # None = never expires
    usage_limit = Integer(min_value=0)  # None = unlimited
    used_count = Integer(default=0, min_value=0)
    redemptions = HasMany(CouponRedemption)
    one_per_user = Boolean(default=True)
    is_active = Boolean(default=True)
    source = String(choices=CouponSource, default=CouponSource.MANUAL.value)
    negotiation = ValueObject(NegotiationDetails)
    provider_coupon_id = String(max_length=255)
    provider_promotion_id = String(max_length=255)
    created_by = Identifier()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def percentage_cannot_exceed_one_hundred(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and (self.discount_value or 0) > 100:
            raise ValidationError({"discount_value": ["Percentage discount cannot exceed 100"]})

    @invariant.post
    def used_count_cannot_exceed_usage_limit(self):
        if self.usage_limit is not None and (self.used_count or 0) > self.usage_limit:
            raise ValidationError({"used_count": ["Coupon has been used more times than its limit"]})

    # -------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code,
        discount_type,
        discount_value,
        min_purchase=0.0,
        max_discount=None,
        expires_at=None,
        usage_limit=None,
        one_per_user=True,
        created_by=None,
    ):
        now = datetime.now(UTC)
        coupon = cls(
            code=normalize_code(code),
            discount_type=DiscountType(discount_type).value,
            discount_value=discount_value,
            min_purchase=min_purchase or 0.0,
            max_discount=max_discount,
            expires_at=_as_utc(expires_at),
            usage_limit=usage_limit,
            one_per_user=one_per_user,
            source=CouponSource.MANUAL.value,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        coupon._raise_created()
        return coupon

    @classmethod
    def create_negotiated(
        cls,
        code,
        discount_type,
        discount_value,
        user_id,
        product_id,
        reason=None,
        ttl=NEGOTIATED_COUPON_TTL,
    ):
        """Single-use, short-lived coupon produced by the haggle flow."""
        now = datetime.now(UTC)
        coupon = cls(
            code=normalize_code(code),
            discount_type=DiscountType(discount_type).value,
            discount_value=discount_value,
            min_purchase=0.0,
            expires_at=now + ttl,
            usage_limit=1,
            one_per_user=True,
            source=CouponSource.NEGOTIATION.value,
            negotiation=NegotiationDetails(
                user_id=user_id,
                product_id=product_id,
                reason=reason or "Negotiated discount",
            ),
            created_at=now,
            updated_at=now,
        )
        coupon._raise_created()
        return coupon

    def _raise_created(self):
        self.raise_(
            CouponCreated(
                coupon_id=str(self.id),
                code=self.code,
                discount_type=self.discount_type,
                discount_value=self.discount_value,
                source=self.source,
                expires_at=self.expires_at,
                usage_limit=self.usage_limit,
            )
        )

    # -------------------------------------------------------------------
    # Eligibility and calculation
    # -------------------------------------------------------------------
    @property
    def discount(self):
        return discount_for(self.discount_type, self.discount_value)

    def has_been_used_by(self, user_id):
        return any(str(r.user_id) == str(user_id) for r in self.redemptions if r.user_id)

    def has_redemption_for(self, order_id):
        return any(str(r.order_id) == str(order_id) for r in self.redemptions if r.order_id)

    def evaluate(self, subtotal, user_id=None, now=None):
        """Check the coupon against a cart subtotal and shopper; first failing rule wins."""
        now = now or datetime.now(UTC)

        if not self.is_active:
            return CouponEvaluation(False, INACTIVE)

        if self.expires_at is not None and now > _as_utc(self.expires_at):
            return CouponEvaluation(False, EXPIRED)

        if self.usage_limit is not None and (self.used_count or 0) >= self.usage_limit:
            return CouponEvaluation(False, LIMIT_REACHED)

        if self.one_per_user and user_id and self.has_been_used_by(user_id):
            return CouponEvaluation(False, ALREADY_USED)

        if to_decimal(subtotal) < to_decimal(self.min_purchase or 0):
            return CouponEvaluation(False, f"Minimum purchase of {format_amount(self.min_purchase)} required")

        return CouponEvaluation(True)

    def compute_discount(self, subtotal):
        return compute_discount(self.discount, subtotal, self.max_discount)

    # -------------------------------------------------------------------
    # Usage
    # -------------------------------------------------------------------
    def record_usage(self, user_id=None, order_id=None):
        """Consume one use. Returns False when this order was already recorded."""
        if order_id and self.has_redemption_for(order_id):
            return False

        if self.usage_limit is not None and (self.used_count or 0) >= self.usage_limit:
            raise CouponNotApplicable(LIMIT_REACHED)

        now = datetime.now(UTC)
        self.used_count = (self.used_count or 0) + 1
        self.add_redemptions(
            CouponRedemption(
                user_id=user_id,
                order_id=order_id,
                redeemed_at=now,
            )
        )
        self.updated_at = now

        self.raise_(
            CouponRedeemed(
                coupon_id=str(self.id),
                code=self.code,
                user_id=str(user_id) if user_id else None,
                order_id=str(order_id) if order_id else None,
                used_count=self.used_count,
                redeemed_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def link_provider(self, provider_coupon_id, provider_promotion_id):
        self.provider_coupon_id = provider_coupon_id
        self.provider_promotion_id = provider_promotion_id
        self.updated_at = datetime.now(UTC)

    def deactivate(self):
        """Soft-deactivate. Coupons are never deleted."""
        if not self.is_active:
            return

        now = datetime.now(UTC)
        self.is_active = False
        self.updated_at = now

        self.raise_(
            CouponDeactivated(
                coupon_id=str(self.id),
                code=self.code,
                deactivated_at=now,
            )
        )
