"""Haggle mode — negotiated discounts and the single-use coupons they produce.

``validate_negotiated_discount`` is a pure gate: it never touches a coupon.
Only when it allows an offer does ``GenerateNegotiatedCoupon`` create one,
valid for a day and redeemable once.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from storefront.catalogue.product import Product
from storefront.coupon.coupon import Coupon
from storefront.coupon.discounts import DiscountType, compute_discount, discount_for
from storefront.coupon.management import sync_with_provider
from storefront.domain import storefront
from storefront.shared.exceptions import DiscountRejected
from storefront.shared.money import ZERO, round2, to_decimal

logger = structlog.get_logger(__name__)

NOT_ELIGIBLE = "This product is not eligible for negotiation."
NO_FLOOR_PRICE = "No negotiation price configured for this product."


@dataclass(frozen=True)
class NegotiationAllowed:
    discount_amount: float
    effective_price: float
    max_discount: float

    allowed = True


@dataclass(frozen=True)
class NegotiationRejected:
    reason: str
    max_discount: float = 0.0
    max_percentage: float | None = None

    allowed = False


def validate_negotiated_discount(product: Product, discount_type, discount_value):
    """Check a proposed discount against the product's hidden floor price."""
    if not product.negotiation_enabled:
        return NegotiationRejected(NOT_ELIGIBLE)

    floor = to_decimal(product.hidden_bottom_price)
    if floor <= ZERO:
        return NegotiationRejected(NO_FLOOR_PRICE)

    current = to_decimal(product.effective_price)
    amount = to_decimal(compute_discount(discount_for(discount_type, discount_value), current))
    effective = current - amount
    max_discount = current - floor
    max_percentage = 0.0
    if current > ZERO:
        max_percentage = float((max_discount / current * 100).quantize(to_decimal("0.1"), rounding=ROUND_FLOOR))

    if effective < floor:
        return NegotiationRejected(
            reason=(
                "Discount exceeds our minimum price. "
                f"Maximum discount available is ${round2(max_discount):.2f} ({max_percentage}%)."
            ),
            max_discount=round2(max_discount),
            max_percentage=max_percentage,
        )

    return NegotiationAllowed(
        discount_amount=round2(amount),
        effective_price=round2(effective),
        max_discount=round2(max_discount),
    )


# ---------------------------------------------------------------------------
# Discount tiers
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class DiscountTier:
    tier: str
    min_percentage: int
    max_percentage: int
    description: str
    action: str | None = None
    scenarios: tuple[str, ...] = ()


DISCOUNT_TIERS = (
    DiscountTier(
        "positive_reason",
        5,
        15,
        "Generous - for genuine milestones",
        scenarios=("birthday", "anniversary", "first time", "student", "graduation"),
    ),
    DiscountTier(
        "bulk_purchase",
        7,
        20,
        "Volume discount - for bulk buyers",
        scenarios=("buying multiple", "bulk", "two or more", "several items", "stocking up"),
    ),
    DiscountTier(
        "special_occasion",
        5,
        12,
        "Occasion-based - moderate discount",
        scenarios=("wedding", "engagement", "baby shower", "housewarming", "christmas", "eid", "valentine"),
    ),
    DiscountTier(
        "rude_behavior",
        0,
        0,
        "No discount - may increase price",
        action="reject",
        scenarios=("rude", "demanding", "threat", "complaint", "worst"),
    ),
)

NEUTRAL_TIER = DiscountTier("neutral", 0, 5, "Small gesture or polite decline")


def suggest_discount_tier(scenario: str) -> DiscountTier:
    """Advisory tier for a shopper's stated reason; first keyword match wins."""
    normalized = (scenario or "").lower()
    for tier in DISCOUNT_TIERS:
        if any(keyword in normalized for keyword in tier.scenarios):
            return tier
    return NEUTRAL_TIER


def coupon_prefix(reason) -> str:
    reason = (reason or "").lower()
    if "birthday" in reason:
        return "BDAY"
    if "bulk" in reason:
        return "BULK"
    return "DEAL"


# ---------------------------------------------------------------------------
# Coupon generation
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class NegotiatedCoupon:
    code: str
    discount_type: str
    discount_value: float
    discount_amount: float
    original_price: float
    effective_price: float
    expires_at: datetime


@storefront.command(part_of="Coupon")
class GenerateNegotiatedCoupon:
    user_id = Identifier(required=True)
    product_id = Identifier(required=True)
    discount_type = String(required=True, max_length=20)
    discount_value = Float(required=True, min_value=0.0)
    reason = String(max_length=500)


def _unique_code(repo, prefix, attempts=5):
    for _ in range(attempts):
        code = f"{prefix}-{uuid4().hex[:6].upper()}"
        if repo.find_by_code(code) is None:
            return code
    raise ValidationError({"code": ["Could not allocate a unique coupon code"]})


@storefront.command_handler(part_of=Coupon)
class NegotiationHandler:
    @handle(GenerateNegotiatedCoupon)
    def generate_coupon(self, command):
        if command.discount_type not in {t.value for t in DiscountType}:
            raise ValidationError({"discount_type": [f"Unknown discount type: {command.discount_type}"]})

        product = current_domain.repository_for(Product).get(command.product_id)

        verdict = validate_negotiated_discount(product, command.discount_type, command.discount_value)
        if not verdict.allowed:
            logger.info(
                "negotiation_rejected",
                product_id=str(product.id),
                user_id=str(command.user_id),
                reason=verdict.reason,
            )
            raise DiscountRejected(verdict.reason, verdict.max_discount, verdict.max_percentage)

        repo = current_domain.repository_for(Coupon)
        coupon = Coupon.create_negotiated(
            code=_unique_code(repo, coupon_prefix(command.reason)),
            discount_type=command.discount_type,
            discount_value=command.discount_value,
            user_id=command.user_id,
            product_id=command.product_id,
            reason=command.reason,
        )
        sync_with_provider(coupon)
        repo.add(coupon)

        logger.info(
            "negotiated_coupon_created",
            code=coupon.code,
            product_id=str(product.id),
            user_id=str(command.user_id),
            discount_amount=verdict.discount_amount,
        )

        return NegotiatedCoupon(
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            discount_amount=verdict.discount_amount,
            original_price=round2(product.effective_price),
            effective_price=verdict.effective_price,
            expires_at=coupon.expires_at,
        )
