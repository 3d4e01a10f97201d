"""Storefront bounded context — carts, coupons, checkout and order fulfillment.

Cart pricing and the coupon engine run synchronously against locally held
state. Checkout hands the frozen cart to the payment provider, and the
fulfillment pipeline turns the provider's confirmation event into an Order
exactly once per checkout session.
"""

import structlog
from protean.domain import Domain

storefront = Domain(name="storefront")

logger = structlog.get_logger(__name__)
