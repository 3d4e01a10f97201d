"""Payment provider port (abstract interface).

Defines the contract every provider adapter implements, so checkout,
coupon management and the webhook endpoint never talk to an SDK directly.
Amounts crossing this boundary are integer minor units.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

# Provider limits on checkout session metadata
METADATA_MAX_KEYS = 50
METADATA_VALUE_LIMIT = 500


@dataclass(frozen=True)
class CheckoutLineItem:
    name: str
    unit_amount: int  # minor units
    quantity: int
    currency: str = "usd"
    description: str = ""
    image_url: str | None = None


@dataclass(frozen=True)
class CheckoutDiscount:
    """A fixed amount taken off one checkout session, already computed by the cart."""

    name: str
    amount_off: int  # minor units


@dataclass(frozen=True)
class CheckoutSessionResult:
    """Opaque handle returned by the provider for a hosted checkout."""

    session_id: str
    url: str


@dataclass(frozen=True)
class ProviderCouponRefs:
    coupon_id: str | None = None
    promotion_id: str | None = None


@dataclass(frozen=True)
class ProviderEvent:
    """A verified provider event. ``data`` is the event's ``data.object``."""

    id: str
    type: str
    data: dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract payment provider interface."""

    @abstractmethod
    def create_checkout_session(
        self,
        line_items: list[CheckoutLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        discount: CheckoutDiscount | None = None,
    ) -> CheckoutSessionResult:
        """Open a hosted checkout session. Raises ``CheckoutSessionError`` on failure.

        ``discount`` is charged exactly as given. The provider never re-derives
        it from its own copy of the coupon, so caps and minimums stay ours.
        """
        ...

    @abstractmethod
    def construct_event(self, payload: bytes | str, signature: str | None) -> ProviderEvent:
        """Verify the signature over the raw payload. Raises ``WebhookSignatureError``."""
        ...

    @abstractmethod
    def create_coupon(
        self,
        code: str,
        discount_type: str,
        discount_value: float,
        currency: str,
        expires_at: datetime | None = None,
        usage_limit: int | None = None,
    ) -> ProviderCouponRefs:
        """Mirror a coupon on the provider side and return its identifiers."""
        ...

    @abstractmethod
    def deactivate_coupon(self, refs: ProviderCouponRefs) -> None:
        """Stop the provider from accepting the coupon's promotion code."""
        ...
