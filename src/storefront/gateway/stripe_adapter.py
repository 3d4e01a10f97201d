"""Stripe payment provider adapter.

Uses the stripe-python SDK with the API key passed per request, so the
adapter never mutates the SDK's module-level configuration. Connection
failures are retried with exponential backoff. Anything else the provider
reports surfaces immediately: ``CheckoutSessionError`` while opening a
session, ``ExternalProviderError`` for coupon calls.
"""

import json

import stripe
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.coupon.discounts import DiscountType
from storefront.gateway.port import (
    CheckoutDiscount,
    CheckoutLineItem,
    CheckoutSessionResult,
    PaymentGateway,
    ProviderCouponRefs,
    ProviderEvent,
)
from storefront.shared.exceptions import CheckoutSessionError, ExternalProviderError, WebhookSignatureError
from storefront.shared.money import to_minor_units

logger = structlog.get_logger(__name__)


def provider_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(stripe.APIConnectionError),
    )


class StripeGateway(PaymentGateway):
    """Production Stripe adapter."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_checkout_session(
        self,
        line_items: list[CheckoutLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        discount: CheckoutDiscount | None = None,
    ) -> CheckoutSessionResult:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": item.currency,
                        "product_data": {
                            "name": item.name,
                            "description": item.description or None,
                            "images": [item.image_url] if item.image_url else [],
                        },
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        # Stripe rejects empty descriptions
        for entry in params["line_items"]:
            if not entry["price_data"]["product_data"]["description"]:
                del entry["price_data"]["product_data"]["description"]

        try:
            if discount is not None and discount.amount_off > 0:
                currency = line_items[0].currency if line_items else "usd"
                one_off = self._create_session_coupon(discount, currency)
                params["discounts"] = [{"coupon": one_off.id}]
            session = self._create_session(params)
        except stripe.StripeError as exc:
            logger.error("stripe_checkout_failed", error=str(exc), error_type=type(exc).__name__)
            raise CheckoutSessionError(str(exc)) from exc

        return CheckoutSessionResult(session_id=session.id, url=session.url)

    @provider_retry()
    def _create_session_coupon(self, discount, currency):
        # Redeemable once, by this session only
        return stripe.Coupon.create(
            api_key=self.api_key,
            amount_off=discount.amount_off,
            currency=currency,
            duration="once",
            max_redemptions=1,
            name=discount.name,
        )

    @provider_retry()
    def _create_session(self, params):
        return stripe.checkout.Session.create(api_key=self.api_key, **params)

    def construct_event(self, payload: bytes | str, signature: str | None) -> ProviderEvent:
        try:
            stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("webhook_signature_invalid", error=str(exc))
            raise WebhookSignatureError(str(exc)) from exc
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid payload: {exc}") from exc

        # The signature covers the raw body, so the plain JSON is now trusted
        event = json.loads(payload)
        return ProviderEvent(
            id=event.get("id", ""),
            type=event.get("type", ""),
            data=(event.get("data") or {}).get("object") or {},
        )

    def create_coupon(
        self,
        code,
        discount_type,
        discount_value,
        currency,
        expires_at=None,
        usage_limit=None,
    ) -> ProviderCouponRefs:
        params = {"duration": "once", "name": code}
        if DiscountType(discount_type) == DiscountType.PERCENTAGE:
            params["percent_off"] = discount_value
        else:
            params["amount_off"] = to_minor_units(discount_value)
            params["currency"] = currency
        if expires_at is not None:
            params["redeem_by"] = int(expires_at.timestamp())
        if usage_limit is not None:
            params["max_redemptions"] = usage_limit

        try:
            return self._create_coupon(code, params)
        except stripe.StripeError as exc:
            logger.error("stripe_coupon_create_failed", code=code, error=str(exc))
            raise ExternalProviderError(str(exc)) from exc

    @provider_retry()
    def _create_coupon(self, code, params):
        coupon = stripe.Coupon.create(api_key=self.api_key, **params)
        promotion = stripe.PromotionCode.create(api_key=self.api_key, coupon=coupon.id, code=code)
        return ProviderCouponRefs(coupon_id=coupon.id, promotion_id=promotion.id)

    def deactivate_coupon(self, refs: ProviderCouponRefs) -> None:
        if not refs.promotion_id:
            return
        try:
            self._deactivate_promotion(refs.promotion_id)
        except stripe.StripeError as exc:
            raise ExternalProviderError(str(exc)) from exc

    @provider_retry()
    def _deactivate_promotion(self, promotion_id):
        stripe.PromotionCode.modify(promotion_id, api_key=self.api_key, active=False)
