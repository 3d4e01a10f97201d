"""StripeGateway request shaping and error mapping, with the SDK patched out."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from storefront.gateway.port import CheckoutDiscount, CheckoutLineItem, ProviderCouponRefs
from storefront.gateway.stripe_adapter import StripeGateway
from storefront.shared.exceptions import CheckoutSessionError, ExternalProviderError, WebhookSignatureError

ADAPTER = "storefront.gateway.stripe_adapter.stripe"


@pytest.fixture()
def gateway():
    return StripeGateway(api_key="sk_test_123", webhook_secret="whsec_123")


def _lines():
    return [CheckoutLineItem(name="Canvas Tote", unit_amount=3000, quantity=2, description="")]


class TestCheckoutSession:
    def test_request_shape(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.checkout.Session.create.return_value = SimpleNamespace(id="cs_1", url="https://pay/cs_1")

            result = gateway.create_checkout_session(_lines(), {"user_id": "u1"}, "https://ok", "https://cancel")

        assert result.session_id == "cs_1"
        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_123"
        assert "discounts" not in kwargs
        mock_stripe.Coupon.create.assert_not_called()
        price_data = kwargs["line_items"][0]["price_data"]
        assert price_data["unit_amount"] == 3000
        assert "description" not in price_data["product_data"]

    def test_discount_sent_as_single_use_amount(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.Coupon.create.return_value = SimpleNamespace(id="co_once")
            mock_stripe.checkout.Session.create.return_value = SimpleNamespace(id="cs_1", url="https://pay/cs_1")

            gateway.create_checkout_session(
                _lines(),
                {"user_id": "u1"},
                "https://ok",
                "https://cancel",
                discount=CheckoutDiscount(name="SAVE20", amount_off=500),
            )

        coupon_kwargs = mock_stripe.Coupon.create.call_args.kwargs
        assert coupon_kwargs["amount_off"] == 500
        assert coupon_kwargs["currency"] == "usd"
        assert coupon_kwargs["duration"] == "once"
        assert coupon_kwargs["max_redemptions"] == 1
        assert "percent_off" not in coupon_kwargs
        assert mock_stripe.checkout.Session.create.call_args.kwargs["discounts"] == [{"coupon": "co_once"}]

    def test_discount_coupon_failure_wrapped(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.Coupon.create.side_effect = stripe.InvalidRequestError("amount_off too large", None)

            with pytest.raises(CheckoutSessionError, match="amount_off"):
                gateway.create_checkout_session(
                    _lines(), {}, "https://ok", "https://cancel", discount=CheckoutDiscount("X", 100)
                )

        mock_stripe.checkout.Session.create.assert_not_called()

    def test_provider_error_wrapped(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.checkout.Session.create.side_effect = stripe.InvalidRequestError("bad currency", None)

            with pytest.raises(CheckoutSessionError, match="bad currency"):
                gateway.create_checkout_session(_lines(), {}, "https://ok", "https://cancel")

        assert mock_stripe.checkout.Session.create.call_count == 1


class TestConstructEvent:
    def test_verified_event(self, gateway):
        payload = b'{"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}'
        with patch.object(stripe.Webhook, "construct_event", MagicMock()) as verify:
            event = gateway.construct_event(payload, "t=1,v1=abc")

        verify.assert_called_once_with(payload, "t=1,v1=abc", "whsec_123")
        assert event.type == "checkout.session.completed"
        assert event.data == {"id": "cs_1"}

    def test_bad_signature(self, gateway):
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=abc")
        with patch.object(stripe.Webhook, "construct_event", MagicMock(side_effect=error)):
            with pytest.raises(WebhookSignatureError):
                gateway.construct_event(b"{}", "t=1,v1=abc")


class TestCoupons:
    def test_fixed_coupon_in_minor_units(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.Coupon.create.return_value = SimpleNamespace(id="co_1")
            mock_stripe.PromotionCode.create.return_value = SimpleNamespace(id="promo_1")

            refs = gateway.create_coupon("OFF5", "fixed", 5.5, "usd", usage_limit=1)

        assert refs == ProviderCouponRefs(coupon_id="co_1", promotion_id="promo_1")
        kwargs = mock_stripe.Coupon.create.call_args.kwargs
        assert kwargs["amount_off"] == 550
        assert kwargs["currency"] == "usd"
        assert kwargs["max_redemptions"] == 1
        assert mock_stripe.PromotionCode.create.call_args.kwargs["code"] == "OFF5"

    def test_deactivate_error_wrapped(self, gateway):
        with patch(ADAPTER) as mock_stripe:
            mock_stripe.StripeError = stripe.StripeError
            mock_stripe.APIConnectionError = stripe.APIConnectionError
            mock_stripe.PromotionCode.modify.side_effect = stripe.PermissionError("nope")

            with pytest.raises(ExternalProviderError):
                gateway.deactivate_coupon(ProviderCouponRefs(coupon_id="co_1", promotion_id="promo_1"))
