"""Configurable in-process payment provider for development and testing.

Mimics the provider closely enough to drive the whole purchase loop
without network calls. Sessions are remembered with their discount and
metadata is held to the provider's size limits. Webhook payloads are
signed with HMAC-SHA256 over ``"{timestamp}.{payload}"`` and checked
against a timestamp tolerance the way the real provider does it.
``complete_session`` plays the provider's part of sending
``checkout.session.completed``.
"""

import hashlib
import hmac
import json
import time
from uuid import uuid4

from storefront.gateway.port import (
    METADATA_MAX_KEYS,
    METADATA_VALUE_LIMIT,
    CheckoutDiscount,
    CheckoutLineItem,
    CheckoutSessionResult,
    PaymentGateway,
    ProviderCouponRefs,
    ProviderEvent,
)
from storefront.shared.exceptions import CheckoutSessionError, ExternalProviderError, WebhookSignatureError

FAKE_WEBHOOK_SECRET = "whsec_fake"
DEFAULT_TOLERANCE = 300  # seconds, as the real provider


def _check_metadata(metadata: dict[str, str]) -> None:
    if len(metadata) > METADATA_MAX_KEYS:
        raise CheckoutSessionError(f"Metadata can have at most {METADATA_MAX_KEYS} keys")
    for key, value in metadata.items():
        if len(str(value)) > METADATA_VALUE_LIMIT:
            raise CheckoutSessionError(
                f"Metadata values can have up to {METADATA_VALUE_LIMIT} characters, but {key!r} has {len(str(value))}"
            )


class FakeGateway(PaymentGateway):
    """Configurable fake payment provider."""

    def __init__(self, webhook_secret: str = FAKE_WEBHOOK_SECRET, tolerance: int = DEFAULT_TOLERANCE) -> None:
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.should_succeed: bool = True
        self.failure_reason: str = "Provider unavailable"
        self.calls: list[dict] = []
        self.sessions: dict[str, dict] = {}
        self.promotions: dict[str, dict] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Provider unavailable") -> None:
        """Configure provider behaviour at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def create_checkout_session(
        self,
        line_items: list[CheckoutLineItem],
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        discount: CheckoutDiscount | None = None,
    ) -> CheckoutSessionResult:
        self.calls.append(
            {
                "method": "create_checkout_session",
                "line_items": list(line_items),
                "metadata": dict(metadata),
                "discount": discount,
            }
        )

        if not self.should_succeed:
            raise CheckoutSessionError(self.failure_reason)
        _check_metadata(metadata)

        session_id = f"cs_fake_{uuid4().hex[:16]}"
        self.sessions[session_id] = {
            "line_items": list(line_items),
            "metadata": dict(metadata),
            "discount": discount,
            "currency": line_items[0].currency if line_items else "usd",
            "success_url": success_url.replace("{CHECKOUT_SESSION_ID}", session_id),
            "cancel_url": cancel_url,
        }
        return CheckoutSessionResult(
            session_id=session_id,
            url=f"https://checkout.fake.test/pay/{session_id}",
        )

    def settled_amount(self, session_id: str) -> int:
        """What the provider would charge for the session, discount applied."""
        session = self.sessions[session_id]
        subtotal = sum(item.unit_amount * item.quantity for item in session["line_items"])
        discount = session["discount"]
        if discount is None:
            return subtotal
        return max(subtotal - discount.amount_off, 0)

    def complete_session(
        self,
        session_id: str,
        amount_total: int | None = None,
        payment_intent: str | None = None,
    ) -> tuple[str, str]:
        """Build the signed ``checkout.session.completed`` payload for a session.

        Returns ``(payload, signature_header)`` ready to post to the webhook.
        """
        session = self.sessions[session_id]
        event = {
            "id": f"evt_fake_{uuid4().hex[:16]}",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "amount_total": self.settled_amount(session_id) if amount_total is None else amount_total,
                    "currency": session["currency"],
                    "payment_intent": payment_intent or f"pi_fake_{uuid4().hex[:16]}",
                    "payment_status": "paid",
                    "metadata": dict(session["metadata"]),
                }
            },
        }
        payload = json.dumps(event)
        return payload, self.sign(payload)

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def sign(self, payload: str, timestamp: int | None = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = hmac.new(
            self.webhook_secret.encode(),
            f"{timestamp}.{payload}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={digest}"

    def construct_event(self, payload: bytes | str, signature: str | None) -> ProviderEvent:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")

        if not signature:
            raise WebhookSignatureError("Missing signature header")

        parts = dict(part.split("=", 1) for part in signature.split(",") if "=" in part)
        timestamp = parts.get("t")
        if not timestamp or "v1" not in parts:
            raise WebhookSignatureError("Malformed signature header")

        expected = self.sign(payload, int(timestamp)) if timestamp.isdigit() else ""
        if not hmac.compare_digest(expected, f"t={timestamp},v1={parts['v1']}"):
            raise WebhookSignatureError("No signatures found matching the expected signature for payload")

        if self.tolerance and int(timestamp) < time.time() - self.tolerance:
            raise WebhookSignatureError("Timestamp outside the tolerance zone")

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid payload: {exc}") from exc

        return ProviderEvent(
            id=event.get("id", ""),
            type=event.get("type", ""),
            data=(event.get("data") or {}).get("object") or {},
        )

    # -------------------------------------------------------------------
    # Coupons
    # -------------------------------------------------------------------
    def create_coupon(
        self,
        code,
        discount_type,
        discount_value,
        currency,
        expires_at=None,
        usage_limit=None,
    ) -> ProviderCouponRefs:
        self.calls.append({"method": "create_coupon", "code": code})

        if not self.should_succeed:
            raise ExternalProviderError(self.failure_reason)

        refs = ProviderCouponRefs(
            coupon_id=f"coupon_fake_{uuid4().hex[:12]}",
            promotion_id=f"promo_fake_{uuid4().hex[:12]}",
        )
        self.promotions[refs.promotion_id] = {
            "code": code,
            "discount_type": discount_type,
            "discount_value": discount_value,
            "currency": currency,
            "active": True,
        }
        return refs

    def deactivate_coupon(self, refs: ProviderCouponRefs) -> None:
        self.calls.append({"method": "deactivate_coupon", "promotion_id": refs.promotion_id})
        if refs.promotion_id in self.promotions:
            self.promotions[refs.promotion_id]["active"] = False
