"""Checkout fulfillment — turning a confirmed payment into an order, exactly once.

The provider delivers ``checkout.session.completed`` at least once, possibly
concurrently with other sessions and possibly more than once for the same
session. For one session:

    Initiated ─(provider event, signature valid)→ Confirmed
    Confirmed → Fulfilled            order persisted, side effects attempted
    Confirmed → FulfillmentFailed    order could not be persisted
    Confirmed → AlreadyFulfilled     an order for the session already exists

Fulfillment holds a per-session lock, so the existence check and the order
write cannot interleave with a duplicate delivery. Unrelated sessions never
wait on each other. The order's id is derived from the session id, which
makes a second insert land on the same record should the check be bypassed.

After the order is persisted, each side effect (stock, coupon, cart) is
attempted independently. The payment is already captured, so a failed step
is logged and recorded on the order for an operator instead of failing the
event and triggering provider redelivery.
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import partial

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.cart.cart import Cart
from storefront.cart.pricing import line_subtotal
from storefront.checkout.metadata import FulfillmentPayload
from storefront.coupon.coupon import Coupon, CouponSource, normalize_code
from storefront.gateway import get_gateway
from storefront.gateway.port import ProviderCouponRefs, ProviderEvent
from storefront.inventory import ledger
from storefront.order.order import Order
from storefront.shared.exceptions import ExternalProviderError, FulfillmentError
from storefront.shared.locks import cart_locks, coupon_locks, session_locks
from storefront.shared.retry import version_conflict_retry
from storefront.shared.money import ZERO, from_minor_units, round2, to_decimal

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


class FulfillmentState(Enum):
    INITIATED = "initiated"
    CONFIRMED = "confirmed"
    FULFILLED = "fulfilled"
    FULFILLMENT_FAILED = "fulfillment_failed"
    ALREADY_FULFILLED = "already_fulfilled"
    IGNORED = "ignored"


@dataclass
class FulfillmentOutcome:
    state: FulfillmentState
    session_id: str | None = None
    order_id: str | None = None
    issues: list[FulfillmentError] = field(default_factory=list)


@dataclass(frozen=True)
class CheckoutConfirmation:
    """The parts of a completed checkout session fulfillment relies on."""

    session_id: str
    amount_total: int  # minor units
    currency: str
    payment_intent: str | None
    payload: FulfillmentPayload

    @classmethod
    def from_event(cls, event: ProviderEvent) -> "CheckoutConfirmation":
        session = event.data
        return cls(
            session_id=session["id"],
            amount_total=int(session.get("amount_total") or 0),
            currency=(session.get("currency") or "usd").lower(),
            payment_intent=session.get("payment_intent"),
            payload=FulfillmentPayload.from_metadata(session.get("metadata")),
        )


def handle_provider_event(payload, signature) -> FulfillmentOutcome:
    """Verify a raw provider event and fulfill it when it completes a checkout.

    Raises ``WebhookSignatureError`` before anything is read from an
    unverified payload.
    """
    event = get_gateway().construct_event(payload, signature)
    logger.info("provider_event_received", event_id=event.id, event_type=event.type)

    if event.type != CHECKOUT_COMPLETED:
        return FulfillmentOutcome(state=FulfillmentState.IGNORED)

    return CheckoutFulfillment().fulfill(CheckoutConfirmation.from_event(event))


class CheckoutFulfillment:
    def fulfill(self, confirmation: CheckoutConfirmation) -> FulfillmentOutcome:
        session_id = confirmation.session_id
        log = logger.bind(session_id=session_id)

        with session_locks.hold(session_id):
            orders = current_domain.repository_for(Order)

            existing = orders.find_by_session(session_id)
            if existing is not None:
                log.info("fulfillment_already_applied", order_id=str(existing.id))
                return FulfillmentOutcome(
                    state=FulfillmentState.ALREADY_FULFILLED,
                    session_id=session_id,
                    order_id=str(existing.id),
                )

            try:
                order = self._place_order(confirmation)
                orders.add(order)
            except Exception as exc:
                error = FulfillmentError("create_order", str(exc))
                log.exception("fulfillment_failed", step=error.step, error=error.message)
                return FulfillmentOutcome(
                    state=FulfillmentState.FULFILLMENT_FAILED,
                    session_id=session_id,
                    issues=[error],
                )

            order_id = str(order.id)
            log = log.bind(order_id=order_id)
            log.info("order_created", total=order.total, discount=order.discount)

            payload = confirmation.payload
            issues = []
            for line in payload.items:
                issues += self._attempt(
                    "decrement_stock",
                    partial(ledger.decrement, line.product_id, line.quantity, order_id=order_id),
                    log,
                    product_id=line.product_id,
                )
            if payload.coupon_code:
                issues += self._attempt(
                    "record_coupon_usage",
                    partial(self._record_coupon_usage, payload.coupon_code, payload.user_id, order_id),
                    log,
                    coupon_code=payload.coupon_code,
                )
            if payload.cart_id:
                issues += self._attempt(
                    "clear_cart",
                    partial(self._clear_cart, payload.cart_id, payload.user_id, order_id),
                    log,
                    cart_id=payload.cart_id,
                )

            if issues:
                self._record_issues(orders, order, issues, log)

            log.info("fulfillment_completed", issue_count=len(issues))
            return FulfillmentOutcome(
                state=FulfillmentState.FULFILLED,
                session_id=session_id,
                order_id=order_id,
                issues=issues,
            )

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    def _place_order(self, confirmation: CheckoutConfirmation) -> Order:
        payload = confirmation.payload
        subtotal = line_subtotal(payload.items)
        charged = from_minor_units(confirmation.amount_total)
        # The provider's settled amount is authoritative for the discount
        discount = round2(max(to_decimal(subtotal) - to_decimal(charged), ZERO))

        return Order.place(
            user_id=payload.user_id,
            external_session_id=confirmation.session_id,
            items=[
                {
                    "product_id": line.product_id,
                    "name": line.name,
                    "price": line.price,
                    "quantity": line.quantity,
                    "size": line.size,
                    "color": line.color,
                    "image_url": line.image_url,
                }
                for line in payload.items
            ],
            subtotal=subtotal,
            discount=discount,
            total=charged,
            currency=confirmation.currency,
            coupon_code=payload.coupon_code,
            payment_intent_id=confirmation.payment_intent,
        )

    def _record_coupon_usage(self, code, user_id, order_id):
        with coupon_locks.hold(normalize_code(code)):
            coupon, retire = self._save_coupon_usage(code, user_id, order_id)

        if retire and coupon.provider_promotion_id:
            try:
                get_gateway().deactivate_coupon(
                    ProviderCouponRefs(
                        coupon_id=coupon.provider_coupon_id,
                        promotion_id=coupon.provider_promotion_id,
                    )
                )
            except ExternalProviderError as exc:
                logger.warning("coupon_provider_deactivate_failed", code=coupon.code, error=str(exc))

    @staticmethod
    @version_conflict_retry()
    def _save_coupon_usage(code, user_id, order_id):
        """Returns ``(coupon, retired)``. Usage is keyed by order, so a retry never counts twice."""
        repo = current_domain.repository_for(Coupon)
        coupon = repo.find_by_code(code)
        if coupon is None:
            raise ObjectNotFoundError(f"Coupon {code} not found")

        if not coupon.record_usage(user_id=user_id, order_id=order_id):
            return coupon, False

        used_up = coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit
        retire = coupon.source == CouponSource.NEGOTIATION.value and used_up
        if retire:
            coupon.deactivate()
        repo.add(coupon)
        return coupon, retire

    def _clear_cart(self, cart_id, user_id, order_id):
        with cart_locks.hold(user_id):
            repo = current_domain.repository_for(Cart)
            cart = repo.get(cart_id)
            cart.clear(order_id=order_id)
            repo.add(cart)

    # -------------------------------------------------------------------
    # Failure bookkeeping
    # -------------------------------------------------------------------
    @staticmethod
    def _attempt(step, action, log, **context):
        """Run one side effect. Returns ``[]`` on success, ``[FulfillmentError]`` on failure."""
        try:
            action()
        except Exception as exc:
            error = FulfillmentError(step, str(exc), **context)
            log.exception("fulfillment_step_failed", step=step, error=str(exc), **context)
            return [error]
        return []

    @staticmethod
    def _record_issues(orders, order, issues, log):
        try:
            for issue in issues:
                order.record_fulfillment_issue(issue.step, issue.message, **issue.context)
            orders.add(order)
        except Exception as exc:
            log.exception("fulfillment_issues_not_recorded", error=str(exc))
