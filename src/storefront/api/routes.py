"""FastAPI routes for the storefront — cart, coupons, clerk, checkout, orders.

The acting user arrives as an opaque ``X-User-Id`` header set by the
authentication layer in front of this service.
"""

import json
import math

import structlog
from fastapi import APIRouter, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from storefront import config
from storefront.api.schemas import (
    AddToCartRequest,
    AppliedCouponSchema,
    CartItemSchema,
    CartResponse,
    CheckoutSessionResponse,
    ConfigureGatewayRequest,
    CouponCodeRequest,
    CouponIdResponse,
    CouponListResponse,
    CouponPreviewResponse,
    CouponSchema,
    CreateCouponRequest,
    DiscountTierResponse,
    GatewayConfigResponse,
    GenerateCouponRequest,
    NegotiatedCouponResponse,
    OrderItemSchema,
    OrderListResponse,
    OrderSchema,
    QuickCheckoutRequest,
    SyncCartRequest,
    UpdateCartItemRequest,
    WebhookAckResponse,
)
from storefront.cart.coupons import ApplyCouponToCart, RemoveCouponFromCart
from storefront.cart.items import (
    AddToCart,
    ClearCart,
    RemoveFromCart,
    SyncCart,
    UpdateCartItem,
    open_cart,
    process_cart_command,
)
from storefront.cart.pricing import price_cart
from storefront.checkout.session import StartCheckout, StartQuickCheckout
from storefront.coupon.management import CreateCoupon, DeactivateCoupon, list_coupons
from storefront.coupon.negotiation import GenerateNegotiatedCoupon, suggest_discount_tier
from storefront.coupon.preview import preview_coupon
from storefront.fulfillment.pipeline import handle_provider_event
from storefront.gateway import get_gateway
from storefront.gateway.fake_adapter import FakeGateway
from storefront.order.order import Order
from storefront.shared.exceptions import CheckoutSessionError, DiscountRejected, WebhookSignatureError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------
def _cart_response(cart) -> CartResponse:
    pricing = price_cart(cart)
    coupon = cart.applied_coupon
    return CartResponse(
        id=str(cart.id),
        items=[
            CartItemSchema(
                id=str(item.id),
                product_id=str(item.product_id),
                quantity=item.quantity,
                size=item.size,
                color=item.color,
                price=item.price,
            )
            for item in cart.items
        ],
        applied_coupon=(
            AppliedCouponSchema(
                code=coupon.code,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value,
                max_discount=coupon.max_discount,
            )
            if coupon
            else None
        ),
        subtotal=pricing.subtotal,
        discount=pricing.discount,
        total=pricing.total,
    )


def _coupon_schema(coupon) -> CouponSchema:
    return CouponSchema(
        id=str(coupon.id),
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        min_purchase=coupon.min_purchase or 0.0,
        max_discount=coupon.max_discount,
        expires_at=coupon.expires_at,
        usage_limit=coupon.usage_limit,
        used_count=coupon.used_count or 0,
        one_per_user=coupon.one_per_user,
        is_active=coupon.is_active,
        source=coupon.source,
    )


def _order_schema(order) -> OrderSchema:
    return OrderSchema(
        id=str(order.id),
        items=[
            OrderItemSchema(
                product_id=str(item.product_id),
                name=item.name,
                price=item.price,
                quantity=item.quantity,
                size=item.size,
                color=item.color,
                image_url=item.image_url,
            )
            for item in order.items
        ],
        subtotal=order.subtotal,
        discount=order.discount,
        coupon_code=order.coupon_code,
        total=order.total,
        currency=order.currency,
        status=order.status,
        external_session_id=order.external_session_id,
        created_at=order.created_at,
    )


def _pages(total, limit):
    return math.ceil(total / limit) if limit else 0


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/cart", tags=["cart"])


@cart_router.get("", response_model=CartResponse)
async def get_cart(x_user_id: str = Header()) -> CartResponse:
    return _cart_response(open_cart(x_user_id))


@cart_router.post("/items", response_model=CartResponse)
async def add_to_cart(body: AddToCartRequest, x_user_id: str = Header()) -> CartResponse:
    command = AddToCart(
        user_id=x_user_id,
        product_id=body.product_id,
        quantity=body.quantity,
        size=body.size,
        color=body.color,
    )
    process_cart_command(command)
    return _cart_response(open_cart(x_user_id))


@cart_router.put("/items", response_model=CartResponse)
async def update_cart_item(body: UpdateCartItemRequest, x_user_id: str = Header()) -> CartResponse:
    process_cart_command(UpdateCartItem(user_id=x_user_id, item_id=body.item_id, quantity=body.quantity))
    return _cart_response(open_cart(x_user_id))


@cart_router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(item_id: str, x_user_id: str = Header()) -> CartResponse:
    process_cart_command(RemoveFromCart(user_id=x_user_id, item_id=item_id))
    return _cart_response(open_cart(x_user_id))


@cart_router.delete("", response_model=CartResponse)
async def clear_cart(x_user_id: str = Header()) -> CartResponse:
    process_cart_command(ClearCart(user_id=x_user_id))
    return _cart_response(open_cart(x_user_id))


@cart_router.post("/sync", response_model=CartResponse)
async def sync_cart(body: SyncCartRequest, x_user_id: str = Header()) -> CartResponse:
    """Merge the pre-login (local storage) cart into the user's cart."""
    items = [item.model_dump() for item in body.items]
    process_cart_command(SyncCart(user_id=x_user_id, items=json.dumps(items)))
    return _cart_response(open_cart(x_user_id))


@cart_router.post("/coupon", response_model=CartResponse)
async def apply_coupon(body: CouponCodeRequest, x_user_id: str = Header()) -> CartResponse:
    process_cart_command(ApplyCouponToCart(user_id=x_user_id, coupon_code=body.code))
    return _cart_response(open_cart(x_user_id))


@cart_router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(x_user_id: str = Header()) -> CartResponse:
    process_cart_command(RemoveCouponFromCart(user_id=x_user_id))
    return _cart_response(open_cart(x_user_id))


# ---------------------------------------------------------------------------
# Coupon Router
# ---------------------------------------------------------------------------
coupon_router = APIRouter(prefix="/coupons", tags=["coupons"])


@coupon_router.post("", status_code=201, response_model=CouponIdResponse)
async def create_coupon(body: CreateCouponRequest, x_user_id: str = Header()) -> CouponIdResponse:
    command = CreateCoupon(
        code=body.code,
        discount_type=body.discount_type,
        discount_value=body.discount_value,
        min_purchase=body.min_purchase,
        max_discount=body.max_discount,
        expires_at=body.expires_at,
        usage_limit=body.usage_limit,
        one_per_user=body.one_per_user,
        created_by=x_user_id,
    )
    coupon_id = current_domain.process(command, asynchronous=False)
    return CouponIdResponse(coupon_id=coupon_id)


@coupon_router.get("", response_model=CouponListResponse)
async def get_coupons(
    source: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> CouponListResponse:
    coupons, total = list_coupons(source=source, page=page, limit=limit)
    return CouponListResponse(
        coupons=[_coupon_schema(c) for c in coupons],
        total=total,
        page=page,
        pages=_pages(total, limit),
    )


@coupon_router.post("/{coupon_id}/deactivate", response_model=CouponIdResponse)
async def deactivate_coupon(coupon_id: str) -> CouponIdResponse:
    current_domain.process(DeactivateCoupon(coupon_id=coupon_id), asynchronous=False)
    return CouponIdResponse(coupon_id=coupon_id)


@coupon_router.post("/validate", response_model=CouponPreviewResponse)
async def validate_coupon(body: CouponCodeRequest, x_user_id: str = Header()) -> CouponPreviewResponse:
    """Preview a code against the current cart without applying it."""
    preview = preview_coupon(body.code, x_user_id)
    return CouponPreviewResponse(
        code=preview.code,
        discount_type=preview.discount_type,
        discount_value=preview.discount_value,
        calculated_discount=preview.calculated_discount,
        subtotal=preview.subtotal,
        new_total=preview.new_total,
    )


# ---------------------------------------------------------------------------
# Clerk (negotiation) Router
# ---------------------------------------------------------------------------
clerk_router = APIRouter(prefix="/clerk", tags=["clerk"])


@clerk_router.post("/generate-coupon", status_code=201, response_model=NegotiatedCouponResponse)
async def generate_coupon(body: GenerateCouponRequest, x_user_id: str = Header()):
    command = GenerateNegotiatedCoupon(
        user_id=x_user_id,
        product_id=body.product_id,
        discount_type=body.discount_type,
        discount_value=body.discount_value,
        reason=body.reason,
    )
    try:
        coupon = current_domain.process(command, asynchronous=False)
    except DiscountRejected as exc:
        return JSONResponse(
            status_code=400,
            content={
                "error": exc.reason,
                "max_discount": exc.max_discount,
                "max_percentage": exc.max_percentage,
            },
        )

    return NegotiatedCouponResponse(
        coupon_code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        discount_amount=coupon.discount_amount,
        original_price=coupon.original_price,
        effective_price=coupon.effective_price,
        expires_at=coupon.expires_at,
        message=f"Coupon {coupon.code} created! Apply it to your cart.",
    )


@clerk_router.get("/discount-tier", response_model=DiscountTierResponse)
async def discount_tier(scenario: str = Query(min_length=1)) -> DiscountTierResponse:
    tier = suggest_discount_tier(scenario)
    return DiscountTierResponse(
        tier=tier.tier,
        min_percentage=tier.min_percentage,
        max_percentage=tier.max_percentage,
        description=tier.description,
        action=tier.action,
    )


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


def _start_session(command) -> CheckoutSessionResponse:
    try:
        session = current_domain.process(command, asynchronous=False)
    except CheckoutSessionError as exc:
        logger.error("checkout_session_failed", user_id=str(command.user_id), error=str(exc))
        raise HTTPException(status_code=502, detail="Failed to create checkout session") from exc
    return CheckoutSessionResponse(id=session.id, url=session.url)


@payment_router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(x_user_id: str = Header()) -> CheckoutSessionResponse:
    return _start_session(StartCheckout(user_id=x_user_id))


@payment_router.post("/quick-checkout", response_model=CheckoutSessionResponse)
async def create_quick_checkout(body: QuickCheckoutRequest, x_user_id: str = Header()) -> CheckoutSessionResponse:
    command = StartQuickCheckout(
        user_id=x_user_id,
        product_id=body.product_id,
        quantity=body.quantity,
        size=body.size,
        color=body.color,
    )
    return _start_session(command)


@payment_router.post("/webhook", response_model=WebhookAckResponse)
async def provider_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
    """Receive provider events. Verified events are always acknowledged."""
    payload = await request.body()
    try:
        outcome = handle_provider_event(payload, stripe_signature)
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=400, detail=f"Webhook Error: {exc}") from exc

    return WebhookAckResponse(outcome=outcome.state.value)


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behaviour (non-production only)."""
    if config.is_production():
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(should_succeed=body.should_succeed, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("", response_model=OrderListResponse)
async def list_orders(
    x_user_id: str = Header(),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> OrderListResponse:
    orders, total = current_domain.repository_for(Order).list_for_user(x_user_id, page=page, limit=limit)
    return OrderListResponse(
        orders=[_order_schema(o) for o in orders],
        total=total,
        page=page,
        pages=_pages(total, limit),
    )


@order_router.get("/{order_id}", response_model=OrderSchema)
async def get_order(order_id: str, x_user_id: str = Header()) -> OrderSchema:
    return _order_schema(current_domain.repository_for(Order).get_for_user(order_id, x_user_id))
