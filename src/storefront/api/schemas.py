"""Pydantic request/response schemas for the storefront API.

These are external contracts, kept separate from the Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, default=1)
    size: str | None = None
    color: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "8c0f6a9e-7f1b-4d55-9f0e-3b7a52d1c001",
                    "quantity": 2,
                    "size": "M",
                    "color": "Black",
                }
            ]
        }
    }


class UpdateCartItemRequest(BaseModel):
    item_id: str
    quantity: int  # <= 0 removes the line


class SyncCartItem(BaseModel):
    product_id: str
    quantity: int = 1
    size: str | None = None
    color: str | None = None


class SyncCartRequest(BaseModel):
    items: list[SyncCartItem]


class CouponCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)


class AppliedCouponSchema(BaseModel):
    code: str
    discount_type: str
    discount_value: float
    max_discount: float | None = None


class CartItemSchema(BaseModel):
    id: str
    product_id: str
    quantity: int
    size: str | None = None
    color: str | None = None
    price: float


class CartResponse(BaseModel):
    id: str
    items: list[CartItemSchema]
    applied_coupon: AppliedCouponSchema | None = None
    subtotal: float
    discount: float
    total: float


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CreateCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    discount_type: str = Field(pattern="^(percentage|fixed)$")
    discount_value: float = Field(gt=0)
    min_purchase: float = Field(ge=0, default=0)
    max_discount: float | None = Field(default=None, ge=0)
    expires_at: datetime | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    one_per_user: bool = True


class CouponIdResponse(BaseModel):
    coupon_id: str


class CouponSchema(BaseModel):
    id: str
    code: str
    discount_type: str
    discount_value: float
    min_purchase: float
    max_discount: float | None = None
    expires_at: datetime | None = None
    usage_limit: int | None = None
    used_count: int
    one_per_user: bool
    is_active: bool
    source: str


class CouponListResponse(BaseModel):
    coupons: list[CouponSchema]
    total: int
    page: int
    pages: int


class CouponPreviewResponse(BaseModel):
    valid: bool = True
    code: str
    discount_type: str
    discount_value: float
    calculated_discount: float
    subtotal: float
    new_total: float


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------
class GenerateCouponRequest(BaseModel):
    product_id: str
    discount_type: str = Field(pattern="^(percentage|fixed)$")
    discount_value: float = Field(ge=0)
    reason: str | None = Field(default=None, max_length=500)


class NegotiatedCouponResponse(BaseModel):
    coupon_code: str
    discount_type: str
    discount_value: float
    discount_amount: float
    original_price: float
    effective_price: float
    expires_at: datetime
    message: str


class DiscountTierResponse(BaseModel):
    tier: str
    min_percentage: int
    max_percentage: int
    description: str
    action: str | None = None


# ---------------------------------------------------------------------------
# Checkout & payments
# ---------------------------------------------------------------------------
class QuickCheckoutRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, default=1)
    size: str | None = None
    color: str | None = None


class CheckoutSessionResponse(BaseModel):
    id: str
    url: str


class WebhookAckResponse(BaseModel):
    received: bool = True
    outcome: str


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool
    failure_reason: str = "Provider unavailable"


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderItemSchema(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    size: str | None = None
    color: str | None = None
    image_url: str | None = None


class OrderSchema(BaseModel):
    id: str
    items: list[OrderItemSchema]
    subtotal: float
    discount: float
    coupon_code: str | None = None
    total: float
    currency: str
    status: str
    external_session_id: str
    created_at: datetime | None = None


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    total: int
    page: int
    pages: int
