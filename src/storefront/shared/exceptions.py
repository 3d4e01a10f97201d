"""Storefront-specific errors layered on Protean's exception types.

Anything the caller can fix (bad input, stock shortfall, ineligible coupon)
is a ``ValidationError`` so the FastAPI integration maps it to a 400.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class CouponNotApplicable(ValidationError):
    """The coupon failed one of the eligibility checks."""

    def __init__(self, reason: str) -> None:
        super().__init__({"coupon_code": [reason]})
        self.reason = reason


class InsufficientStock(ValidationError):
    def __init__(self, product_name: str, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__({"quantity": [f'"{product_name}" only has {available} in stock']})


class OversellDetected(InvalidOperationError):
    """A conditional stock decrement found less stock than the order needs."""

    def __init__(self, product_id: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Oversell detected for product {product_id}: {requested} requested, {available} available"
        )


class ExternalProviderError(Exception):
    """The payment provider could not be trusted or reached."""


class WebhookSignatureError(ExternalProviderError):
    pass


class CheckoutSessionError(ExternalProviderError):
    pass


class FulfillmentError(Exception):
    """A fulfillment step failed after payment was already captured."""

    def __init__(self, step: str, message: str, **context) -> None:
        self.step = step
        self.message = message
        self.context = context
        super().__init__(f"{step}: {message}")

    def as_dict(self) -> dict:
        return {"step": self.step, "message": self.message, **self.context}


class DiscountRejected(ValidationError):
    """A negotiated discount would take the price below the product's floor."""

    def __init__(self, reason: str, max_discount: float, max_percentage: float) -> None:
        super().__init__({"discount_value": [reason]})
        self.reason = reason
        self.max_discount = max_discount
        self.max_percentage = max_percentage
