"""Payment provider factory.

``get_gateway()`` returns the adapter selected by ``PAYMENT_GATEWAY``:
``FakeGateway`` for development and tests, ``StripeGateway`` in production.
``set_gateway()`` swaps it out (useful for tests).
"""

from storefront import config
from storefront.gateway.fake_adapter import FAKE_WEBHOOK_SECRET, FakeGateway
from storefront.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def _build_gateway() -> PaymentGateway:
    if config.PAYMENT_GATEWAY == "stripe":
        from storefront.gateway.stripe_adapter import StripeGateway

        return StripeGateway(api_key=config.STRIPE_SECRET_KEY, webhook_secret=config.STRIPE_WEBHOOK_SECRET)
    return FakeGateway(webhook_secret=config.STRIPE_WEBHOOK_SECRET or FAKE_WEBHOOK_SECRET)


def get_gateway() -> PaymentGateway:
    """Return the active payment gateway, building it on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = _build_gateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to the configured gateway."""
    global _current_gateway
    _current_gateway = None
