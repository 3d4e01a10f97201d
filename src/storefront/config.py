"""Runtime settings for the storefront, read from the environment.

Protean infrastructure (databases, brokers, event store) is configured in
``domain.toml``; this module only carries application-level knobs.
"""

import os

# "fake" keeps everything in-process; "stripe" talks to the real provider.
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "fake").lower()

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
CHECKOUT_SUCCESS_URL = os.getenv(
    "CHECKOUT_SUCCESS_URL",
    f"{FRONTEND_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
)
CHECKOUT_CANCEL_URL = os.getenv("CHECKOUT_CANCEL_URL", f"{FRONTEND_URL}/cart")

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "usd").lower()

NEGOTIATED_COUPON_TTL_HOURS = int(os.getenv("NEGOTIATED_COUPON_TTL_HOURS", "24"))


def is_production() -> bool:
    return os.environ.get("PROTEAN_ENV") == "production"
