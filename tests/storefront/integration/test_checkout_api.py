"""End-to-end purchase loop: cart, checkout session, webhook, order history."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean import current_domain
from protean.integrations.fastapi import register_exception_handlers

from storefront.api import cart_router, order_router, payment_router
from storefront.catalogue.product import Product

USER = {"X-User-Id": "user-api-checkout"}


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(cart_router)
    app.include_router(payment_router)
    app.include_router(order_router)
    register_exception_handlers(app)
    return TestClient(app)


def _post_webhook(client, payload, signature):
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


class TestPurchaseFlow:
    def test_full_purchase(self, client, make_product, gateway):
        product = make_product(price=30.0, stock=5)
        client.post("/cart/items", json={"product_id": str(product.id), "quantity": 2}, headers=USER)

        session = client.post("/payments/checkout-session", headers=USER)
        assert session.status_code == 200
        session_id = session.json()["id"]

        payload, signature = gateway.complete_session(session_id)
        ack = _post_webhook(client, payload, signature)
        assert ack.status_code == 200
        assert ack.json() == {"received": True, "outcome": "fulfilled"}

        replay = _post_webhook(client, payload, signature)
        assert replay.json()["outcome"] == "already_fulfilled"

        orders = client.get("/orders", headers=USER).json()
        assert orders["total"] == 1
        order = orders["orders"][0]
        assert order["total"] == 60.0
        assert order["status"] == "paid"
        assert order["external_session_id"] == session_id

        detail = client.get(f"/orders/{order['id']}", headers=USER)
        assert detail.status_code == 200
        assert detail.json()["items"][0]["quantity"] == 2

        assert current_domain.repository_for(Product).get(product.id).stock == 3
        assert client.get("/cart", headers=USER).json()["items"] == []

    def test_quick_checkout(self, client, make_product, gateway):
        product = make_product(price=15.0)
        response = client.post("/payments/quick-checkout", json={"product_id": str(product.id)}, headers=USER)
        assert response.status_code == 200
        assert response.json()["id"] in gateway.sessions


class TestCheckoutErrors:
    def test_empty_cart(self, client):
        assert client.post("/payments/checkout-session", headers=USER).status_code == 400

    def test_provider_failure_is_502(self, client, make_product):
        product = make_product()
        client.post("/cart/items", json={"product_id": str(product.id)}, headers=USER)
        client.post("/payments/gateway/configure", json={"should_succeed": False})

        response = client.post("/payments/checkout-session", headers=USER)
        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to create checkout session"


class TestWebhookErrors:
    def test_invalid_signature(self, client):
        response = _post_webhook(client, '{"type": "checkout.session.completed"}', "t=1,v1=bad")
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Webhook Error:")

    def test_missing_signature(self, client):
        response = client.post("/payments/webhook", content="{}")
        assert response.status_code == 400

    def test_other_orders_not_visible(self, client):
        response = client.get("/orders/does-not-exist", headers=USER)
        assert response.status_code == 404
