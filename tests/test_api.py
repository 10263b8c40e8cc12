import asyncio
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import add_coupon, add_product
from storefront.api.deps import get_cache, get_notifier, get_payment_providers
from storefront.data.database import get_db
from storefront.main import create_app
from storefront.services.payment_provider import BankTransferProvider, CashOnDeliveryProvider
from storefront.services.payment_service import PaymentService, WebhookOutcome

SESSION = {"X-Session-Id": "browser-1"}


@pytest.fixture
def client(db, cache, notifier, fake_provider):
    app = create_app()

    def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_providers] = lambda: {
        "fake": fake_provider,
        "cod": CashOnDeliveryProvider(),
        "bank_transfer": BankTransferProvider(),
    }
    return TestClient(app)


def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"status": "ok", "checks": {"database": True, "cache": True}}


def test_guest_cart_flow(db, client):
    add_product(db, 1, "10.00", 5)

    r = client.post("/carts/items", json={"product_id": 1, "quantity": 2}, headers=SESSION)
    assert r.status_code == 200
    assert r.json()["session_id"] == "browser-1"
    assert Decimal(r.json()["subtotal"]) == Decimal("20.00")

    r = client.put("/carts/items/1", json={"quantity": 1}, headers=SESSION)
    assert r.json()["items"][0]["quantity"] == 1

    r = client.delete("/carts/items/1", headers=SESSION)
    assert r.json()["items"] == []


def test_cart_errors_carry_a_code(db, client):
    add_product(db, 1, "10.00", 1)

    r = client.get("/carts/")
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "missing_cart_identity"

    r = client.post("/carts/items", json={"product_id": 1, "quantity": 3}, headers=SESSION)
    assert r.status_code == 409
    assert r.json()["detail"] == {
        "code": "insufficient_stock",
        "message": "Insufficient stock for product 1",
        "product_id": 1,
    }

    r = client.post("/carts/items", json={"product_id": 1, "quantity": 0}, headers=SESSION)
    assert r.status_code == 422


def test_checkout_and_payment(db, client, fake_provider, notifier):
    add_product(db, 1, "10.00", 5)
    add_product(db, 2, "5.00", 5)
    add_coupon(db, "SAVE10", "PERCENTAGE", "10")
    client.post("/carts/items", json={"product_id": 1, "quantity": 2}, params={"user_id": 8})
    client.post("/carts/items", json={"product_id": 2, "quantity": 1}, params={"user_id": 8})

    r = client.post("/orders/", json={"coupon_code": "save10"}, params={"user_id": 8})
    assert r.status_code == 201
    order = r.json()
    assert Decimal(order["total"]) == Decimal("22.50")
    assert order["status"] == "PENDING"
    assert len(order["items"]) == 2

    r = client.post("/payments/intents", json={"order_id": order["id"], "provider": "fake"})
    assert r.status_code == 201
    payment = r.json()["payment"]
    assert r.json()["client_secret"]

    body = fake_provider.build_event(
        "payment_intent.succeeded",
        payment["provider_intent_id"],
        {"order_id": str(order["id"]), "payment_id": str(payment["id"])},
        event_id="evt_api",
    )
    headers = {"X-Fake-Signature": fake_provider.sign(body), "Content-Type": "application/json"}

    r = client.post("/payments/webhooks/fake", content=body, headers=headers)
    assert r.json() == {"received": True, "status": "applied"}
    r = client.post("/payments/webhooks/fake", content=body, headers=headers)
    assert r.json() == {"received": True, "status": "duplicate"}

    assert client.get(f"/orders/{order['id']}").json()["status"] == "PROCESSING"
    assert [p["status"] for p in client.get(f"/payments/orders/{order['id']}").json()] == ["PAID"]
    assert len(notifier.of_type("payment_success")) == 1

    page = client.get("/orders/", params={"user_id": 8}).json()
    assert page["total"] == 1


def test_checkout_empty_cart(client):
    r = client.post("/orders/", json={}, headers=SESSION)

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "empty_cart"


def test_webhook_rejections(client):
    r = client.post("/payments/webhooks/fake", content=b"{}", headers={"X-Fake-Signature": "bad"})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid_webhook_signature"

    r = client.post("/payments/webhooks/paypal", content=b"{}")
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "unknown_provider"


def test_order_status_endpoint(db, client):
    add_product(db, 1, "10.00", 5)
    client.post("/carts/items", json={"product_id": 1, "quantity": 1}, headers=SESSION)
    order_id = client.post("/orders/", json={}, headers=SESSION).json()["id"]

    r = client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "invalid_status_transition"

    r = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"})
    assert r.status_code == 200
    assert r.json()["status"] == "CANCELLED"

    assert client.get("/orders/999").status_code == 404


def test_coupon_endpoints(client):
    r = client.post(
        "/coupons/",
        json={"code": "half", "type": "PERCENTAGE", "discount_value": "50", "max_discount_amount": "20"},
    )
    assert r.status_code == 201
    assert r.json()["code"] == "HALF"

    r = client.post("/coupons/", json={"code": "HALF", "type": "FIXED_AMOUNT", "discount_value": "5"})
    assert r.status_code == 409

    r = client.post("/coupons/validate", json={"code": "half", "cart_total": "1000"})
    assert r.json()["valid"] is True
    assert Decimal(r.json()["discount_amount"]) == Decimal("20.00")

    r = client.post("/coupons/validate", json={"code": "nope", "cart_total": "10"})
    assert r.json()["valid"] is False
    assert r.json()["reason"] == "Invalid coupon code"

    r = client.get("/coupons/HALF/stats")
    assert r.json()["total_uses"] == 0
    assert client.get("/coupons/MISSING/stats").status_code == 404
    assert client.get("/coupons/users/8/history").json() == []


def test_malformed_webhook(client, fake_provider):
    body = b'{"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}'

    r = client.post("/payments/webhooks/fake", content=body, headers={"X-Fake-Signature": fake_provider.sign(body)})

    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "malformed_webhook"


def test_bank_transfer_checkout(db, client, notifier):
    add_product(db, 1, "10.00", 5)
    client.post("/carts/items", json={"product_id": 1, "quantity": 3}, headers=SESSION)
    address = {"line1": "1 Main St", "city": "Springfield", "state": "IL", "postal_code": "62701", "country": "US"}

    r = client.post("/orders/", json={"shipping_address": address, "payment_method": "bank_transfer"}, headers=SESSION)
    assert r.status_code == 201
    order = r.json()
    assert order["payment_method"] == "bank_transfer"
    assert order["shipping_city"] == "Springfield"

    r = client.post("/payments/intents", json={"order_id": order["id"], "provider": "fake"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "payment_method_mismatch"

    r = client.post("/payments/intents", json={"order_id": order["id"], "provider": "bank_transfer"})
    assert r.status_code == 201
    assert r.json()["client_secret"] is None
    assert r.json()["instructions"]["reference"] == f"ORDER-{order['id']}"
    payment_id = r.json()["payment"]["id"]

    r = client.post(f"/payments/{payment_id}/confirm")
    assert r.status_code == 200
    assert r.json()["status"] == "PAID"
    assert client.get(f"/orders/{order['id']}").json()["status"] == "PROCESSING"

    r = client.post(f"/payments/{payment_id}/confirm")
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "payment_not_confirmable"
    assert len(notifier.of_type("payment_success")) == 1


def test_bank_transfer_instructions(client):
    r = client.get("/payments/bank-transfer/instructions")

    assert r.status_code == 200
    assert set(r.json()) == {"bank_name", "account_name", "account_number", "routing_number", "swift_code"}


def test_coupon_management_endpoints(client):
    created = client.post("/coupons/", json={"code": "spring", "type": "FIXED_AMOUNT", "discount_value": "5"}).json()
    client.post("/coupons/", json={"code": "summer", "type": "PERCENTAGE", "discount_value": "10"})

    r = client.get("/coupons/", params={"limit": 1})
    assert r.json()["total"] == 2
    assert r.json()["pages"] == 2
    assert len(r.json()["items"]) == 1

    assert client.get(f"/coupons/{created['id']}").json()["code"] == "SPRING"
    assert client.get("/coupons/999").status_code == 404

    r = client.patch(f"/coupons/{created['id']}", json={"discount_value": "7.50", "description": "spring sale"})
    assert r.status_code == 200
    assert Decimal(r.json()["discount_value"]) == Decimal("7.50")
    assert r.json()["description"] == "spring sale"

    r = client.patch(f"/coupons/{created['id']}", json={"code": "SUMMER"})
    assert r.status_code == 409

    r = client.delete(f"/coupons/{created['id']}")
    assert r.status_code == 200
    assert r.json()["status"] == "INACTIVE"
    assert [c["code"] for c in client.get("/coupons/active").json()] == ["SUMMER"]


def test_webhook_handler_runs_off_the_event_loop(client, monkeypatch):
    seen = []

    def handle_webhook(self, provider, payload, signature):
        try:
            asyncio.get_running_loop()
            seen.append("event loop")
        except RuntimeError:
            seen.append("worker thread")
        return WebhookOutcome("ignored")

    monkeypatch.setattr(PaymentService, "handle_webhook", handle_webhook)

    r = client.post("/payments/webhooks/fake", content=b"{}", headers={"X-Fake-Signature": "sig"})

    assert r.json() == {"received": True, "status": "ignored"}
    assert seen == ["worker thread"]
