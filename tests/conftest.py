from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
from auth import create_token
from database import create_document, now


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient(tz_aware=True)["marketplace_test"]
    database.ensure_indexes(db)
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(config, "RESEND_API_KEY", "")
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", "")
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", "")
    monkeypatch.setattr(config, "RAZORPAY_WEBHOOK_SECRET", "")
    return db


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


def auth_header(user_id: str, role: str, email: str = "") -> dict:
    return {"Authorization": f"Bearer {create_token(user_id, role, email)}"}


@pytest.fixture
def customer():
    return {"id": "cust-1", "role": "customer", "email": "asha@example.com"}


@pytest.fixture
def admin():
    return {"id": "admin-1", "role": "admin", "email": "ops@example.com"}


@pytest.fixture
def seller_user():
    return {"id": "seller-user-1", "role": "seller", "email": "shop@example.com"}


@pytest.fixture
def customer_headers(customer):
    return auth_header(customer["id"], "customer", customer["email"])


@pytest.fixture
def admin_headers(admin):
    return auth_header(admin["id"], "admin", admin["email"])


@pytest.fixture
def seller_headers(seller_user):
    return auth_header(seller_user["id"], "seller", seller_user["email"])


@pytest.fixture
def seller(seller_user):
    return create_document("seller", {
        "user_id": seller_user["id"],
        "business_name": "Kora Handlooms",
        "email": seller_user["email"],
        "status": "approved",
        "subscription_plan": None,
        "notes": [],
    })


def make_product(seller_id: str, name: str = "Cotton Saree", price: float = 600, stock: int = 10, **extra) -> str:
    doc = {
        "name": name,
        "seller_id": seller_id,
        "sku": name.upper().replace(" ", "-"),
        "price": price,
        "stock": stock,
        "images": [],
        "category": "apparel",
        "is_active": True,
    }
    doc.update(extra)
    return create_document("product", doc)


def make_coupon(code: str = "SAVE10", type: str = "percentage", value: float = 10, **extra) -> str:
    doc = {
        "code": code,
        "type": type,
        "value": value,
        "minimum_purchase": 0,
        "maximum_discount": None,
        "usage_limit": None,
        "per_user_limit": 1,
        "usage_count": 0,
        "users": {},
        "valid_from": now() - timedelta(days=1),
        "valid_until": now() + timedelta(days=30),
        "is_active": True,
    }
    doc.update(extra)
    return create_document("coupon", doc)


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


def place_order(client, headers, product_id: str, quantity: int = 2, payment_method: str = "cod",
                coupon_code: str = None) -> dict:
    body = {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "shipping_address": ADDRESS,
        "payment_method": payment_method,
    }
    if coupon_code:
        body["coupon_code"] = coupon_code
    r = client.post("/api/customer/orders", json=body, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["order"]


def advance(client, headers, order_id: str, *statuses: str) -> dict:
    """Walk an order through statuses as admin, returning the last response body."""
    body = None
    for status in statuses:
        payload = {"status": status}
        if status == "shipped":
            payload.update(tracking_id="AWB123", carrier="Delhivery")
        r = client.patch(f"/api/admin/orders/{order_id}/update-status", json=payload, headers=headers)
        assert r.status_code == 200, r.text
        body = r.json()
    return body
