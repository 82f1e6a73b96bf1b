import resend

import config
import notifications
from conftest import make_product
from database import get_db


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok", "service": "marketplace-api"}

    def test_database_report(self, client):
        make_product("s-1")
        body = client.get("/test").json()
        assert body["connection_status"] == "Connected"
        assert "product" in body["collections"]

    def test_unknown_route_uses_envelope(self, client):
        r = client.get("/api/nothing-here")
        assert r.status_code == 404
        assert r.json()["success"] is False

    def test_validation_errors_use_envelope(self, client, customer_headers):
        r = client.post("/api/customer/orders", headers=customer_headers, json={"items": []})
        assert r.status_code == 422
        assert r.json()["success"] is False


class TestCatalog:
    def test_only_active_products_listed(self, client):
        make_product("s-1", name="Kurta")
        make_product("s-1", name="Retired", is_active=False)
        names = [p["name"] for p in client.get("/api/products").json()["products"]]
        assert names == ["Kurta"]


class TestNotifications:
    def order(self):
        return {
            "order_number": "OP1",
            "shipping_address": {"name": "Asha", "email": "asha@example.com"},
            "items": [{"name": "Kurta", "quantity": 1, "line_total": 700}],
            "pricing": {"subtotal": 700, "shipping": 0, "platform_fee": 20, "tax": 0, "discount": 0, "total": 720},
            "shipping": {"carrier": "Delhivery", "tracking_id": "AWB1"},
        }

    def test_confirmation_template(self):
        html = notifications.render("order_confirmation.html", order=self.order())
        assert "Kurta" in html
        assert "₹720" in html

    def test_sends_through_resend(self, monkeypatch):
        sent = []
        monkeypatch.setattr(config, "RESEND_API_KEY", "re_test")
        monkeypatch.setattr(resend.Emails, "send", lambda params: sent.append(params) or {"id": "email_1"})
        assert notifications.notify_status_change(self.order(), "shipped")
        assert sent[0]["to"] == ["asha@example.com"]
        assert "AWB1" in sent[0]["html"]

    def test_failures_are_swallowed(self, monkeypatch):
        def boom(params):
            raise RuntimeError("smtp down")

        monkeypatch.setattr(config, "RESEND_API_KEY", "re_test")
        monkeypatch.setattr(resend.Emails, "send", boom)
        assert notifications.notify_order_placed(self.order()) is False

    def test_skipped_without_recipient(self):
        order = self.order()
        order["shipping_address"]["email"] = ""
        assert notifications.notify_order_placed(order) is False

    def test_unconfigured_email_is_skipped(self):
        assert notifications.send_email("a@example.com", "Hi", "<p>Hi</p>") is None
        assert get_db()["order"].count_documents({}) == 0
