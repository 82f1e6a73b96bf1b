import pytest

import config
import shipping
from conftest import advance, make_product, place_order
from database import get_db, parse_object_id
from errors import UpstreamError


class FakeTracker:
    def __init__(self, **statuses):
        self.statuses = statuses
        self.calls = []

    def track_awb(self, awb_code):
        self.calls.append(awb_code)
        status = self.statuses[awb_code]
        if isinstance(status, Exception):
            raise status
        return {"tracking_data": {"track_status": 1, "shipment_track": [{"awb_code": awb_code, "current_status": status}]}}


@pytest.fixture
def cron_headers(monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "cron-s3cret")
    return {"Authorization": "Bearer cron-s3cret"}


def shipped(client, customer_headers, admin_headers, product_id, awb):
    order = place_order(client, customer_headers, product_id, quantity=1)
    advance(client, admin_headers, order["id"], "confirmed", "processing", "ready_for_pickup")
    r = client.patch(f"/api/admin/orders/{order['id']}/update-status", headers=admin_headers,
                     json={"status": "shipped", "tracking_id": awb, "carrier": "Delhivery"})
    assert r.status_code == 200, r.text
    return order


def stored(order_id):
    return get_db()["order"].find_one({"_id": parse_object_id(order_id)})


class TestCarrierStatus:
    def test_shiprocket_response(self):
        tracking = {"tracking_data": {"shipment_track": [{"current_status": "Out For Delivery"}]}}
        assert shipping.carrier_status(tracking) == ("Out For Delivery", "out_for_delivery")

    def test_flat_response(self):
        assert shipping.carrier_status({"current_status": "PICKED_UP"}) == ("PICKED_UP", "shipped")

    def test_unmapped_statuses(self):
        tracking = {"tracking_data": {"shipment_track": [{"current_status": "RTO Initiated"}]}}
        assert shipping.carrier_status(tracking)[1] is None
        assert shipping.carrier_status({}) == ("", None)


class TestTrackingSync:
    def sync(self, client, headers):
        return client.get("/api/cron/sync-tracking", headers=headers)

    def test_requires_secret(self, client, cron_headers):
        assert self.sync(client, {}).status_code == 401
        r = self.sync(client, {"Authorization": "Bearer wrong"})
        assert r.status_code == 401
        assert r.json() == {"success": False, "message": "Unauthorized"}

    def test_refused_when_secret_unset(self, client, monkeypatch):
        monkeypatch.setattr(config, "CRON_SECRET", "")
        assert self.sync(client, {"Authorization": "Bearer "}).status_code == 401

    def test_advances_orders_from_carrier(self, client, customer_headers, admin_headers, seller, cron_headers,
                                          monkeypatch):
        product_id = make_product(seller, stock=10)
        on_the_way = shipped(client, customer_headers, admin_headers, product_id, "AWB1")
        arrived = shipped(client, customer_headers, admin_headers, product_id, "AWB2")
        in_transit = shipped(client, customer_headers, admin_headers, product_id, "AWB3")
        monkeypatch.setattr(shipping, "shiprocket", FakeTracker(AWB1="OUT FOR DELIVERY", AWB2="Delivered",
                                                                AWB3="IN TRANSIT"))

        r = self.sync(client, cron_headers)
        assert r.status_code == 200, r.text
        assert r.json() == {"success": True, "processed": 3, "updated": 2, "errors": 0}

        doc = stored(on_the_way["id"])
        assert doc["status"] == "out_for_delivery"
        assert doc["timeline"][-1]["description"] == "Carrier update: OUT FOR DELIVERY"
        doc = stored(arrived["id"])
        assert doc["status"] == "delivered"
        assert doc["shipping"]["delivered_at"]
        assert stored(in_transit["id"])["status"] == "shipped"

    def test_backwards_and_return_statuses_are_ignored(self, client, customer_headers, admin_headers, seller,
                                                       cron_headers, monkeypatch):
        product_id = make_product(seller, stock=10)
        out = shipped(client, customer_headers, admin_headers, product_id, "AWB1")
        advance(client, admin_headers, out["id"], "out_for_delivery")
        rto = shipped(client, customer_headers, admin_headers, product_id, "AWB2")
        monkeypatch.setattr(shipping, "shiprocket", FakeTracker(AWB1="IN TRANSIT", AWB2="RTO"))

        r = self.sync(client, cron_headers)
        assert r.json()["updated"] == 0
        assert stored(out["id"])["status"] == "out_for_delivery"
        assert stored(rto["id"])["status"] == "shipped"

    def test_carrier_errors_are_counted(self, client, customer_headers, admin_headers, seller, cron_headers,
                                        monkeypatch):
        product_id = make_product(seller, stock=10)
        shipped(client, customer_headers, admin_headers, product_id, "AWB1")
        arrived = shipped(client, customer_headers, admin_headers, product_id, "AWB2")
        monkeypatch.setattr(shipping, "shiprocket",
                            FakeTracker(AWB1=UpstreamError("Shipping carrier error"), AWB2="DELIVERED"))

        r = self.sync(client, cron_headers)
        assert r.json() == {"success": True, "processed": 2, "updated": 1, "errors": 1}
        assert stored(arrived["id"])["status"] == "delivered"

    def test_only_orders_in_transit_are_polled(self, client, customer_headers, admin_headers, seller, cron_headers,
                                               monkeypatch):
        product_id = make_product(seller, stock=10)
        place_order(client, customer_headers, product_id, quantity=1)
        done = shipped(client, customer_headers, admin_headers, product_id, "AWB9")
        advance(client, admin_headers, done["id"], "delivered")
        shipped(client, customer_headers, admin_headers, product_id, "AWB1")
        tracker = FakeTracker(AWB1="IN TRANSIT")
        monkeypatch.setattr(shipping, "shiprocket", tracker)

        r = self.sync(client, cron_headers)
        assert r.json()["processed"] == 1
        assert tracker.calls == ["AWB1"]
