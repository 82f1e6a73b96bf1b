from datetime import datetime, timezone

import pytest

from errors import InvalidTransition, ValidationFailed
from order_status import (
    ORDER_STATUSES, ORDER_TRANSITIONS, SELLER_TRANSITIONS, assert_transition, can_transition,
    next_statuses, seller_transitions, transition_update,
)

AT = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def order(status):
    return {"status": status, "order_number": "OP1", "shipping": {}}


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(ORDER_STATUSES)

    def test_happy_path(self):
        path = ["pending", "confirmed", "processing", "ready_for_pickup", "pickup",
                "shipped", "out_for_delivery", "delivered", "returned"]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target)

    def test_terminal_statuses(self):
        assert next_statuses("cancelled") == []
        assert next_statuses("returned") == []

    def test_cannot_skip_ahead(self):
        with pytest.raises(InvalidTransition) as exc:
            assert_transition("pending", "delivered")
        assert exc.value.message == "Invalid status transition from pending to delivered"

    def test_cannot_cancel_after_shipping(self):
        for status in ("shipped", "out_for_delivery", "delivered"):
            assert not can_transition(status, "cancelled")

    def test_unknown_status(self):
        with pytest.raises(InvalidTransition) as exc:
            assert_transition("pending", "teleported")
        assert "Unknown order status" in exc.value.message

    def test_seller_table_is_narrower(self):
        assert can_transition("confirmed", "processing", SELLER_TRANSITIONS)
        assert not can_transition("ready_for_pickup", "shipped", SELLER_TRANSITIONS)
        assert not can_transition("pending", "confirmed", SELLER_TRANSITIONS)

    def test_sellers_accept_cash_on_delivery_orders(self):
        cod = seller_transitions({"payment": {"method": "cod"}})
        assert can_transition("pending", "confirmed", cod)
        assert can_transition("pending", "cancelled", cod)
        assert can_transition("processing", "ready_for_pickup", cod)
        prepaid = seller_transitions({"payment": {"method": "upi"}})
        assert not can_transition("pending", "confirmed", prepaid)


class TestTransitionUpdate:
    def test_sets_status_and_appends_timeline(self):
        update = transition_update(order("pending"), "confirmed", AT)
        assert update["$set"]["status"] == "confirmed"
        assert update["$push"]["timeline"] == {
            "status": "confirmed", "description": "Order confirmed", "timestamp": AT,
        }

    def test_shipped_requires_tracking_and_carrier(self):
        with pytest.raises(ValidationFailed):
            transition_update(order("ready_for_pickup"), "shipped", AT, tracking_id="AWB1")
        with pytest.raises(ValidationFailed):
            transition_update(order("ready_for_pickup"), "shipped", AT, tracking_id="  ", carrier="Delhivery")

    def test_shipped_records_tracking(self):
        update = transition_update(order("ready_for_pickup"), "shipped", AT, tracking_id=" AWB1 ", carrier="Delhivery")
        fields = update["$set"]
        assert fields["shipping.tracking_id"] == "AWB1"
        assert fields["shipping.carrier"] == "Delhivery"
        assert fields["shipping.shipped_at"] == AT
        assert "AWB1" in update["$push"]["timeline"]["description"]

    def test_delivered_stamps_delivery_time(self):
        update = transition_update(order("out_for_delivery"), "delivered", AT)
        assert update["$set"]["shipping.delivered_at"] == AT

    def test_cancellation_details(self):
        update = transition_update(order("confirmed"), "cancelled", AT, reason="Out of stock", cancelled_by="seller")
        assert update["$set"]["cancellation"] == {
            "reason": "Out of stock", "cancelled_by": "seller", "cancelled_at": AT,
        }
        assert update["$push"]["timeline"]["description"] == "Order cancelled: Out of stock"

    def test_illegal_move_builds_nothing(self):
        with pytest.raises(InvalidTransition):
            transition_update(order("delivered"), "pending", AT)
