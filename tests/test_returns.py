from datetime import datetime, timedelta, timezone

import pytest

from errors import InvalidTransition, ValidationFailed
from returns import (
    RETURN_TRANSITIONS, TERMINAL_STATUSES, assert_return_transition, request_return_update,
    resolve_refund_amount, return_transition_update,
)

DELIVERED = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def delivered_order(**extra):
    doc = {
        "status": "delivered",
        "customer_id": "cust-1",
        "pricing": {"subtotal": 1200, "shipping": 0, "platform_fee": 20, "tax": 0, "discount": 0, "total": 1220},
        "shipping": {"delivered_at": DELIVERED},
        "return_request": None,
    }
    doc.update(extra)
    return doc


def with_return(status, **order_fields):
    return delivered_order(return_request={"status": status, "history": []}, **order_fields)


class TestRequestReturn:
    def test_within_window(self):
        at = DELIVERED + timedelta(days=3)
        update = request_return_update(delivered_order(), "damaged", "Torn fabric", at)
        request = update["$set"]["return_request"]
        assert request["status"] == "requested"
        assert request["history"][0]["status"] == "requested"
        assert update["$push"]["timeline"]["status"] == "return_requested"

    def test_window_expired(self):
        at = DELIVERED + timedelta(days=8)
        with pytest.raises(ValidationFailed) as exc:
            request_return_update(delivered_order(), "damaged", "Torn fabric", at)
        assert "Return window has expired" in exc.value.message

    def test_naive_delivery_time_is_treated_as_utc(self):
        order = delivered_order(shipping={"delivered_at": DELIVERED.replace(tzinfo=None)})
        request_return_update(order, "damaged", "Torn", DELIVERED + timedelta(days=1))

    def test_only_delivered_orders(self):
        with pytest.raises(ValidationFailed) as exc:
            request_return_update(delivered_order(status="shipped"), "damaged", "Torn", DELIVERED)
        assert exc.value.message == "Only delivered orders can be returned"

    def test_one_request_per_order(self):
        with pytest.raises(ValidationFailed):
            request_return_update(with_return("rejected"), "damaged", "Torn", DELIVERED)

    def test_reason_and_title_required(self):
        with pytest.raises(ValidationFailed):
            request_return_update(delivered_order(), "", "Torn", DELIVERED)
        with pytest.raises(ValidationFailed):
            request_return_update(delivered_order(), "damaged", "  ", DELIVERED)


class TestReturnTransitions:
    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert RETURN_TRANSITIONS[status] == set()

    def test_no_skipping_to_refund(self):
        with pytest.raises(InvalidTransition):
            assert_return_transition("requested", "refunded")
        with pytest.raises(InvalidTransition):
            assert_return_transition("approved", "quality_passed")

    def test_reject_has_default_reason(self):
        update = return_transition_update(with_return("requested"), "rejected", DELIVERED, actor="seller-1")
        assert update["$set"]["return_request.resolution_reason"] == "Does not meet return criteria"
        assert update["$push"]["return_request.history"]["by"] == "seller-1"

    def test_quality_check_is_stored(self):
        check = {"condition": "damaged", "comments": "stain on pallu"}
        update = return_transition_update(with_return("received"), "quality_failed", DELIVERED, quality_check=check)
        assert update["$set"]["return_request.quality_check"] == check

    def test_refund_defaults_to_order_total(self):
        update = return_transition_update(with_return("quality_passed"), "refunded", DELIVERED)
        fields = update["$set"]
        assert fields["return_request.refund_amount"] == 1220
        assert fields["payment.status"] == "refunded"
        assert fields["status"] == "returned"
        statuses = [e["status"] for e in update["$push"]["timeline"]["$each"]]
        assert statuses == ["return_refunded", "returned"]

    def test_partial_refund(self):
        update = return_transition_update(with_return("quality_failed"), "refunded", DELIVERED, refund_amount=500)
        assert update["$set"]["return_request.refund_amount"] == 500

    def test_refund_cannot_exceed_total(self):
        with pytest.raises(ValidationFailed):
            resolve_refund_amount(delivered_order(), 5000)
        with pytest.raises(ValidationFailed):
            resolve_refund_amount(delivered_order(), -1)

    def test_refund_limit_caps_default_and_requested_amount(self):
        assert resolve_refund_amount(delivered_order(), None, limit=600) == 600
        assert resolve_refund_amount(delivered_order(), 450, limit=600) == 450
        with pytest.raises(ValidationFailed) as exc:
            resolve_refund_amount(delivered_order(), 700, limit=600)
        assert exc.value.message == "Refund amount must be between 0 and 600"

    def test_refund_limit_flows_into_update(self):
        update = return_transition_update(with_return("quality_passed"), "refunded", DELIVERED, refund_limit=600)
        assert update["$set"]["return_request.refund_amount"] == 600

    def test_no_request(self):
        with pytest.raises(ValidationFailed):
            return_transition_update(delivered_order(), "approved", DELIVERED)
