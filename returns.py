"""
Returns workflow state machine.

    requested -> approved -> received -> quality_passed | quality_failed -> refunded
    requested -> rejected

`refunded` and `rejected` are terminal. Like `order_status`, this module only
validates and builds updates; `orders.py` persists them and issues refunds.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from config import RETURN_WINDOW_DAYS
from database import as_utc
from errors import InvalidTransition, ValidationFailed
from order_status import assert_transition, timeline_event
from pricing import to_rupees

logger = logging.getLogger("marketplace.returns")

RETURN_STATUSES = (
    "requested", "approved", "received", "quality_passed", "quality_failed",
    "refunded", "rejected",
)

RETURN_TRANSITIONS: Dict[str, Set[str]] = {
    "requested": {"approved", "rejected"},
    "approved": {"received"},
    "received": {"quality_passed", "quality_failed"},
    "quality_passed": {"refunded"},
    "quality_failed": {"refunded"},
    "refunded": set(),
    "rejected": set(),
}

TERMINAL_STATUSES = {"refunded", "rejected"}

RETURN_DESCRIPTIONS = {
    "approved": "Return request approved",
    "received": "Returned item received by the seller",
    "quality_passed": "Returned item passed quality check",
    "quality_failed": "Returned item failed quality check",
}


def assert_return_transition(current: str, target: str) -> None:
    if target not in RETURN_STATUSES:
        raise InvalidTransition(f"Unknown return status: {target}")
    if target not in RETURN_TRANSITIONS.get(current, set()):
        logger.warning("Rejected return transition %s -> %s", current, target)
        raise InvalidTransition(f"Invalid return transition from {current} to {target}")


def request_return_update(order: dict, reason: str, title: str, at: datetime,
                          description: Optional[str] = None, images: Optional[List[str]] = None) -> dict:
    if not (reason or "").strip() or not (title or "").strip():
        raise ValidationFailed("Reason and title are required")
    if order["status"] != "delivered":
        raise ValidationFailed("Only delivered orders can be returned")
    if order.get("return_request"):
        raise ValidationFailed("A return has already been requested for this order")

    delivered_at = as_utc((order.get("shipping") or {}).get("delivered_at"))
    if delivered_at is None or at - delivered_at > timedelta(days=RETURN_WINDOW_DAYS):
        raise ValidationFailed(f"Return window has expired ({RETURN_WINDOW_DAYS} days from delivery)")

    request = {
        "status": "requested",
        "reason": reason,
        "title": title,
        "description": description,
        "images": images or [],
        "requested_at": at,
        "quality_check": None,
        "resolution_reason": None,
        "refund_amount": None,
        "refund_id": None,
        "history": [{"status": "requested", "at": at, "by": order.get("customer_id"), "note": reason}],
    }
    return {
        "$set": {"return_request": request, "updated_at": at},
        "$push": {"timeline": timeline_event("return_requested", f"Return requested: {reason}", at)},
    }


def resolve_refund_amount(order: dict, refund_amount: Optional[float], limit: Optional[float] = None) -> int:
    """Refund defaults to the order total (or `limit`, when given) and may not exceed it."""
    cap = order["pricing"]["total"]
    if limit is not None:
        cap = min(cap, limit)
    if refund_amount is None:
        return to_rupees(cap)
    if refund_amount < 0 or refund_amount > cap:
        raise ValidationFailed(f"Refund amount must be between 0 and {to_rupees(cap)}")
    return to_rupees(refund_amount)


def return_transition_update(order: dict, target: str, at: datetime, actor: Optional[str] = None,
                             resolution_reason: Optional[str] = None, refund_amount: Optional[float] = None,
                             quality_check: Optional[dict] = None, refund_limit: Optional[float] = None) -> dict:
    """Build the update moving the order's return request to `target`."""
    current = (order.get("return_request") or {}).get("status")
    if current is None:
        raise ValidationFailed("No return request found for this order")
    assert_return_transition(current, target)

    fields = {"return_request.status": target, "updated_at": at}
    note = resolution_reason

    if target == "rejected":
        note = resolution_reason or "Does not meet return criteria"
        fields["return_request.resolution_reason"] = note
        description = f"Return request rejected: {note}"
    elif target == "refunded":
        amount = resolve_refund_amount(order, refund_amount, refund_limit)
        assert_transition(order["status"], "returned")
        fields["return_request.refund_amount"] = amount
        fields["payment.status"] = "refunded"
        fields["status"] = "returned"
        if resolution_reason:
            fields["return_request.resolution_reason"] = resolution_reason
        description = f"Refund of ₹{amount} processed" + (f": {resolution_reason}" if resolution_reason else "")
        note = description
    else:
        if resolution_reason:
            fields["return_request.resolution_reason"] = resolution_reason
        description = RETURN_DESCRIPTIONS[target]

    if quality_check and target in ("received", "quality_passed", "quality_failed"):
        fields["return_request.quality_check"] = quality_check

    events = [timeline_event(f"return_{target}", description, at)]
    if target == "refunded":
        events.append(timeline_event("returned", "Order returned", at))
    return {
        "$set": fields,
        "$push": {
            "timeline": {"$each": events},
            "return_request.history": {"status": target, "at": at, "by": actor, "note": note},
        },
    }
