"""
Order status state machine.

    pending -> confirmed -> processing -> ready_for_pickup -> pickup -> shipped
        -> out_for_delivery -> delivered

`cancelled` can be reached from any state before the parcel leaves the
seller, `returned` only from `delivered` (through the returns workflow).
Both are absorbing.

The functions here touch no storage: they validate a transition and describe the
database update for it. Persistence and side effects live in `orders.py`.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Set

from errors import InvalidTransition, ValidationFailed

logger = logging.getLogger("marketplace.order_status")

ORDER_STATUSES = (
    "pending", "confirmed", "processing", "ready_for_pickup", "pickup",
    "shipped", "out_for_delivery", "delivered", "cancelled", "returned",
)

ORDER_TRANSITIONS: Dict[str, Set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"ready_for_pickup", "cancelled"},
    "ready_for_pickup": {"pickup", "shipped", "cancelled"},
    "pickup": {"shipped"},
    "shipped": {"out_for_delivery", "delivered"},
    "out_for_delivery": {"delivered"},
    "delivered": {"returned"},
    "cancelled": set(),
    "returned": set(),
}

# Sellers accept, prepare or decline; everything after pickup is carrier driven.
SELLER_TRANSITIONS: Dict[str, Set[str]] = {
    "confirmed": {"processing", "cancelled"},
    "processing": {"ready_for_pickup"},
}

# Cash on delivery orders skip the gateway, so the seller accepts or declines them.
SELLER_COD_TRANSITIONS: Dict[str, Set[str]] = dict(SELLER_TRANSITIONS, pending={"confirmed", "cancelled"})

CUSTOMER_CANCELLABLE = {"pending", "confirmed", "processing", "ready_for_pickup"}

STATUS_DESCRIPTIONS = {
    "pending": "Order placed successfully",
    "confirmed": "Order confirmed",
    "processing": "Order accepted by the seller and is being processed",
    "ready_for_pickup": "Order packed and ready for pickup",
    "pickup": "Order picked up by the delivery partner",
    "shipped": "Order shipped",
    "out_for_delivery": "Order is out for delivery",
    "delivered": "Order delivered",
    "cancelled": "Order cancelled",
    "returned": "Order returned",
}


def can_transition(current: str, target: str, table: Optional[Dict[str, Set[str]]] = None) -> bool:
    table = ORDER_TRANSITIONS if table is None else table
    return target in table.get(current, set())


def assert_transition(current: str, target: str, table: Optional[Dict[str, Set[str]]] = None) -> None:
    if target not in ORDER_STATUSES:
        raise InvalidTransition(f"Unknown order status: {target}")
    if not can_transition(current, target, table):
        logger.warning("Rejected order transition %s -> %s", current, target)
        raise InvalidTransition(f"Invalid status transition from {current} to {target}")


def seller_transitions(order: dict) -> Dict[str, Set[str]]:
    if (order.get("payment") or {}).get("method") == "cod":
        return SELLER_COD_TRANSITIONS
    return SELLER_TRANSITIONS


def next_statuses(current: str) -> Iterable[str]:
    return sorted(ORDER_TRANSITIONS.get(current, set()))


def timeline_event(status: str, description: str, at: datetime) -> dict:
    return {"status": status, "description": description, "timestamp": at}


def transition_update(order: dict, target: str, at: datetime, tracking_id: Optional[str] = None,
                      carrier: Optional[str] = None, estimated_delivery: Optional[datetime] = None,
                      description: Optional[str] = None, reason: Optional[str] = None,
                      cancelled_by: str = "admin") -> dict:
    """Build the Mongo update that moves `order` to `target`.

    Raises InvalidTransition for an illegal move and ValidationFailed when the
    target needs data the caller did not supply.
    """
    assert_transition(order["status"], target)

    fields = {"status": target, "updated_at": at}
    if target == "shipped":
        tracking_id = (tracking_id or "").strip()
        carrier = (carrier or "").strip()
        if not tracking_id or not carrier:
            raise ValidationFailed("Tracking ID and carrier are required to mark an order shipped")
        fields["shipping.tracking_id"] = tracking_id
        fields["shipping.carrier"] = carrier
        fields["shipping.shipped_at"] = at
        if estimated_delivery:
            fields["shipping.estimated_delivery"] = estimated_delivery
        description = description or f"Order shipped via {carrier}. Tracking ID: {tracking_id}"
    elif target == "delivered":
        fields["shipping.delivered_at"] = at
    elif target == "cancelled":
        reason = reason or f"Cancelled by {cancelled_by}"
        fields["cancellation"] = {"reason": reason, "cancelled_by": cancelled_by, "cancelled_at": at}
        description = description or f"Order cancelled: {reason}"

    event = timeline_event(target, description or STATUS_DESCRIPTIONS[target], at)
    return {"$set": fields, "$push": {"timeline": event}}
