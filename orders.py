"""
Order service: checkout, status changes, shipments, returns and refunds.

State machine rules come from `order_status` and `returns`; this module reads
the order, asks the state machine for the update, performs any third-party
call the transition needs, writes the update conditionally on the status it
read, and sends the notification last.
"""

import logging
import random
import time
from typing import List, Optional

import payments
import shipping
from config import PAYMENT_METHODS
from coupons import quote_coupon, redeem_coupon, release_coupon
from database import create_document, find_or_404, get_db, now, parse_object_id
from errors import Conflict, Forbidden, InvalidTransition, MarketplaceError, NotFound, UpstreamError, ValidationFailed
from notifications import notify_order_placed, notify_return_update, notify_status_change
from order_status import (
    CUSTOMER_CANCELLABLE, assert_transition, can_transition, seller_transitions, timeline_event, transition_update,
)
from pricing import calculate_pricing
from returns import request_return_update, return_transition_update
from schemas import Order, Payment, Refund

logger = logging.getLogger("marketplace.orders")


def generate_order_number() -> str:
    return f"OP{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def _orders():
    return get_db()["order"]


def get_order(order_id: str) -> dict:
    return find_or_404("order", order_id, "Order")


def seller_profile(user: dict) -> dict:
    seller = get_db()["seller"].find_one({"user_id": user["id"]})
    if not seller:
        raise Forbidden("Seller profile not found")
    return seller


def seller_owns(order: dict, seller_id) -> bool:
    return any(item.get("seller_id") == str(seller_id) for item in order.get("items", []))


def order_for_user(order_id: str, user: dict) -> dict:
    """Load an order the caller may act on: its customer, a seller with items in it, or an admin."""
    order = get_order(order_id)
    role = user["role"]
    if role == "admin":
        return order
    if role == "customer" and order.get("customer_id") == user["id"]:
        return order
    if role == "seller" and seller_owns(order, seller_profile(user)["_id"]):
        return order
    raise Forbidden("Unauthorized to access this order")


# ---------- Checkout ----------

def _reserve_stock(lines: List[dict]) -> None:
    products = get_db()["product"]
    reserved = []
    for line in lines:
        pid = parse_object_id(line["product_id"], "product id")
        result = products.update_one(
            {"_id": pid, "stock": {"$gte": line["quantity"]}},
            {"$inc": {"stock": -line["quantity"]}},
        )
        if result.modified_count == 0:
            for done in reserved:
                products.update_one({"_id": done["_pid"]}, {"$inc": {"stock": done["quantity"]}})
            raise ValidationFailed(f"Insufficient stock for \"{line['name']}\"")
        reserved.append({"_pid": pid, "quantity": line["quantity"]})
    products.update_many(
        {"_id": {"$in": [r["_pid"] for r in reserved]}, "stock": {"$lte": 0}},
        {"$set": {"is_active": False}},
    )


def restock(order: dict) -> None:
    products = get_db()["product"]
    for item in order.get("items", []):
        products.update_one(
            {"_id": parse_object_id(item["product_id"], "product id")},
            {"$inc": {"stock": item["quantity"]}, "$set": {"is_active": True}},
        )
        logger.info("Restocked %s units of %s", item["quantity"], item["name"])


def build_lines(items: List[dict]) -> List[dict]:
    """Price cart items from the catalog; the client's prices are never trusted."""
    if not items:
        raise ValidationFailed("Cart is empty")
    lines = []
    for item in items:
        if not item.get("selected", True):
            continue
        product = find_or_404("product", item["product_id"], "Product")
        quantity = int(item.get("quantity") or 0)
        if quantity <= 0:
            raise ValidationFailed(f"Invalid quantity for product \"{product['name']}\"")
        if not product.get("is_active", True):
            raise ValidationFailed(f"Product \"{product['name']}\" is currently unavailable")
        if product.get("stock", 0) < quantity:
            raise ValidationFailed(f"Only {product.get('stock', 0)} units available for \"{product['name']}\"")
        lines.append({
            "product_id": str(product["_id"]),
            "seller_id": product.get("seller_id"),
            "name": product["name"],
            "price": product["price"],
            "quantity": quantity,
            "sku": product.get("sku"),
            "images": product.get("images", []),
            "line_total": product["price"] * quantity,
        })
    if not lines:
        raise ValidationFailed("No items selected")
    return lines


def quote(items: List[dict], coupon_code: Optional[str] = None, user_id: Optional[str] = None):
    """Price a cart. Returns (lines, pricing, coupon)."""
    lines = build_lines(items)
    coupon, discount = None, 0
    if coupon_code and coupon_code.strip():
        subtotal = calculate_pricing(lines).subtotal
        coupon, discount = quote_coupon(coupon_code, subtotal, user_id)
    free_shipping = bool(coupon and coupon["type"] == "free_shipping")
    return lines, calculate_pricing(lines, discount=discount, free_shipping=free_shipping), coupon


def create_order(customer: dict, items: List[dict], shipping_address: dict, payment_method: str,
                 coupon_code: Optional[str] = None) -> dict:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationFailed("Valid payment method required")

    lines, pricing, coupon = quote(items, coupon_code, customer["id"])
    if coupon:
        redeem_coupon(coupon, customer["id"])
    try:
        _reserve_stock(lines)
    except ValidationFailed:
        if coupon:
            release_coupon(coupon, customer["id"])
        raise

    at = now()
    if not shipping_address.get("email"):
        shipping_address = dict(shipping_address, email=customer.get("email") or "")
    doc = Order(
        order_number=generate_order_number(),
        customer_id=customer["id"],
        items=lines,
        shipping_address=shipping_address,
        payment=Payment(method=payment_method, coupon_code=coupon["code"] if coupon else None),
        pricing=pricing,
        timeline=[timeline_event("pending", "Order placed successfully", at)],
        created_at=at,
    )
    order_id = create_document("order", doc)
    order = get_order(order_id)
    logger.info("Order %s created for %s, total ₹%s", order["order_number"], customer["id"], pricing.total)
    notify_order_placed(order)
    return order


# ---------- Status changes ----------

def _write(order: dict, update: dict, extra_filter: Optional[dict] = None) -> dict:
    filt = {"_id": order["_id"], "status": order["status"]}
    filt.update(extra_filter or {})
    result = _orders().update_one(filt, update)
    if result.matched_count == 0:
        raise InvalidTransition("Order was modified by another request, reload and retry")
    return _orders().find_one({"_id": order["_id"]})


def _claim_refund(order: dict, amount: float, reason: str, extra_filter: Optional[dict] = None) -> Optional[str]:
    """Refund the captured payment at most once per order.

    The claim is stored before Razorpay is called. When the status write that
    follows loses a race, the issued refund stays on the order and the retry
    reuses its id instead of refunding again.
    """
    claimed = order.get("refund") or {}
    if claimed.get("status") == "issued":
        logger.info("Order %s: reusing refund %s", order["order_number"], claimed.get("id"))
        return claimed.get("id")
    if claimed:
        raise Conflict("A refund for this order is already in progress")

    filt = {"_id": order["_id"], "status": order["status"], "refund": None}
    filt.update(extra_filter or {})
    claim = Refund(amount=amount, reason=reason, requested_at=now()).model_dump()
    if _orders().update_one(filt, {"$set": {"refund": claim}}).matched_count == 0:
        raise InvalidTransition("Order was modified by another request, reload and retry")

    try:
        refund = payments.refund_payment(order["payment"]["transaction_id"], amount,
                                         notes={"order_number": order["order_number"], "reason": reason})
    except UpstreamError:
        _orders().update_one({"_id": order["_id"]}, {"$set": {"refund": None}})
        raise
    _orders().update_one({"_id": order["_id"]}, {"$set": {
        "refund.status": "issued",
        "refund.id": refund.get("id"),
        "refund.issued_at": now(),
    }})
    return refund.get("id")


def _refund_for_cancellation(order: dict, update: dict, reason: str) -> None:
    payment = order["payment"]
    if payment.get("status") != "paid" or payment.get("method") == "cod":
        return
    if not payment.get("transaction_id"):
        raise ValidationFailed("Paid order has no transaction to refund")
    update["$set"]["payment.status"] = "refunded"
    update["$set"]["refund_id"] = _claim_refund(order, order["pricing"]["total"], reason)


def update_status(order_id: str, target: str, actor: dict, tracking_id: Optional[str] = None,
                  carrier: Optional[str] = None, estimated_delivery=None, description: Optional[str] = None,
                  reason: Optional[str] = None) -> dict:
    order = order_for_user(order_id, actor)
    role = actor["role"]

    if order["status"] == target:
        return order

    if role == "seller":
        assert_transition(order["status"], target, seller_transitions(order))
    elif role == "customer":
        if target != "cancelled":
            raise Forbidden("Customers can only cancel orders")
        if order["status"] not in CUSTOMER_CANCELLABLE:
            raise InvalidTransition("Order cannot be cancelled after shipping")

    update = transition_update(
        order, target, now(),
        tracking_id=tracking_id, carrier=carrier, estimated_delivery=estimated_delivery,
        description=description, reason=reason, cancelled_by=role,
    )
    if target == "cancelled":
        _refund_for_cancellation(order, update, reason or f"Cancelled by {role}")

    updated = _write(order, update)
    logger.info("Order %s: %s -> %s by %s", order["order_number"], order["status"], target, role)

    if target == "cancelled":
        restock(order)
    notify_status_change(updated, target)
    return updated


def cancel_order(order_id: str, actor: dict, reason: Optional[str] = None) -> dict:
    return update_status(order_id, "cancelled", actor, reason=reason or "Cancelled by customer")


def create_shipment(order_id: str, actor: dict, dimensions: Optional[dict] = None,
                    client: Optional[shipping.ShiprocketClient] = None) -> dict:
    """Book the parcel with Shiprocket and mark the order shipped with its AWB."""
    order = order_for_user(order_id, actor)
    if order["status"] not in ("ready_for_pickup", "pickup"):
        raise ValidationFailed("Order must be ready for pickup to create a shipment")
    if (order.get("shipping") or {}).get("tracking_id"):
        raise ValidationFailed("Shipment already created")

    booking = shipping.book_shipment(client or shipping.shiprocket, order, dimensions)
    update = transition_update(
        order, "shipped", now(),
        tracking_id=booking["awb_code"], carrier=booking["courier_name"],
        description=f"Order shipped via {booking['courier_name']}. AWB: {booking['awb_code']}",
    )
    update["$set"]["shiprocket"] = booking
    updated = _write(order, update)
    logger.info("Order %s shipped, AWB %s", order["order_number"], booking["awb_code"])
    notify_status_change(updated, "shipped")
    return updated


def sync_tracking(client=None, limit: int = 100) -> dict:
    """Move shipped orders forward from the carrier's tracking feed."""
    client = client or shipping.shiprocket
    active = list(_orders().find({
        "status": {"$in": ["shipped", "out_for_delivery"]},
        "shipping.tracking_id": {"$ne": None},
    }).limit(limit))

    updated = errors = 0
    for order in active:
        awb = order["shipping"]["tracking_id"]
        try:
            carrier_status, target = shipping.carrier_status(client.track_awb(awb))
            if target is None or not can_transition(order["status"], target):
                continue
            update = transition_update(order, target, now(), description=f"Carrier update: {carrier_status}")
            fresh = _write(order, update)
        except MarketplaceError as e:
            logger.error("Tracking sync failed for order %s (AWB %s): %s", order["order_number"], awb, e.message)
            errors += 1
            continue
        updated += 1
        logger.info("Order %s: %s -> %s from carrier status %s", order["order_number"], order["status"], target,
                    carrier_status)
        notify_status_change(fresh, target)

    logger.info("Tracking sync: %s processed, %s updated, %s errors", len(active), updated, errors)
    return {"processed": len(active), "updated": updated, "errors": errors}


# ---------- Payment ----------

def attach_gateway_order(order: dict, razorpay_order_id: str) -> None:
    _orders().update_one(
        {"_id": order["_id"]},
        {"$set": {"payment.razorpay_order_id": razorpay_order_id, "updated_at": now()}},
    )


def _refund_late_capture(order: dict, razorpay_payment_id: str) -> dict:
    """A payment captured after the order was cancelled goes straight back to the customer."""
    at = now()
    captured = _write(
        order,
        {"$set": {"payment.transaction_id": razorpay_payment_id, "payment.paid_at": at, "updated_at": at}},
        {"payment.status": order["payment"].get("status")},
    )
    refund_id = _claim_refund(captured, captured["pricing"]["total"], "Payment captured after cancellation")
    updated = _write(captured, {
        "$set": {"payment.status": "refunded", "refund_id": refund_id, "updated_at": now()},
        "$push": {"timeline": timeline_event("payment_refunded", "Payment received after cancellation was refunded", at)},
    })
    logger.warning("Payment %s captured on cancelled order %s, refunded as %s",
                   razorpay_payment_id, order["order_number"], refund_id)
    return updated


def confirm_payment(order: dict, razorpay_payment_id: str) -> dict:
    """Mark the payment captured and confirm a pending order. Repeated confirmations are no-ops."""
    if order["payment"].get("status") in ("paid", "refunded"):
        return order
    if order["status"] == "cancelled":
        return _refund_late_capture(order, razorpay_payment_id)
    at = now()
    fields = {
        "payment.status": "paid",
        "payment.transaction_id": razorpay_payment_id,
        "payment.paid_at": at,
        "updated_at": at,
    }
    push = {"timeline": timeline_event("payment_received", "Payment received", at)}
    confirms = order["status"] == "pending"
    if confirms:
        fields["status"] = "confirmed"
        push = {"timeline": {"$each": [push["timeline"], timeline_event("confirmed", "Order confirmed", at)]}}
    updated = _write(order, {"$set": fields, "$push": push})
    logger.info("Payment %s captured for order %s", razorpay_payment_id, order["order_number"])
    if confirms:
        notify_status_change(updated, "confirmed")
    return updated


def mark_payment_failed(order: dict, reason: Optional[str] = None) -> dict:
    if order["payment"].get("status") in ("paid", "refunded"):
        return order
    at = now()
    return _write(order, {
        "$set": {"payment.status": "failed", "updated_at": at},
        "$push": {"timeline": timeline_event("payment_failed", reason or "Payment failed", at)},
    })


def mark_cod_received(order_id: str, actor: dict) -> dict:
    """Record cash collected by the seller for a cash on delivery order."""
    order = order_for_user(order_id, actor)
    payment = order["payment"]
    if payment.get("method") != "cod" or payment.get("status") not in ("pending", "failed"):
        raise ValidationFailed("Payment status can only be updated manually for COD pending/failed payments")
    if order["status"] == "cancelled":
        raise ValidationFailed("Order is cancelled")
    at = now()
    updated = _write(order, {
        "$set": {"payment.status": "paid", "payment.paid_at": at, "updated_at": at},
        "$push": {"timeline": timeline_event("payment_received", "Payment marked as received by seller", at)},
    }, {"payment.status": payment["status"]})
    logger.info("COD payment for order %s marked received by %s", order["order_number"], actor["id"])
    return updated


def find_by_gateway_order(razorpay_order_id: str) -> dict:
    order = _orders().find_one({"payment.razorpay_order_id": razorpay_order_id})
    if not order:
        raise NotFound("Order not found")
    return order


# ---------- Returns ----------

def request_return(order_id: str, actor: dict, reason: str, title: str,
                   description: Optional[str] = None, images: Optional[List[str]] = None) -> dict:
    order = order_for_user(order_id, actor)
    if actor["role"] != "customer":
        raise Forbidden("Only the customer can request a return")
    update = request_return_update(order, reason, title, now(), description=description, images=images)
    updated = _write(order, update, {"return_request": None})
    logger.info("Return requested for order %s: %s", order["order_number"], reason)
    notify_return_update(updated, "requested")
    return updated


def seller_refund_limit(order: dict, seller_id) -> Optional[float]:
    """A seller refunds at most their own lines of a mixed-seller order; None means the full total."""
    own = [item for item in order["items"] if item.get("seller_id") == str(seller_id)]
    if len(own) == len(order["items"]):
        return None
    return sum(item["line_total"] for item in own)


def _issue_refund(order: dict, amount: int, reason: Optional[str], extra_filter: dict) -> Optional[str]:
    payment = order["payment"]
    if payment.get("method") == "cod" or amount == 0:
        logger.info("Order %s: refund of ₹%s recorded for manual settlement", order["order_number"], amount)
        return None
    if not payment.get("transaction_id"):
        raise UpstreamError("Order has no captured payment to refund")
    return _claim_refund(order, amount, reason or "Return", extra_filter)


def update_return(order_id: str, actor: dict, status: str, resolution_reason: Optional[str] = None,
                  refund_amount: Optional[float] = None, quality_check: Optional[dict] = None) -> dict:
    order = order_for_user(order_id, actor)
    if actor["role"] == "customer":
        raise Forbidden("Customers cannot process returns")

    refund_limit = None
    if actor["role"] == "seller":
        refund_limit = seller_refund_limit(order, seller_profile(actor)["_id"])
    update = return_transition_update(
        order, status, now(), actor=actor["id"], resolution_reason=resolution_reason,
        refund_amount=refund_amount, quality_check=quality_check, refund_limit=refund_limit,
    )
    current = order["return_request"]["status"]
    guard = {"return_request.status": current}
    if status == "refunded":
        amount = update["$set"]["return_request.refund_amount"]
        update["$set"]["return_request.refund_id"] = _issue_refund(order, amount, resolution_reason, guard)

    updated = _write(order, update, guard)
    logger.info("Return for order %s: %s -> %s by %s", order["order_number"], current, status, actor["id"])
    if status == "refunded":
        restock(order)
    notify_return_update(updated, status)
    return updated
