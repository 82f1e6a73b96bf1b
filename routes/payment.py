import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

import config
import orders
import payments
from auth import require_role
from database import serialize_doc
from errors import InvalidTransition, NotFound, Unauthorized, ValidationFailed

logger = logging.getLogger("marketplace.routes.payment")

router = APIRouter(prefix="/api/payment/razorpay", tags=["Payment"])

PAYABLE_STATUSES = ("pending", "confirmed")


class CreatePaymentPayload(BaseModel):
    order_id: str


class PaymentVerification(BaseModel):
    order_id: str
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


@router.post("/create-order")
def create_payment_order(body: CreatePaymentPayload, user=Depends(require_role("customer"))):
    order = orders.order_for_user(body.order_id, user)
    if order["payment"]["method"] == "cod":
        raise ValidationFailed("Cash on delivery orders do not need online payment")
    if order["payment"]["status"] == "paid":
        raise ValidationFailed("Order is already paid")
    if order["status"] not in PAYABLE_STATUSES:
        raise ValidationFailed(f"Order is {order['status']} and cannot be paid")
    if not payments.is_configured():
        return {"success": True, "razorpay": "not_configured"}

    data = payments.create_order(
        order["pricing"]["total"],
        receipt=order["order_number"],
        notes={"order_id": str(order["_id"])},
    )
    orders.attach_gateway_order(order, data["id"])
    return {
        "success": True,
        "key_id": config.RAZORPAY_KEY_ID,
        "razorpay_order_id": data["id"],
        "amount": data.get("amount", payments.to_paise(order["pricing"]["total"])),
        "currency": data.get("currency", "INR"),
    }


@router.post("/verify")
def verify_payment(body: PaymentVerification, user=Depends(require_role("customer"))):
    if not payments.is_configured():
        return {"success": True, "status": "skipped", "reason": "Razorpay not configured"}
    order = orders.order_for_user(body.order_id, user)
    if order["payment"].get("razorpay_order_id") != body.razorpay_order_id:
        raise ValidationFailed("Payment does not belong to this order")
    if not payments.verify_payment_signature(body.razorpay_order_id, body.razorpay_payment_id,
                                             body.razorpay_signature):
        raise ValidationFailed("Invalid payment signature")
    order = orders.confirm_payment(order, body.razorpay_payment_id)
    message = "Payment verified"
    if order["status"] == "cancelled":
        message = "Order was cancelled, the payment has been refunded"
    return {"success": True, "message": message, "order": serialize_doc(order)}


def apply_webhook_event(event: dict) -> None:
    name = event.get("event")
    entity = ((event.get("payload") or {}).get("payment") or {}).get("entity") or {}
    razorpay_order_id = entity.get("order_id")
    logger.info("Razorpay webhook %s for %s", name, razorpay_order_id)
    if not razorpay_order_id:
        return
    try:
        if name == "payment.captured":
            orders.confirm_payment(orders.find_by_gateway_order(razorpay_order_id), entity["id"])
        elif name == "payment.failed":
            orders.mark_payment_failed(orders.find_by_gateway_order(razorpay_order_id),
                                       entity.get("error_description"))
    except (InvalidTransition, NotFound) as e:
        # lost race or an order we do not know: acknowledge
        logger.warning("Razorpay webhook %s for %s ignored: %s", name, razorpay_order_id, e.message)


@router.post("/webhook")
async def webhook(request: Request, x_razorpay_signature: Optional[str] = Header(None)):
    body = await request.body()
    if not payments.verify_webhook_signature(body, x_razorpay_signature):
        raise Unauthorized("Invalid webhook signature")
    await run_in_threadpool(apply_webhook_event, json.loads(body))
    return {"success": True}
