"""Razorpay bridge: orders, signature checks and refunds over the REST API."""

import hashlib
import hmac
import logging
import os
from typing import Optional

import requests

import config
from errors import UpstreamError

logger = logging.getLogger("marketplace.payments")

RAZORPAY_API = "https://api.razorpay.com/v1"


def is_configured() -> bool:
    return bool(config.RAZORPAY_KEY_ID and config.RAZORPAY_KEY_SECRET)


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def _request(method: str, path: str, payload: Optional[dict] = None) -> dict:
    try:
        r = requests.request(
            method,
            f"{RAZORPAY_API}{path}",
            auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET),
            json=payload,
            timeout=config.HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error("Razorpay %s %s failed: %s", method, path, e)
        raise UpstreamError("Payment gateway unavailable")
    if r.status_code >= 300:
        logger.error("Razorpay %s %s returned %s: %s", method, path, r.status_code, r.text)
        raise UpstreamError("Payment gateway error")
    return r.json()


def create_order(amount: float, receipt: Optional[str] = None, currency: str = "INR",
                 notes: Optional[dict] = None) -> dict:
    data = _request("POST", "/orders", {
        "amount": to_paise(amount),
        "currency": currency,
        "receipt": receipt or "rcpt_" + os.urandom(4).hex(),
        "payment_capture": 1,
        "notes": notes or {},
    })
    logger.info("Razorpay order %s created for %s paise", data.get("id"), data.get("amount"))
    return data


def _signature(message: bytes, secret: str) -> str:
    return hmac.new(bytes(secret, "utf-8"), msg=message, digestmod=hashlib.sha256).hexdigest()


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
    expected = _signature(
        bytes(razorpay_order_id + "|" + razorpay_payment_id, "utf-8"),
        config.RAZORPAY_KEY_SECRET,
    )
    return hmac.compare_digest(expected, signature or "")


def verify_webhook_signature(body: bytes, signature: str) -> bool:
    if not config.RAZORPAY_WEBHOOK_SECRET:
        return False
    expected = _signature(body, config.RAZORPAY_WEBHOOK_SECRET)
    return hmac.compare_digest(expected, signature or "")


def refund_payment(payment_id: str, amount: Optional[float] = None, notes: Optional[dict] = None) -> dict:
    """Refund a captured payment; a missing amount refunds it in full."""
    payload = {"notes": notes or {}}
    if amount is not None:
        payload["amount"] = to_paise(amount)
    refund = _request("POST", f"/payments/{payment_id}/refund", payload)
    logger.info("Refund %s issued for payment %s", refund.get("id"), payment_id)
    return refund
