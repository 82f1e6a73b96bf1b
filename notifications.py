"""
Transactional email.

Templates live in templates/email and are rendered with Jinja2; delivery goes
through Resend. Notifications are sent after the database write they describe,
so `notify_*` helpers log a failed send and carry on.
"""

import logging
from pathlib import Path
from typing import Optional

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

import config
from errors import UpstreamError

logger = logging.getLogger("marketplace.notifications")

TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)

STATUS_MESSAGES = {
    "confirmed": "Your order has been confirmed.",
    "processing": "Your order has been accepted by the seller and is being processed.",
    "ready_for_pickup": "Your order has been packed and is ready for pickup by our delivery partner.",
    "pickup": "Your order has been picked up by our delivery partner.",
    "shipped": "Your order is on its way.",
    "out_for_delivery": "Your order is out for delivery and will reach you today.",
    "delivered": "Your order has been delivered. We hope you love it!",
    "cancelled": "Your order has been cancelled.",
    "returned": "Your return is complete.",
}

RETURN_MESSAGES = {
    "requested": "We have received your return request.",
    "approved": "Your return request has been approved. Our delivery partner will pick up the item.",
    "rejected": "Your return request could not be approved.",
    "received": "The seller has received your returned item.",
    "quality_passed": "Your returned item passed the quality check.",
    "quality_failed": "Your returned item did not pass the quality check.",
    "refunded": "Your refund has been processed.",
}


def render(template: str, **context) -> str:
    return env.get_template(template).render(**context)


def send_email(to: str, subject: str, html: str) -> Optional[str]:
    """Send one email. Returns the provider message id, or None when email is not configured."""
    if not config.RESEND_API_KEY:
        logger.info("Email not configured, skipping '%s' to %s", subject, to)
        return None
    resend.api_key = config.RESEND_API_KEY
    try:
        response = resend.Emails.send({"from": config.EMAIL_FROM, "to": [to], "subject": subject, "html": html})
    except Exception as e:
        raise UpstreamError(f"Email delivery failed: {e}")
    if not isinstance(response, dict) or not response.get("id"):
        raise UpstreamError(f"Email delivery failed: {response}")
    logger.info("Email '%s' sent to %s (%s)", subject, to, response["id"])
    return response["id"]


def _recipient(order: dict) -> Optional[str]:
    return (order.get("shipping_address") or {}).get("email") or None


def _deliver(order: dict, subject: str, template: str, **context) -> bool:
    to = _recipient(order)
    if not to:
        logger.info("Order %s has no email address, skipping '%s'", order.get("order_number"), subject)
        return False
    try:
        send_email(to, subject, render(template, order=order, **context))
    except Exception:
        logger.exception("Failed to send '%s' for order %s", subject, order.get("order_number"))
        return False
    return True


def notify_order_placed(order: dict) -> bool:
    return _deliver(order, f"Order Confirmation - #{order['order_number']}", "order_confirmation.html")


def notify_status_change(order: dict, status: str, message: Optional[str] = None) -> bool:
    if status not in STATUS_MESSAGES:
        return False
    return _deliver(
        order,
        f"Order Update - #{order['order_number']}",
        "order_status.html",
        status=status,
        message=message or STATUS_MESSAGES[status],
    )


def notify_return_update(order: dict, status: str) -> bool:
    return _deliver(
        order,
        f"Return Update - #{order['order_number']}",
        "return_update.html",
        status=status,
        message=RETURN_MESSAGES.get(status, ""),
        return_request=order.get("return_request") or {},
    )
