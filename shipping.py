"""Shiprocket client: token cache, adhoc orders, AWB assignment, labels and tracking."""

import logging
import time
from typing import Optional

import requests

import config
from errors import UpstreamError

logger = logging.getLogger("marketplace.shipping")

SHIPROCKET_API = "https://apiv2.shiprocket.in/v1/external"
TOKEN_TTL_SECONDS = 240 * 60 * 60

DEFAULT_DIMENSIONS = {"length": 30, "breadth": 20, "height": 15, "weight": 1.0}


class ShiprocketClient:
    def __init__(self, email: Optional[str] = None, password: Optional[str] = None,
                 base_url: str = SHIPROCKET_API):
        self.email = email if email is not None else config.SHIPROCKET_EMAIL
        self.password = password if password is not None else config.SHIPROCKET_PASSWORD
        self.base_url = base_url
        self.token = None
        self.token_expiry = 0.0

    def is_configured(self) -> bool:
        return bool(self.email and self.password)

    def get_token(self) -> str:
        if self.token and time.time() < self.token_expiry:
            return self.token
        if not self.is_configured():
            raise UpstreamError("Shiprocket is not configured")
        logger.info("Authenticating with Shiprocket")
        data = self._send("POST", "/auth/login", json={"email": self.email, "password": self.password})
        if not data.get("token"):
            raise UpstreamError("Failed to authenticate with Shiprocket")
        self.token = data["token"]
        self.token_expiry = time.time() + TOKEN_TTL_SECONDS
        return self.token

    def _send(self, method: str, endpoint: str, headers: Optional[dict] = None, **kwargs) -> dict:
        try:
            r = requests.request(method, f"{self.base_url}{endpoint}", headers=headers,
                                 timeout=config.HTTP_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            logger.error("Shiprocket %s failed: %s", endpoint, e)
            raise UpstreamError("Shipping carrier unavailable")
        if r.status_code >= 300:
            logger.error("Shiprocket %s returned %s: %s", endpoint, r.status_code, r.text)
            raise UpstreamError("Shipping carrier error")
        return r.json()

    def request(self, method: str, endpoint: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.get_token()}"}
        return self._send(method, endpoint, headers=headers, **kwargs)

    def create_order(self, payload: dict) -> dict:
        return self.request("POST", "/orders/create/adhoc", json=payload)

    def assign_awb(self, shipment_id, courier_id=None) -> dict:
        body = {"shipment_id": shipment_id}
        if courier_id:
            body["courier_id"] = courier_id
        return self.request("POST", "/courier/assign/awb", json=body)

    def generate_pickup(self, shipment_id) -> dict:
        return self.request("POST", "/courier/generate/pickup", json={"shipment_id": [shipment_id]})

    def generate_label(self, shipment_id) -> dict:
        return self.request("POST", "/courier/generate/label", json={"shipment_id": [shipment_id]})

    def track_awb(self, awb_code: str) -> dict:
        return self.request("GET", f"/courier/track/awb/{awb_code}")


def build_order_payload(order: dict, dimensions: Optional[dict] = None) -> dict:
    address = order["shipping_address"]
    dims = dict(DEFAULT_DIMENSIONS, **(dimensions or {}))
    created_at = order.get("created_at")
    return {
        "order_id": order["order_number"],
        "order_date": created_at.strftime("%Y-%m-%d %H:%M") if created_at else None,
        "pickup_location": config.SHIPROCKET_PICKUP_NAME,
        "billing_customer_name": address["name"],
        "billing_last_name": "",
        "billing_address": address["address_line1"],
        "billing_address_2": address.get("address_line2") or "",
        "billing_city": address["city"],
        "billing_state": address["state"],
        "billing_pincode": address["pincode"],
        "billing_country": address.get("country") or "India",
        "billing_phone": address["phone"],
        "billing_email": address.get("email") or "",
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item["name"],
                "sku": item.get("sku") or item["product_id"],
                "units": item["quantity"],
                "selling_price": item["price"],
                "discount": 0,
            }
            for item in order["items"]
        ],
        "payment_method": "COD" if order["payment"]["method"] == "cod" else "Prepaid",
        "sub_total": order["pricing"]["subtotal"],
        **dims,
    }


def book_shipment(client: ShiprocketClient, order: dict, dimensions: Optional[dict] = None) -> dict:
    """Create the carrier order, assign an AWB and fetch the label.

    Returns the fields stored under `order.shiprocket`.
    """
    created = client.create_order(build_order_payload(order, dimensions))
    shipment_id = created.get("shipment_id")
    awb_code = created.get("awb_code")
    courier_name = created.get("courier_name")
    if not awb_code:
        assigned = (client.assign_awb(shipment_id).get("response") or {}).get("data") or {}
        awb_code = assigned.get("awb_code")
        courier_name = assigned.get("courier_name") or courier_name
    if not awb_code:
        raise UpstreamError("Shiprocket did not assign an AWB")

    pickup = client.generate_pickup(shipment_id)
    label = client.generate_label(shipment_id)
    logger.info("Shiprocket shipment %s booked for order %s, AWB %s",
                shipment_id, order["order_number"], awb_code)
    return {
        "order_id": str(created.get("order_id")) if created.get("order_id") else None,
        "shipment_id": str(shipment_id) if shipment_id else None,
        "awb_code": awb_code,
        "courier_name": courier_name or "Shiprocket",
        "label": label.get("label_url"),
        "pickup_scheduled_date": (pickup.get("response") or {}).get("pickup_scheduled_date"),
    }


# Carrier statuses that move an order forward. RTO and returns go through the returns workflow.
CARRIER_STATUSES = {
    "PICKED_UP": "shipped",
    "IN_TRANSIT": "shipped",
    "OUT_FOR_DELIVERY": "out_for_delivery",
    "DELIVERED": "delivered",
}


def carrier_status(tracking: dict):
    """Read a track-by-AWB response. Returns (carrier status, order status or None)."""
    data = tracking.get("tracking_data") or tracking
    shipments = data.get("shipment_track") or [{}]
    raw = shipments[0].get("current_status") or data.get("current_status") or data.get("status") or ""
    key = str(raw).strip().upper().replace(" ", "_").replace("-", "_")
    return raw, CARRIER_STATUSES.get(key)


shiprocket = ShiprocketClient()
