from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

import orders
from auth import require_role
from database import get_db, jsonable, serialize_doc
from errors import NotFound
from schemas import Address

router = APIRouter(prefix="/api", tags=["Customer"])

customer_only = require_role("customer")


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=100)
    selected: bool = True


class QuotePayload(BaseModel):
    items: List[CartItem]
    coupon_code: Optional[str] = None


class CreateOrderPayload(BaseModel):
    items: List[CartItem]
    shipping_address: Address
    payment_method: str
    coupon_code: Optional[str] = None


class CancelPayload(BaseModel):
    reason: Optional[str] = None


class ReturnPayload(BaseModel):
    reason: str
    title: str
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)


# ---------- Cart ----------

@router.post("/customer/cart/quote")
def cart_quote(body: QuotePayload, user=Depends(customer_only)):
    lines, pricing, coupon = orders.quote([i.model_dump() for i in body.items], body.coupon_code, user["id"])
    return {
        "success": True,
        "items": lines,
        "pricing": pricing.model_dump(),
        "coupon": coupon["code"] if coupon else None,
    }


# ---------- Orders ----------

@router.post("/customer/orders", status_code=201)
def create_order(body: CreateOrderPayload, user=Depends(customer_only)):
    order = orders.create_order(
        user,
        [i.model_dump() for i in body.items],
        body.shipping_address.model_dump(),
        body.payment_method,
        body.coupon_code,
    )
    return {
        "success": True,
        "message": "Order placed successfully",
        "order_number": order["order_number"],
        "order": serialize_doc(order),
        "payment_required": body.payment_method != "cod",
    }


@router.get("/customer/orders")
def list_orders(status: Optional[str] = None, page: int = 1, limit: int = 10, user=Depends(customer_only)):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    query = {"customer_id": user["id"]}
    if status:
        query["status"] = status
    collection = get_db()["order"]
    total = collection.count_documents(query)
    docs = collection.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "orders": [serialize_doc(d) for d in docs],
        "pagination": {"total": total, "page": page, "pages": -(-total // limit), "limit": limit},
    }


@router.get("/customer/orders/{order_id}")
def get_order(order_id: str, user=Depends(customer_only)):
    return {"success": True, "order": serialize_doc(orders.order_for_user(order_id, user))}


@router.post("/customer/orders/{order_id}/cancel")
def cancel_order(order_id: str, body: CancelPayload, user=Depends(customer_only)):
    order = orders.cancel_order(order_id, user, body.reason)
    return {"success": True, "message": "Order cancelled", "order": serialize_doc(order)}


@router.post("/customer/orders/{order_id}/return")
def request_return(order_id: str, body: ReturnPayload, user=Depends(customer_only)):
    order = orders.request_return(order_id, user, body.reason, body.title, body.description, body.images)
    return {"success": True, "message": "Return request submitted successfully", "order": serialize_doc(order)}


# ---------- Public tracking ----------

@router.get("/track/{order_number}")
def track_order(order_number: str):
    order = get_db()["order"].find_one({"order_number": order_number})
    if not order:
        raise NotFound("Order not found")
    shipping = order.get("shipping") or {}
    return {
        "success": True,
        "order_number": order["order_number"],
        "status": order["status"],
        "timeline": jsonable(order.get("timeline", [])),
        "tracking_id": shipping.get("tracking_id"),
        "carrier": shipping.get("carrier"),
        "return_status": (order.get("return_request") or {}).get("status"),
    }
