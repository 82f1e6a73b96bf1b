import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

import analytics
import orders
from auth import require_role
from database import create_document, find_or_404, get_db, now, serialize_doc
from errors import Conflict, Forbidden
from schemas import Product, QualityCheck, Seller

logger = logging.getLogger("marketplace.routes.seller")

router = APIRouter(prefix="/api/seller", tags=["Seller"])

seller_only = require_role("seller")


def approved_seller(user: dict) -> dict:
    seller = orders.seller_profile(user)
    if seller.get("status") != "approved":
        raise Forbidden("Seller account is not approved")
    return seller


# ---------- Onboarding ----------

class RegisterPayload(BaseModel):
    business_name: str = Field(..., min_length=1)
    email: str
    phone: Optional[str] = None
    gstin: Optional[str] = None
    subscription_plan: Optional[str] = None


@router.post("/register", status_code=201)
def register(body: RegisterPayload, user=Depends(require_role("customer", "seller"))):
    if get_db()["seller"].find_one({"user_id": user["id"]}):
        raise Conflict("Seller profile already exists")
    if body.subscription_plan:
        find_or_404("subscription_plan", body.subscription_plan, "Plan")
    seller = Seller(user_id=user["id"], **body.model_dump())
    _id = create_document("seller", seller)
    logger.info("Seller %s registered by user %s", body.business_name, user["id"])
    return {"success": True, "message": "Registration received, pending approval", "id": _id}


# ---------- Products ----------

@router.get("/products")
def list_products(user=Depends(seller_only)):
    seller = orders.seller_profile(user)
    docs = get_db()["product"].find({"seller_id": str(seller["_id"])}).sort("created_at", -1)
    return {"success": True, "products": [serialize_doc(d) for d in docs]}


@router.post("/products", status_code=201)
def create_product(product: Product, user=Depends(seller_only)):
    seller = approved_seller(user)
    plan_id = seller.get("subscription_plan")
    if plan_id:
        plan = find_or_404("subscription_plan", plan_id, "Plan")
        limit = plan.get("product_limit")
        if limit and get_db()["product"].count_documents({"seller_id": str(seller["_id"])}) >= limit:
            raise Forbidden(f"Your plan allows {limit} products, upgrade to add more")
    product.seller_id = str(seller["_id"])
    return {"success": True, "id": create_document("product", product)}


@router.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(seller_only)):
    seller = orders.seller_profile(user)
    product = find_or_404("product", product_id, "Product")
    if product.get("seller_id") != str(seller["_id"]):
        raise Forbidden("Not your product")
    active_deal = get_db()["steal_deal"].find_one({
        "product_id": product_id, "is_active": True, "ends_at": {"$gte": now()},
    })
    if active_deal:
        raise Conflict("Product is part of an active steal deal")
    get_db()["product"].delete_one({"_id": product["_id"]})
    return {"success": True, "message": "Product deleted"}


# ---------- Orders ----------

class SellerStatusPayload(BaseModel):
    status: str
    reason: Optional[str] = None


class ShipmentPayload(BaseModel):
    length: Optional[float] = None
    breadth: Optional[float] = None
    height: Optional[float] = None
    weight: Optional[float] = None


@router.get("/orders")
def list_orders(status: Optional[str] = None, user=Depends(seller_only)):
    seller = orders.seller_profile(user)
    query = {"items.seller_id": str(seller["_id"])}
    if status:
        query["status"] = status
    docs = get_db()["order"].find(query).sort("created_at", -1).limit(100)
    return {"success": True, "orders": [serialize_doc(d) for d in docs]}


@router.patch("/orders/{order_id}/update-status")
def update_order_status(order_id: str, body: SellerStatusPayload, user=Depends(seller_only)):
    order = orders.update_status(order_id, body.status, user, reason=body.reason)
    return {"success": True, "message": f"Order moved to {order['status']}", "order": serialize_doc(order)}


@router.post("/orders/{order_id}/cod-received")
def cod_received(order_id: str, user=Depends(seller_only)):
    order = orders.mark_cod_received(order_id, user)
    return {"success": True, "message": "Payment marked as received", "order": serialize_doc(order)}


@router.post("/orders/{order_id}/shipment")
def create_shipment(order_id: str, body: Optional[ShipmentPayload] = None, user=Depends(seller_only)):
    dimensions = {k: v for k, v in (body.model_dump() if body else {}).items() if v is not None}
    order = orders.create_shipment(order_id, user, dimensions)
    return {
        "success": True,
        "message": "Shipment created successfully",
        "tracking_id": order["shipping"]["tracking_id"],
        "shiprocket": serialize_doc(order["shiprocket"]),
    }


# ---------- Returns ----------

class ReturnUpdatePayload(BaseModel):
    status: str
    resolution_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    quality_check: Optional[QualityCheck] = None


@router.get("/returns")
def list_returns(user=Depends(seller_only)):
    seller = orders.seller_profile(user)
    match = {"items.seller_id": str(seller["_id"])}
    docs = get_db()["order"].find(dict(match, return_request={"$ne": None}))
    returns = [
        {
            "id": str(d["_id"]),
            "order_number": d["order_number"],
            "order_total": d["pricing"]["total"],
            **serialize_doc(d["return_request"]),
        }
        for d in docs
    ]
    return {"success": True, "returns": returns, "stats": analytics.return_stats(match)}


@router.put("/returns/{order_id}")
def update_return(order_id: str, body: ReturnUpdatePayload, user=Depends(seller_only)):
    order = orders.update_return(
        order_id, user, body.status,
        resolution_reason=body.resolution_reason,
        refund_amount=body.refund_amount,
        quality_check=body.quality_check.model_dump() if body.quality_check else None,
    )
    return {"success": True, "message": f"Return {body.status}", "return_request": serialize_doc(order["return_request"])}


# ---------- Analytics ----------

@router.get("/analytics")
def seller_analytics(start: Optional[datetime] = None, end: Optional[datetime] = None, user=Depends(seller_only)):
    seller = orders.seller_profile(user)
    return {"success": True, "analytics": analytics.order_analytics(str(seller["_id"]), start, end)}
