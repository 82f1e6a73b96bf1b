import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

import analytics
import orders
from auth import require_role
from database import create_document, find_or_404, get_db, now, parse_object_id, serialize_doc
from errors import Conflict, ValidationFailed
from order_status import next_statuses
from routes.seller import ReturnUpdatePayload
from schemas import Campaign, Coupon, StealDeal, SubscriptionPlan

logger = logging.getLogger("marketplace.routes.admin")

router = APIRouter(prefix="/api/admin", tags=["Admin"])

admin_only = require_role("admin")


def _list(collection: str, query: Optional[dict] = None, limit: int = 100):
    docs = get_db()[collection].find(query or {}).sort("created_at", -1).limit(limit)
    return [serialize_doc(d) for d in docs]


def _replace(collection: str, doc_id: str, label: str, data: dict) -> dict:
    doc = find_or_404(collection, doc_id, label)
    data["updated_at"] = now()
    get_db()[collection].update_one({"_id": doc["_id"]}, {"$set": data})
    return serialize_doc(get_db()[collection].find_one({"_id": doc["_id"]}))


def _delete(collection: str, doc_id: str, label: str) -> None:
    doc = find_or_404(collection, doc_id, label)
    get_db()[collection].delete_one({"_id": doc["_id"]})
    logger.info("Deleted %s %s", label.lower(), doc_id)


# ---------- Orders ----------

class UpdateOrderStatus(BaseModel):
    status: str
    tracking_id: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    description: Optional[str] = None
    reason: Optional[str] = None


@router.get("/orders")
def list_orders(status: Optional[str] = None, limit: int = 100, user=Depends(admin_only)):
    return {"success": True, "orders": _list("order", {"status": status} if status else None, limit)}


@router.patch("/orders/{order_id}/update-status")
def update_order_status(order_id: str, body: UpdateOrderStatus, user=Depends(admin_only)):
    order = orders.update_status(
        order_id, body.status, user,
        tracking_id=body.tracking_id, carrier=body.carrier, estimated_delivery=body.estimated_delivery,
        description=body.description, reason=body.reason,
    )
    return {
        "success": True,
        "message": "Order status updated successfully",
        "order": serialize_doc(order),
        "next_statuses": next_statuses(order["status"]),
    }


@router.get("/returns")
def list_returns(user=Depends(admin_only)):
    docs = get_db()["order"].find({"return_request": {"$ne": None}}).sort("return_request.requested_at", -1)
    returns = [
        {
            "id": str(d["_id"]),
            "order_number": d["order_number"],
            "customer": d["shipping_address"].get("name"),
            "return_request": serialize_doc(d["return_request"]),
            "order_total": d["pricing"]["total"],
            "status": d["status"],
        }
        for d in docs
    ]
    return {"success": True, "returns": returns, "stats": analytics.return_stats({})}


@router.put("/returns/{order_id}")
def process_return(order_id: str, body: ReturnUpdatePayload, user=Depends(admin_only)):
    order = orders.update_return(
        order_id, user, body.status,
        resolution_reason=body.resolution_reason,
        refund_amount=body.refund_amount,
        quality_check=body.quality_check.model_dump() if body.quality_check else None,
    )
    return {"success": True, "message": f"Return {body.status}", "return_request": serialize_doc(order["return_request"])}


# ---------- Coupons ----------

@router.get("/coupons")
def list_coupons(status: Optional[str] = None, user=Depends(admin_only)):
    query = {}
    if status == "active":
        query = {"is_active": True, "valid_until": {"$gte": now()}}
    elif status == "expired":
        query = {"valid_until": {"$lt": now()}}
    return {"success": True, "coupons": _list("coupon", query)}


@router.post("/coupons", status_code=201)
def create_coupon(coupon: Coupon, user=Depends(admin_only)):
    if coupon.valid_until <= coupon.valid_from:
        raise ValidationFailed("valid_until must be after valid_from")
    if coupon.type == "percentage" and coupon.value > 100:
        raise ValidationFailed("Percentage coupons cannot exceed 100")
    coupon.code = coupon.code.strip().upper()
    if get_db()["coupon"].find_one({"code": coupon.code}):
        raise Conflict("Coupon code already exists")
    coupon.created_by = user["id"]
    coupon.usage_count = 0
    coupon.users = {}
    try:
        _id = create_document("coupon", coupon)
    except DuplicateKeyError:
        raise Conflict("Coupon code already exists")
    logger.info("Coupon %s created by %s", coupon.code, user["id"])
    return {"success": True, "message": "Coupon created successfully", "id": _id}


@router.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, user=Depends(admin_only)):
    _delete("coupon", coupon_id, "Coupon")
    return {"success": True, "message": "Coupon deleted"}


# ---------- Campaigns ----------

@router.get("/campaigns")
def list_campaigns(user=Depends(admin_only)):
    return {"success": True, "campaigns": _list("campaign")}


@router.post("/campaigns", status_code=201)
def create_campaign(campaign: Campaign, user=Depends(admin_only)):
    if campaign.ends_at <= campaign.starts_at:
        raise ValidationFailed("Campaign must end after it starts")
    return {"success": True, "id": create_document("campaign", campaign)}


@router.put("/campaigns/{campaign_id}")
def update_campaign(campaign_id: str, campaign: Campaign, user=Depends(admin_only)):
    if campaign.ends_at <= campaign.starts_at:
        raise ValidationFailed("Campaign must end after it starts")
    return {"success": True, "campaign": _replace("campaign", campaign_id, "Campaign", campaign.model_dump())}


@router.delete("/campaigns/{campaign_id}")
def delete_campaign(campaign_id: str, user=Depends(admin_only)):
    _delete("campaign", campaign_id, "Campaign")
    return {"success": True, "message": "Campaign deleted"}


# ---------- Subscription plans ----------

@router.get("/subscription-plans")
def list_plans(user=Depends(admin_only)):
    return {"success": True, "plans": _list("subscription_plan")}


@router.post("/subscription-plans", status_code=201)
def create_plan(plan: SubscriptionPlan, user=Depends(admin_only)):
    if get_db()["subscription_plan"].find_one({"name": plan.name}):
        raise Conflict("A plan with this name already exists")
    return {"success": True, "id": create_document("subscription_plan", plan)}


@router.put("/subscription-plans/{plan_id}")
def update_plan(plan_id: str, plan: SubscriptionPlan, user=Depends(admin_only)):
    return {"success": True, "plan": _replace("subscription_plan", plan_id, "Plan", plan.model_dump())}


@router.delete("/subscription-plans/{plan_id}")
def delete_plan(plan_id: str, user=Depends(admin_only)):
    plan = find_or_404("subscription_plan", plan_id, "Plan")
    if get_db()["seller"].find_one({"subscription_plan": str(plan["_id"])}):
        raise Conflict("Plan has subscribed sellers, deactivate it instead")
    _delete("subscription_plan", plan_id, "Plan")
    return {"success": True, "message": "Plan deleted"}


# ---------- Steal deals ----------

@router.get("/steal-deals")
def list_steal_deals(user=Depends(admin_only)):
    return {"success": True, "deals": _list("steal_deal")}


@router.post("/steal-deals", status_code=201)
def create_steal_deal(deal: StealDeal, user=Depends(admin_only)):
    product = find_or_404("product", deal.product_id, "Product")
    if deal.ends_at <= deal.starts_at:
        raise ValidationFailed("Deal must end after it starts")
    if deal.deal_price >= product["price"]:
        raise ValidationFailed("Deal price must be below the product price")
    return {"success": True, "id": create_document("steal_deal", deal)}


@router.delete("/steal-deals/{deal_id}")
def delete_steal_deal(deal_id: str, user=Depends(admin_only)):
    _delete("steal_deal", deal_id, "Deal")
    return {"success": True, "message": "Deal deleted"}


# ---------- Sellers ----------

class SellerStatusPayload(BaseModel):
    status: str
    note: Optional[str] = None


@router.get("/sellers")
def list_sellers(status: Optional[str] = None, user=Depends(admin_only)):
    return {"success": True, "sellers": _list("seller", {"status": status} if status else None)}


@router.patch("/sellers/{seller_id}/status")
def update_seller_status(seller_id: str, body: SellerStatusPayload, user=Depends(admin_only)):
    if body.status not in ("approved", "rejected", "suspended"):
        raise ValidationFailed("Status must be approved, rejected or suspended")
    seller = find_or_404("seller", seller_id, "Seller")
    update = {"$set": {"status": body.status, "updated_at": now()}}
    if body.note:
        update["$push"] = {"notes": {"text": body.note, "added_by": user["id"], "timestamp": now()}}
    get_db()["seller"].update_one({"_id": seller["_id"]}, update)
    logger.info("Seller %s set to %s by %s", seller_id, body.status, user["id"])
    return {"success": True, "seller": serialize_doc(get_db()["seller"].find_one({"_id": seller["_id"]}))}


# ---------- Analytics ----------

@router.get("/analytics")
def platform_analytics(start: Optional[datetime] = None, end: Optional[datetime] = None,
                       seller_id: Optional[str] = None, user=Depends(admin_only)):
    if seller_id:
        parse_object_id(seller_id, "seller id")
    return {"success": True, "analytics": analytics.order_analytics(seller_id, start, end)}
