from typing import List, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel, Field

import orders
from auth import current_user
from coupons import quote_coupon
from database import serialize_doc

router = APIRouter(prefix="/api/coupons", tags=["Coupons"])


class ValidateItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected: bool = True


class ValidatePayload(BaseModel):
    code: str
    subtotal: float = Field(0, ge=0)
    items: Optional[List[ValidateItem]] = None


@router.post("/validate")
def validate_coupon(body: ValidatePayload, authorization: Optional[str] = Header(None)):
    user_id = current_user(authorization)["id"] if authorization else None
    subtotal = body.subtotal
    if body.items:
        _, pricing, _ = orders.quote([i.model_dump() for i in body.items])
        subtotal = pricing.subtotal
    coupon, discount = quote_coupon(body.code, subtotal, user_id)
    public = serialize_doc(coupon)
    public.pop("users", None)
    return {"success": True, "coupon": public, "discount": discount}
