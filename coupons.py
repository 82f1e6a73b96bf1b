import logging
from datetime import datetime
from typing import Optional, Tuple

from pymongo import ReturnDocument

from database import as_utc, get_db, now
from errors import CouponError
from pricing import to_rupees

logger = logging.getLogger("marketplace.coupons")


def find_coupon(code: str) -> dict:
    coupon = get_db()["coupon"].find_one({"code": (code or "").strip().upper()})
    if not coupon:
        raise CouponError("Invalid coupon code")
    return coupon


def validate_coupon(coupon: dict, subtotal: float, user_id: Optional[str] = None,
                    at: Optional[datetime] = None) -> None:
    at = at or now()
    if not coupon.get("is_active", True):
        raise CouponError("Coupon is not active")
    if at < as_utc(coupon["valid_from"]):
        raise CouponError("Coupon is not yet valid")
    if at > as_utc(coupon["valid_until"]):
        raise CouponError("Coupon has expired")

    limit = coupon.get("usage_limit")
    if limit and coupon.get("usage_count", 0) >= limit:
        raise CouponError("Coupon usage limit reached")

    per_user = coupon.get("per_user_limit")
    if user_id and per_user and coupon.get("users", {}).get(user_id, 0) >= per_user:
        raise CouponError("You have already used this coupon maximum times")

    minimum = coupon.get("minimum_purchase") or 0
    if subtotal < minimum:
        raise CouponError(f"Minimum purchase of ₹{to_rupees(minimum)} required")


def calculate_discount(coupon: dict, subtotal: float) -> int:
    kind = coupon["type"]
    value = coupon.get("value") or 0
    if kind == "percentage":
        discount = subtotal * value / 100
        if coupon.get("maximum_discount"):
            discount = min(discount, coupon["maximum_discount"])
    elif kind == "fixed":
        discount = min(value, subtotal)
    else:
        # free_shipping waives the shipping fee instead of discounting the subtotal
        discount = 0
    return to_rupees(discount)


def quote_coupon(code: str, subtotal: float, user_id: Optional[str] = None) -> Tuple[dict, int]:
    coupon = find_coupon(code)
    validate_coupon(coupon, subtotal, user_id)
    return coupon, calculate_discount(coupon, subtotal)


def redeem_coupon(coupon: dict, user_id: str) -> dict:
    """Count one use of the coupon for `user_id`.

    The limits are part of the update filter, so two concurrent redemptions of
    the last available use cannot both succeed.
    """
    user_key = f"users.{user_id}"
    filt = {"_id": coupon["_id"], "is_active": True}
    if coupon.get("usage_limit"):
        filt["usage_count"] = {"$lt": coupon["usage_limit"]}
    if coupon.get("per_user_limit"):
        filt["$or"] = [
            {user_key: {"$exists": False}},
            {user_key: {"$lt": coupon["per_user_limit"]}},
        ]
    updated = get_db()["coupon"].find_one_and_update(
        filt,
        {"$inc": {"usage_count": 1, user_key: 1}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.warning("Coupon %s redemption refused for user %s", coupon["code"], user_id)
        raise CouponError("Coupon usage limit reached")
    logger.info("Coupon %s redeemed by %s (%s uses)", coupon["code"], user_id, updated["usage_count"])
    return updated


def release_coupon(coupon: dict, user_id: str) -> None:
    """Undo a redemption when the order it was taken for could not be placed."""
    get_db()["coupon"].update_one(
        {"_id": coupon["_id"], "usage_count": {"$gt": 0}},
        {"$inc": {"usage_count": -1, f"users.{user_id}": -1}},
    )
