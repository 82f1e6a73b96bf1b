from datetime import timedelta

import pytest

from conftest import make_coupon
from coupons import calculate_discount, find_coupon, quote_coupon, redeem_coupon, release_coupon, validate_coupon
from database import get_db, now
from errors import CouponError


class TestCalculateDiscount:
    def test_percentage(self):
        assert calculate_discount({"type": "percentage", "value": 10}, 1200) == 120

    def test_percentage_is_capped(self):
        coupon = {"type": "percentage", "value": 50, "maximum_discount": 200}
        assert calculate_discount(coupon, 1200) == 200

    def test_fixed_never_exceeds_subtotal(self):
        assert calculate_discount({"type": "fixed", "value": 300}, 1000) == 300
        assert calculate_discount({"type": "fixed", "value": 300}, 120) == 120

    def test_free_shipping_has_no_discount(self):
        assert calculate_discount({"type": "free_shipping", "value": 0}, 400) == 0


class TestValidateCoupon:
    def test_lookup_is_case_insensitive(self):
        make_coupon("DIWALI")
        assert find_coupon(" diwali ")["code"] == "DIWALI"

    def test_unknown_code(self):
        with pytest.raises(CouponError) as exc:
            find_coupon("NOPE")
        assert exc.value.message == "Invalid coupon code"

    def test_expired(self):
        make_coupon(valid_until=now() - timedelta(hours=1))
        with pytest.raises(CouponError) as exc:
            quote_coupon("SAVE10", 1000)
        assert exc.value.message == "Coupon has expired"

    def test_not_yet_valid(self):
        make_coupon(valid_from=now() + timedelta(days=1))
        with pytest.raises(CouponError):
            quote_coupon("SAVE10", 1000)

    def test_inactive(self):
        make_coupon(is_active=False)
        with pytest.raises(CouponError):
            quote_coupon("SAVE10", 1000)

    def test_minimum_purchase(self):
        make_coupon(minimum_purchase=999)
        with pytest.raises(CouponError) as exc:
            quote_coupon("SAVE10", 500)
        assert exc.value.message == "Minimum purchase of ₹999 required"

    def test_usage_limit_reached(self):
        coupon = {"is_active": True, "valid_from": now() - timedelta(days=1),
                  "valid_until": now() + timedelta(days=1), "usage_limit": 5, "usage_count": 5}
        with pytest.raises(CouponError):
            validate_coupon(coupon, 1000)

    def test_per_user_limit(self):
        coupon = {"is_active": True, "valid_from": now() - timedelta(days=1),
                  "valid_until": now() + timedelta(days=1), "per_user_limit": 1, "users": {"cust-1": 1}}
        with pytest.raises(CouponError):
            validate_coupon(coupon, 1000, "cust-1")
        validate_coupon(coupon, 1000, "cust-2")

    def test_quote_returns_discount(self):
        make_coupon(value=10)
        coupon, discount = quote_coupon("save10", 1200, "cust-1")
        assert coupon["code"] == "SAVE10"
        assert discount == 120


class TestRedeemCoupon:
    def test_counts_use(self):
        make_coupon(per_user_limit=2)
        updated = redeem_coupon(find_coupon("SAVE10"), "cust-1")
        assert updated["usage_count"] == 1
        assert updated["users"]["cust-1"] == 1

    def test_usage_cap_is_never_exceeded(self):
        make_coupon(usage_limit=2, per_user_limit=None)
        coupon = find_coupon("SAVE10")
        redeem_coupon(coupon, "a")
        redeem_coupon(coupon, "b")
        with pytest.raises(CouponError):
            redeem_coupon(coupon, "c")
        assert get_db()["coupon"].find_one({"code": "SAVE10"})["usage_count"] == 2

    def test_per_user_cap(self):
        make_coupon(per_user_limit=1)
        coupon = find_coupon("SAVE10")
        redeem_coupon(coupon, "cust-1")
        with pytest.raises(CouponError):
            redeem_coupon(coupon, "cust-1")

    def test_release_undoes_redemption(self):
        make_coupon()
        coupon = find_coupon("SAVE10")
        redeem_coupon(coupon, "cust-1")
        release_coupon(coupon, "cust-1")
        doc = get_db()["coupon"].find_one({"code": "SAVE10"})
        assert doc["usage_count"] == 0
        assert doc["users"]["cust-1"] == 0
