"""
Order pricing.

Every total in the system (cart quote, coupon validation, order creation) is
produced by `calculate_pricing`, so the breakdown stored on an order always
satisfies

    total == subtotal + shipping + platform_fee + tax - discount

Amounts are whole rupees, rounded half-up.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from config import FREE_SHIPPING_THRESHOLD, PLATFORM_FEE, SHIPPING_FEE, TAX_RATE
from schemas import Pricing


def to_rupees(amount) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_subtotal(items: Iterable[dict]) -> int:
    """Sum price * quantity over the selected items. Items without a `selected` flag count as selected."""
    total = Decimal("0")
    for item in items:
        if not item.get("selected", True):
            continue
        total += Decimal(str(item["price"])) * int(item["quantity"])
    return to_rupees(total)


def shipping_fee(subtotal: int, has_items: bool, free_shipping: bool = False) -> int:
    if not has_items or free_shipping or subtotal >= FREE_SHIPPING_THRESHOLD:
        return 0
    return SHIPPING_FEE


def calculate_pricing(items: Iterable[dict], discount: float = 0, free_shipping: bool = False,
                      tax_rate: Optional[float] = None) -> Pricing:
    items = list(items)
    has_items = any(item.get("selected", True) for item in items)
    subtotal = line_subtotal(items)
    shipping = shipping_fee(subtotal, has_items, free_shipping)
    platform_fee = PLATFORM_FEE if has_items else 0
    rate = TAX_RATE if tax_rate is None else tax_rate
    tax = to_rupees(Decimal(subtotal) * Decimal(str(rate)))
    discount = min(to_rupees(max(discount, 0)), subtotal)
    total = subtotal + shipping + platform_fee + tax - discount
    return Pricing(
        subtotal=subtotal,
        shipping=shipping,
        platform_fee=platform_fee,
        tax=tax,
        discount=discount,
        total=total,
    )
