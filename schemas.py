"""
Database Schemas

MongoDB collection schemas defined as Pydantic models. Each top-level model
maps to a collection named after the lower-cased model name:
- Order -> "order"
- Product -> "product"
- SubscriptionPlan -> "subscription_plan"

Embedded models (OrderItem, Pricing, ReturnRequest, ...) are stored inside
their parent document.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

OrderStatus = Literal[
    "pending", "confirmed", "processing", "ready_for_pickup", "pickup",
    "shipped", "out_for_delivery", "delivered", "cancelled", "returned",
]
ReturnStatus = Literal[
    "requested", "approved", "received", "quality_passed", "quality_failed",
    "refunded", "rejected",
]
PaymentMethod = Literal["cod", "online", "card", "upi", "wallet"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


# ---------- Orders ----------

class Address(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[str] = ""
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = ""
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    country: str = "India"


class OrderItem(BaseModel):
    product_id: str = Field(..., description="Product _id as string")
    seller_id: Optional[str] = Field(None, description="Seller owning the product")
    name: str = Field(..., description="Product name snapshot")
    price: float = Field(..., ge=0, description="Unit price in whole rupees at time of order")
    quantity: int = Field(..., ge=1)
    sku: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    line_total: float = Field(0, ge=0, description="price * quantity")


class Payment(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    coupon_code: Optional[str] = None


class Pricing(BaseModel):
    subtotal: float = 0
    shipping: float = 0
    platform_fee: float = 0
    tax: float = 0
    discount: float = 0
    total: float = 0

    def is_consistent(self) -> bool:
        return self.total == self.subtotal + self.shipping + self.platform_fee + self.tax - self.discount


class TimelineEvent(BaseModel):
    status: str
    description: str
    timestamp: datetime


class ShippingInfo(BaseModel):
    tracking_id: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class ShiprocketInfo(BaseModel):
    """Carrier booking details returned by Shiprocket."""
    order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None
    label: Optional[str] = None
    pickup_scheduled_date: Optional[str] = None


class Cancellation(BaseModel):
    reason: str
    cancelled_by: Literal["customer", "seller", "admin"] = "customer"
    cancelled_at: datetime


class QualityCheck(BaseModel):
    condition: str = Field(..., description="Inspection result, e.g. passed/failed/damaged")
    comments: Optional[str] = None


class ReturnHistoryEntry(BaseModel):
    status: ReturnStatus
    at: datetime
    by: Optional[str] = None
    note: Optional[str] = None


class ReturnRequest(BaseModel):
    status: ReturnStatus = "requested"
    reason: str
    title: str
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    requested_at: datetime
    quality_check: Optional[QualityCheck] = None
    resolution_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_id: Optional[str] = None
    history: List[ReturnHistoryEntry] = Field(default_factory=list)


class Refund(BaseModel):
    """Gateway refund for the order, claimed before the gateway call so it is issued once."""
    status: Literal["pending", "issued"] = "pending"
    amount: float = Field(..., ge=0)
    reason: Optional[str] = None
    id: Optional[str] = Field(None, description="Razorpay refund id")
    requested_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None


class Order(BaseModel):
    order_number: str
    customer_id: str
    items: List[OrderItem]
    shipping_address: Address
    payment: Payment
    pricing: Pricing
    status: OrderStatus = "pending"
    timeline: List[TimelineEvent] = Field(default_factory=list)
    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    shiprocket: Optional[ShiprocketInfo] = None
    cancellation: Optional[Cancellation] = None
    return_request: Optional[ReturnRequest] = None
    refund: Optional[Refund] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------- Catalog ----------

class Product(BaseModel):
    name: str = Field(..., min_length=1)
    seller_id: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., gt=0, description="Sale price in INR")
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    is_active: bool = True


class StealDeal(BaseModel):
    product_id: str
    deal_price: float = Field(..., gt=0)
    starts_at: datetime
    ends_at: datetime
    is_active: bool = True


# ---------- Marketing ----------

class Coupon(BaseModel):
    code: str = Field(..., min_length=1)
    type: Literal["percentage", "fixed", "free_shipping"]
    value: float = Field(0, ge=0)
    minimum_purchase: float = Field(0, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0, description="Cap for percentage coupons")
    usage_limit: Optional[int] = Field(None, ge=1, description="Total redemptions allowed")
    per_user_limit: Optional[int] = Field(1, ge=1)
    usage_count: int = 0
    users: Dict[str, int] = Field(default_factory=dict, description="Redemptions per user id")
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    description: Optional[str] = None
    created_by: Optional[str] = None


class Campaign(BaseModel):
    name: str = Field(..., min_length=1)
    seller_id: Optional[str] = None
    type: Literal["flash_sale", "seasonal", "clearance", "sponsored"] = "seasonal"
    discount_percent: float = Field(0, ge=0, le=100)
    product_ids: List[str] = Field(default_factory=list)
    starts_at: datetime
    ends_at: datetime
    budget: Optional[float] = Field(None, ge=0)
    is_active: bool = True


class SubscriptionPlan(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    billing_cycle: Literal["monthly", "yearly"] = "monthly"
    product_limit: Optional[int] = Field(None, ge=1, description="None means unlimited")
    commission_rate: float = Field(..., ge=0, le=100)
    features: List[str] = Field(default_factory=list)
    is_active: bool = True


# ---------- Sellers ----------

class SellerNote(BaseModel):
    text: str
    added_by: str
    timestamp: datetime


class Seller(BaseModel):
    user_id: str
    business_name: str = Field(..., min_length=1)
    email: str
    phone: Optional[str] = None
    gstin: Optional[str] = None
    status: Literal["pending", "approved", "rejected", "suspended"] = "pending"
    subscription_plan: Optional[str] = None
    notes: List[SellerNote] = Field(default_factory=list)
