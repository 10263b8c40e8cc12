# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, List, Optional
from decimal import Decimal
from datetime import datetime

from storefront.domain.types import CouponStatus, CouponType, OrderStatus


class LineIn(BaseModel):
    """Add a product to the cart."""

    product_id: int = Field(..., gt=0, description="Product id (> 0)")
    quantity: int = Field(..., gt=0, description="Quantity to add (> 0)")


class LineUpdate(BaseModel):
    """Set a line's quantity; 0 or less removes the line."""

    quantity: int = Field(..., description="New quantity, <= 0 removes the line")


class CartLineOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartOut(BaseModel):
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    items: List[CartLineOut]
    subtotal: Decimal


class ShippingAddressIn(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166-1 alpha-2")


class OrderCreate(BaseModel):
    coupon_code: Optional[str] = Field(None, max_length=64, description="Optional coupon code")
    shipping_address: Optional[ShippingAddressIn] = None
    payment_method: Optional[str] = Field(None, max_length=32, description="Provider the order will be paid with")


class OrderItemOut(BaseModel):
    product_id: int
    quantity: int
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    status: str
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_address_line1: Optional[str] = None
    shipping_address_line2: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_country: Optional[str] = None
    items: List[OrderItemOut]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderPage(BaseModel):
    items: List[OrderOut]
    total: int
    page: int
    limit: int


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class PaymentIntentCreate(BaseModel):
    order_id: int = Field(..., gt=0, description="Order to pay for")
    provider: str = Field(..., min_length=1, description="Payment provider name")


class PaymentOut(BaseModel):
    id: int
    order_id: int
    provider: str
    status: str
    amount: Decimal
    provider_intent_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentIntentOut(BaseModel):
    payment: PaymentOut
    client_secret: Optional[str] = None
    instructions: Dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    received: bool = True
    status: str


class CouponValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    cart_total: Decimal = Field(..., ge=0)
    product_ids: List[int] = Field(default_factory=list)
    category_ids: List[int] = Field(default_factory=list)
    user_id: Optional[int] = Field(None, gt=0)


class CouponValidateOut(BaseModel):
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    type: Optional[CouponType] = None
    discount_amount: Decimal
    final_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    type: CouponType
    discount_value: Decimal = Field(..., ge=0)
    description: Optional[str] = None
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    usage_limit_per_user: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    allowed_categories: Optional[List[int]] = None
    allowed_products: Optional[List[int]] = None


class CouponOut(BaseModel):
    id: int
    code: str
    type: str
    status: str
    discount_value: Decimal
    description: Optional[str] = None
    min_purchase_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int
    usage_limit_per_user: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=64)
    type: Optional[CouponType] = None
    status: Optional[CouponStatus] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = None
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    usage_limit_per_user: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    allowed_categories: Optional[List[int]] = None
    allowed_products: Optional[List[int]] = None


class CouponPage(BaseModel):
    items: List[CouponOut]
    total: int
    page: int
    pages: int


class CouponStats(BaseModel):
    code: str
    total_uses: int
    unique_users: int
    total_discount_given: Decimal
    remaining_uses: Optional[int] = None


class CouponRedemptionOut(BaseModel):
    coupon_id: int
    order_id: int
    discount_amount: Decimal
    used_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HealthOut(BaseModel):
    status: str
    checks: Dict[str, bool]
