# storefront/domain/types.py
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Union

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# operator/provider progression, PENDING is never re-entered
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class CouponType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_SHIPPING = "FREE_SHIPPING"


class CouponStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class OwnerKey:
    """Durable cart of an authenticated customer."""

    owner_id: int


@dataclass(frozen=True)
class SessionKey:
    """Ephemeral guest cart kept in the cache."""

    session_id: str


CartKey = Union[OwnerKey, SessionKey]


@dataclass
class CartLine:
    product_id: int
    quantity: int


@dataclass
class Cart:
    key: CartKey
    lines: List[CartLine] = field(default_factory=list)
    # optimistic lock token of the durable row, unused for guest carts
    version: int = 0

    @property
    def owner_id(self) -> Optional[int]:
        return self.key.owner_id if isinstance(self.key, OwnerKey) else None

    @property
    def session_id(self) -> Optional[str]:
        return self.key.session_id if isinstance(self.key, SessionKey) else None

    def line_for(self, product_id: int) -> Optional[CartLine]:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def is_empty(self) -> bool:
        return not self.lines


@dataclass(frozen=True)
class CouponValidation:
    valid: bool
    reason: Optional[str] = None
    coupon_id: Optional[int] = None
    code: Optional[str] = None
    type: Optional[CouponType] = None
    discount_amount: Decimal = Decimal("0.00")
    final_amount: Decimal = Decimal("0.00")

    @classmethod
    def rejected(cls, reason: str) -> "CouponValidation":
        return cls(valid=False, reason=reason)


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class CartSummary:
    cart: Cart
    lines: List[PricedLine]
    subtotal: Decimal


@dataclass(frozen=True)
class ShippingAddress:
    """Delivery address copied onto the order at checkout."""

    line1: str
    city: str
    state: str
    postal_code: str
    country: str
    line2: Optional[str] = None
