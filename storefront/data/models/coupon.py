from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CouponModel(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String, nullable=False, unique=True)  # always upper-case

    type = Column(String, nullable=False)  # PERCENTAGE, FIXED_AMOUNT, FREE_SHIPPING
    status = Column(String, nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, EXPIRED
    discount_value = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=True)

    min_purchase_amount = Column(Numeric(10, 2), nullable=True)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)

    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    usage_limit_per_user = Column(Integer, nullable=True)

    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    allowed_categories = Column(JSON, nullable=True)
    allowed_products = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    redemptions = relationship("CouponRedemptionModel", back_populates="coupon")


class CouponRedemptionModel(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(Integer, primary_key=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)

    discount_amount = Column(Numeric(10, 2), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    coupon = relationship("CouponModel", back_populates="redemptions")
