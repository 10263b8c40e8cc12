# storefront/services/coupon_service.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from storefront.data.models.coupon import CouponModel, CouponRedemptionModel
from storefront.domain.errors import CouponNotFound, DuplicateCoupon, InvalidCoupon
from storefront.domain.types import CouponStatus, CouponType, CouponValidation, money
from storefront.repos.unit_of_work import UnitOfWork
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

INVALID_CODE = "Invalid coupon code"
NOT_ACTIVE = "This coupon is no longer active"
NOT_YET_VALID = "This coupon is not yet valid"
EXPIRED = "This coupon has expired"
USAGE_LIMIT_REACHED = "This coupon has reached its usage limit"
USER_LIMIT_REACHED = "You have already used this coupon the maximum number of times"
SIGN_IN_REQUIRED = "Sign in to use this coupon"
NOT_APPLICABLE = "This coupon is not valid for the items in your cart"


def _as_utc(value: datetime) -> datetime:
    # some drivers (sqlite) hand back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_discount(coupon_type: CouponType, value: Decimal, cart_total: Decimal,
                     max_discount: Optional[Decimal] = None) -> Decimal:
    """Discount for ``cart_total`` before rounding rules are applied by the caller."""
    if coupon_type == CouponType.PERCENTAGE:
        discount = cart_total * value / Decimal(100)
        if max_discount is not None:
            discount = min(discount, max_discount)
        return discount
    if coupon_type == CouponType.FIXED_AMOUNT:
        return min(value, cart_total)
    # FREE_SHIPPING: shipping is priced outside the merchandise total
    return Decimal("0")


class CouponService:
    """
    CouponEngine.

    ``validate`` only reads: it never touches usage counters. Redemption is a
    separate ``redeem`` call made once the order row exists.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def validate(
        self,
        code: str,
        cart_total: Decimal,
        product_ids: Iterable[int] = (),
        category_ids: Iterable[int] = (),
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> CouponValidation:
        cart_total = money(cart_total)
        now = now or datetime.now(timezone.utc)

        coupon = self.uow.coupons.get_by_code(code)
        if coupon is None:
            return CouponValidation.rejected(INVALID_CODE)

        # checks run in a fixed order, the first failure is reported
        if coupon.status != CouponStatus.ACTIVE.value:
            return CouponValidation.rejected(NOT_ACTIVE)

        if coupon.valid_from is not None and _as_utc(coupon.valid_from) > now:
            return CouponValidation.rejected(NOT_YET_VALID)
        if coupon.valid_until is not None and _as_utc(coupon.valid_until) < now:
            return CouponValidation.rejected(EXPIRED)

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return CouponValidation.rejected(USAGE_LIMIT_REACHED)

        if coupon.usage_limit_per_user is not None:
            if user_id is None:
                return CouponValidation.rejected(SIGN_IN_REQUIRED)
            used = self.uow.coupons.count_user_redemptions(coupon.id, user_id)
            if used >= coupon.usage_limit_per_user:
                return CouponValidation.rejected(USER_LIMIT_REACHED)

        if coupon.min_purchase_amount is not None and cart_total < money(coupon.min_purchase_amount):
            return CouponValidation.rejected(
                f"Minimum purchase amount of ${money(coupon.min_purchase_amount)} required"
            )

        # OR-match: one matching category / product is enough
        if coupon.allowed_categories and not set(coupon.allowed_categories) & set(category_ids):
            return CouponValidation.rejected(NOT_APPLICABLE)
        if coupon.allowed_products and not set(coupon.allowed_products) & set(product_ids):
            return CouponValidation.rejected(NOT_APPLICABLE)

        coupon_type = CouponType(coupon.type)
        discount = money(
            compute_discount(
                coupon_type,
                Decimal(coupon.discount_value),
                cart_total,
                Decimal(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None,
            )
        )
        final_amount = money(max(Decimal("0"), cart_total - discount))

        return CouponValidation(
            valid=True,
            coupon_id=coupon.id,
            code=coupon.code,
            type=coupon_type,
            discount_amount=discount,
            final_amount=final_amount,
        )

    def redeem(self, validation: CouponValidation, user_id: int | None, order_id: int) -> CouponRedemptionModel:
        """
        Record one use of a validated coupon for ``order_id``.

        Runs inside the caller's transaction; the usage counter is bumped with
        an increment-if-under-limit statement so two concurrent orders cannot
        both take the last use. That update also locks the coupon row, so the
        per-user count is re-read after it and sees any committed redemption.
        """
        if not validation.valid or validation.coupon_id is None:
            raise InvalidCoupon(validation.reason or INVALID_CODE)

        if not self.uow.coupons.increment_usage(validation.coupon_id):
            logger.info(f"Coupon {validation.code} hit its usage limit while redeeming for order {order_id}")
            raise InvalidCoupon(USAGE_LIMIT_REACHED)

        coupon = self.uow.coupons.get_coupon(validation.coupon_id)
        if coupon.usage_limit_per_user is not None:
            if user_id is None:
                raise InvalidCoupon(SIGN_IN_REQUIRED)
            if self.uow.coupons.count_user_redemptions(coupon.id, user_id) >= coupon.usage_limit_per_user:
                logger.info(f"Coupon {validation.code} per-user limit reached by user {user_id} for order {order_id}")
                raise InvalidCoupon(USER_LIMIT_REACHED)

        redemption = self.uow.coupons.add_redemption(
            CouponRedemptionModel(
                coupon_id=validation.coupon_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=validation.discount_amount,
            )
        )
        logger.info(
            f"Coupon {validation.code} redeemed for order {order_id}, discount {validation.discount_amount}"
        )
        return redemption

    def create_coupon(
        self,
        code: str,
        coupon_type: CouponType,
        discount_value: Decimal,
        **constraints,
    ) -> CouponModel:
        normalized = code.strip().upper()
        if self.uow.coupons.get_by_code(normalized) is not None:
            raise DuplicateCoupon(normalized)

        if coupon_type == CouponType.PERCENTAGE and Decimal(discount_value) > 100:
            raise InvalidCoupon("Percentage discount cannot exceed 100%")

        with self.uow.transaction():
            coupon = self.uow.coupons.add_coupon(
                CouponModel(
                    code=normalized,
                    type=coupon_type.value,
                    status=CouponStatus.ACTIVE.value,
                    discount_value=money(discount_value),
                    usage_count=0,
                    **constraints,
                )
            )
        logger.info(f"Created coupon {normalized} ({coupon_type.value} {discount_value})")
        return coupon

    def coupon_stats(self, code: str) -> dict:
        coupon = self.uow.coupons.get_by_code(code)
        if coupon is None:
            raise CouponNotFound(code)

        usages = self.uow.coupons.redemptions_for_coupon(coupon.id)
        total_discount = sum((Decimal(u.discount_amount) for u in usages), Decimal("0.00"))
        return {
            "code": coupon.code,
            "total_uses": len(usages),
            "unique_users": len({u.user_id for u in usages if u.user_id is not None}),
            "total_discount_given": money(total_discount),
            "remaining_uses": (
                coupon.usage_limit - coupon.usage_count if coupon.usage_limit is not None else None
            ),
        }

    def user_history(self, user_id: int) -> list[CouponRedemptionModel]:
        return self.uow.coupons.redemptions_for_user(user_id)

    # management
    def get_coupon(self, coupon_id: int) -> CouponModel:
        coupon = self.uow.coupons.get_coupon(coupon_id)
        if coupon is None:
            raise CouponNotFound(coupon_id)
        return coupon

    def list_coupons(self, page: int = 1, limit: int = 20) -> tuple[list[CouponModel], int]:
        return self.uow.coupons.list_coupons(page, limit)

    def list_active(self, now: datetime | None = None) -> list[CouponModel]:
        """Coupons a customer could use right now."""
        return self.uow.coupons.list_active(now or datetime.now(timezone.utc))

    def update_coupon(self, coupon_id: int, **changes) -> CouponModel:
        """
        Partial update. ``code`` is re-normalized and must stay unique;
        usage counters are never written here.
        """
        coupon = self.get_coupon(coupon_id)
        for required in ("code", "type", "status", "discount_value"):
            if changes.get(required) is None:
                changes.pop(required, None)

        if "code" in changes:
            normalized = changes["code"].strip().upper()
            existing = self.uow.coupons.get_by_code(normalized)
            if existing is not None and existing.id != coupon.id:
                raise DuplicateCoupon(normalized)
            changes["code"] = normalized

        coupon_type = CouponType(changes.get("type", coupon.type))
        discount_value = changes.get("discount_value", coupon.discount_value)
        if coupon_type == CouponType.PERCENTAGE and Decimal(discount_value) > 100:
            raise InvalidCoupon("Percentage discount cannot exceed 100%")

        if "type" in changes:
            changes["type"] = coupon_type.value
        if "status" in changes:
            changes["status"] = CouponStatus(changes["status"]).value
        if "discount_value" in changes:
            changes["discount_value"] = money(changes["discount_value"])

        changes.pop("usage_count", None)
        with self.uow.transaction():
            for field, value in changes.items():
                setattr(coupon, field, value)

        logger.info(f"Updated coupon {coupon.code}: {sorted(changes)}")
        return coupon

    def deactivate_coupon(self, coupon_id: int) -> CouponModel:
        """Soft delete; redemption history stays attached."""
        return self.update_coupon(coupon_id, status=CouponStatus.INACTIVE)
