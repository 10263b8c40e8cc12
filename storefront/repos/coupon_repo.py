# storefront/repos/coupon_repo.py
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from storefront.data.models.coupon import CouponModel, CouponRedemptionModel


class CouponRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> CouponModel | None:
        return self.db.execute(
            select(CouponModel).where(CouponModel.code == code.strip().upper())
        ).scalar_one_or_none()

    def get_coupon(self, coupon_id: int) -> CouponModel | None:
        return self.db.get(CouponModel, coupon_id)

    def list_coupons(self, page: int = 1, limit: int = 20) -> tuple[list[CouponModel], int]:
        total = self.db.execute(select(func.count(CouponModel.id))).scalar_one()
        coupons = self.db.execute(
            select(CouponModel)
            .order_by(CouponModel.created_at.desc(), CouponModel.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return list(coupons), total

    def list_active(self, now: datetime) -> list[CouponModel]:
        return list(
            self.db.execute(
                select(CouponModel)
                .where(
                    and_(
                        CouponModel.status == "ACTIVE",
                        or_(CouponModel.valid_from.is_(None), CouponModel.valid_from <= now),
                        or_(CouponModel.valid_until.is_(None), CouponModel.valid_until >= now),
                        or_(CouponModel.usage_limit.is_(None), CouponModel.usage_count < CouponModel.usage_limit),
                    )
                )
                .order_by(CouponModel.code)
            ).scalars()
        )

    def add_coupon(self, coupon: CouponModel) -> CouponModel:
        self.db.add(coupon)
        self.db.flush()
        return coupon

    def count_user_redemptions(self, coupon_id: int, user_id: int) -> int:
        return self.db.execute(
            select(func.count(CouponRedemptionModel.id)).where(
                CouponRedemptionModel.coupon_id == coupon_id,
                CouponRedemptionModel.user_id == user_id,
            )
        ).scalar_one()

    def increment_usage(self, coupon_id: int) -> bool:
        # increment-if-under-limit in one statement
        result = self.db.execute(
            update(CouponModel)
            .where(
                CouponModel.id == coupon_id,
                or_(CouponModel.usage_limit.is_(None), CouponModel.usage_count < CouponModel.usage_limit),
            )
            .values(usage_count=CouponModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_redemption(self, redemption: CouponRedemptionModel) -> CouponRedemptionModel:
        self.db.add(redemption)
        self.db.flush()
        return redemption

    def redemptions_for_coupon(self, coupon_id: int) -> list[CouponRedemptionModel]:
        return list(
            self.db.execute(
                select(CouponRedemptionModel).where(CouponRedemptionModel.coupon_id == coupon_id)
            ).scalars()
        )

    def redemptions_for_user(self, user_id: int) -> list[CouponRedemptionModel]:
        return list(
            self.db.execute(
                select(CouponRedemptionModel)
                .where(CouponRedemptionModel.user_id == user_id)
                .order_by(CouponRedemptionModel.used_at.desc(), CouponRedemptionModel.id.desc())
            ).scalars()
        )
