# storefront/api/routers/coupons.py
from typing import List

from fastapi import APIRouter, Depends, Query

from storefront.api import http_error
from storefront.api.deps import get_uow
from storefront.domain.errors import CheckoutError
from storefront.domain.schemas import (
    CouponCreate,
    CouponOut,
    CouponPage,
    CouponRedemptionOut,
    CouponStats,
    CouponValidateIn,
    CouponValidateOut,
    CouponUpdate,
)
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.coupon_service import CouponService

router = APIRouter(prefix="/coupons", tags=["coupons"])


def get_service(uow: UnitOfWork = Depends(get_uow)):
    return CouponService(uow)


@router.post("/validate", response_model=CouponValidateOut)
def validate_coupon(payload: CouponValidateIn, svc: CouponService = Depends(get_service)):
    """
    Dry run: reports the discount a coupon would give, never consumes a use.
    """
    return svc.validate(
        payload.code,
        payload.cart_total,
        product_ids=payload.product_ids,
        category_ids=payload.category_ids,
        user_id=payload.user_id,
    )


@router.post("/", response_model=CouponOut, status_code=201)
def create_coupon(payload: CouponCreate, svc: CouponService = Depends(get_service)):
    constraints = payload.model_dump(exclude={"code", "type", "discount_value"})
    try:
        return svc.create_coupon(payload.code, payload.type, payload.discount_value, **constraints)
    except CheckoutError as e:
        raise http_error(e)


@router.get("/users/{user_id}/history", response_model=List[CouponRedemptionOut])
def user_history(user_id: int, svc: CouponService = Depends(get_service)):
    return svc.user_history(user_id)


@router.get("/{code}/stats", response_model=CouponStats)
def coupon_stats(code: str, svc: CouponService = Depends(get_service)):
    try:
        return svc.coupon_stats(code)
    except CheckoutError as e:
        raise http_error(e)


@router.get("/", response_model=CouponPage)
def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    svc: CouponService = Depends(get_service),
):
    coupons, total = svc.list_coupons(page, limit)
    return CouponPage(items=coupons, total=total, page=page, pages=(total + limit - 1) // limit)


@router.get("/active", response_model=List[CouponOut])
def list_active_coupons(svc: CouponService = Depends(get_service)):
    return svc.list_active()


@router.get("/{coupon_id}", response_model=CouponOut)
def get_coupon(coupon_id: int, svc: CouponService = Depends(get_service)):
    try:
        return svc.get_coupon(coupon_id)
    except CheckoutError as e:
        raise http_error(e)


@router.patch("/{coupon_id}", response_model=CouponOut)
def update_coupon(coupon_id: int, payload: CouponUpdate, svc: CouponService = Depends(get_service)):
    try:
        return svc.update_coupon(coupon_id, **payload.model_dump(exclude_unset=True))
    except CheckoutError as e:
        raise http_error(e)


@router.delete("/{coupon_id}", response_model=CouponOut)
def deactivate_coupon(coupon_id: int, svc: CouponService = Depends(get_service)):
    """Soft delete: the coupon turns INACTIVE and keeps its history."""
    try:
        return svc.deactivate_coupon(coupon_id)
    except CheckoutError as e:
        raise http_error(e)
