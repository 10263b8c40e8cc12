# storefront/api/routers/orders.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from storefront.api import http_error
from storefront.api.deps import get_cache, get_notifier, get_uow
from storefront.domain.errors import CheckoutError
from storefront.domain.schemas import OrderCreate, OrderOut, OrderPage, OrderStatusUpdate
from storefront.domain.types import ShippingAddress
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.services.cart_service import CartService
from storefront.services.coupon_service import CouponService
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.stock_ledger import StockLedger

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(
    uow: UnitOfWork = Depends(get_uow),
    cache: RedisCache = Depends(get_cache),
    notifier: NotificationService = Depends(get_notifier),
):
    return OrderService(
        uow=uow,
        cart_service=CartService(uow=uow, cache=cache),
        coupon_service=CouponService(uow),
        stock_ledger=StockLedger(uow),
        notifier=notifier,
    )


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    payload: OrderCreate,
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: OrderService = Depends(get_service),
):
    """
    Places an order from the caller's cart.
    Stock, order rows and coupon redemption commit together or not at all.
    """
    try:
        cart = svc.cart_service.resolve(user_id, x_session_id)
        address = ShippingAddress(**payload.shipping_address.model_dump()) if payload.shipping_address else None
        return svc.create_order(
            cart,
            payload.coupon_code,
            shipping_address=address,
            payment_method=payload.payment_method,
        )
    except CheckoutError as e:
        raise http_error(e)


@router.get("/", response_model=OrderPage)
def list_orders(
    user_id: int = Query(..., gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    svc: OrderService = Depends(get_service),
):
    orders, total = svc.list_orders(user_id, page, limit)
    return OrderPage(
        items=[OrderOut.model_validate(o) for o in orders],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: int, svc: OrderService = Depends(get_service)):
    try:
        return svc.get_order(order_id)
    except CheckoutError as e:
        raise http_error(e)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: int,
    payload: OrderStatusUpdate,
    svc: OrderService = Depends(get_service),
):
    """
    Operator endpoint: ship, deliver or cancel.
    """
    try:
        return svc.update_status(order_id, payload.status)
    except CheckoutError as e:
        raise http_error(e)
