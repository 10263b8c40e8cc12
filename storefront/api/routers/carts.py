# storefront/api/routers/carts.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Response

from storefront.api import http_error
from storefront.api.deps import get_cache, get_uow
from storefront.domain.errors import CheckoutError
from storefront.domain.schemas import CartLineOut, CartOut, LineIn, LineUpdate
from storefront.domain.types import CartSummary
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cache_service import RedisCache
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(uow: UnitOfWork = Depends(get_uow), cache: RedisCache = Depends(get_cache)):
    return CartService(uow=uow, cache=cache)


def to_cart_out(summary: CartSummary) -> CartOut:
    return CartOut(
        user_id=summary.cart.owner_id,
        session_id=summary.cart.session_id,
        items=[
            CartLineOut(
                product_id=l.product_id,
                quantity=l.quantity,
                unit_price=l.unit_price,
                line_total=l.line_total,
            )
            for l in summary.lines
        ],
        subtotal=summary.subtotal,
    )


@router.get("/", response_model=CartOut)
def get_cart(
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: CartService = Depends(get_service),
):
    """
    Returns the caller's cart. ``user_id`` wins over the session header.
    """
    try:
        cart = svc.resolve(user_id, x_session_id)
        return to_cart_out(svc.summarize(cart))
    except CheckoutError as e:
        raise http_error(e)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: LineIn,
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: CartService = Depends(get_service),
):
    try:
        key = svc.key_for(user_id, x_session_id)
        cart = svc.add_line(key, payload.product_id, payload.quantity)
        return to_cart_out(svc.summarize(cart))
    except CheckoutError as e:
        raise http_error(e)


@router.put("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: int,
    payload: LineUpdate,
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: CartService = Depends(get_service),
):
    try:
        key = svc.key_for(user_id, x_session_id)
        cart = svc.update_line(key, product_id, payload.quantity)
        return to_cart_out(svc.summarize(cart))
    except CheckoutError as e:
        raise http_error(e)


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(
    product_id: int,
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: CartService = Depends(get_service),
):
    try:
        key = svc.key_for(user_id, x_session_id)
        cart = svc.remove_line(key, product_id)
        return to_cart_out(svc.summarize(cart))
    except CheckoutError as e:
        raise http_error(e)


@router.delete("/", status_code=204)
def clear_cart(
    user_id: Optional[int] = Query(None, gt=0),
    x_session_id: Optional[str] = Header(None),
    svc: CartService = Depends(get_service),
):
    try:
        svc.clear(svc.key_for(user_id, x_session_id))
    except CheckoutError as e:
        raise http_error(e)
    return Response(status_code=204)
