# storefront/services/order_service.py
from decimal import Decimal

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from storefront.data.models.order import OrderItemModel, OrderModel
from storefront.domain.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidCoupon,
    InvalidStatusTransition,
    OrderNotFound,
    ProductNotFound,
)
from storefront.domain.types import ORDER_TRANSITIONS, Cart, OrderStatus, ShippingAddress, money
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.cart_service import CartService
from storefront.services.coupon_service import CouponService
from storefront.services.notification_service import NotificationService
from storefront.services.stock_ledger import StockLedger
from storefront.utils.retry import db_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def order_payload(order: OrderModel) -> dict:
    return {
        "order_id": order.id,
        "user_id": order.user_id,
        "status": order.status,
        "total": str(order.total),
    }


def _copy_address(order: OrderModel, address: ShippingAddress) -> None:
    order.shipping_address_line1 = address.line1
    order.shipping_address_line2 = address.line2
    order.shipping_city = address.city
    order.shipping_state = address.state
    order.shipping_postal_code = address.postal_code
    order.shipping_country = address.country


class OrderService:
    """
    OrderFactory: turns a cart into an immutable order snapshot.

    Stock reservation, order + line persistence and coupon redemption share
    one transaction. Either all of it commits or none of it does.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        cart_service: CartService,
        coupon_service: CouponService,
        stock_ledger: StockLedger,
        notifier: NotificationService,
    ):
        self.uow = uow
        self.cart_service = cart_service
        self.coupon_service = coupon_service
        self.stock_ledger = stock_ledger
        self.notifier = notifier

    def create_order(
        self,
        cart: Cart,
        coupon_code: str | None = None,
        shipping_address: ShippingAddress | None = None,
        payment_method: str | None = None,
    ) -> OrderModel:
        """
        Use case: place an order from a cart.

        1. reject an empty cart
        2. read products, fail on missing product / short stock before writing
        3. reserve stock for every line
        4. price the lines, apply the coupon
        5. persist the order + line and address snapshots, redeem the coupon
        6. commit, then clear the cart and notify
        """
        if cart.is_empty():
            raise EmptyCart()

        order = self._place_order(cart, coupon_code, shipping_address, payment_method)

        try:
            self.cart_service.clear(cart.key)
        except (SQLAlchemyError, RedisError) as e:
            # the order is committed, a stale cart is only cosmetic
            logger.error(f"Order {order.id} placed but cart {cart.key} was not cleared: {e}")

        self.notifier.notify("order_created", order_payload(order))
        return order

    @db_retry()
    def _place_order(
        self,
        cart: Cart,
        coupon_code: str | None,
        shipping_address: ShippingAddress | None,
        payment_method: str | None,
    ) -> OrderModel:
        with self.uow.transaction():
            order = self._build_order(cart, coupon_code)
            order.payment_method = payment_method
            if shipping_address is not None:
                _copy_address(order, shipping_address)

        logger.info(
            f"Order {order.id} created for {cart.key}: subtotal {order.subtotal}, "
            f"discount {order.discount_amount}, total {order.total}"
        )
        return order

    def _build_order(self, cart: Cart, coupon_code: str | None) -> OrderModel:
        lines = list(cart.lines)
        products = self.uow.products.get_products(line.product_id for line in lines)

        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise ProductNotFound(line.product_id)
            if product.stock < line.quantity:
                raise InsufficientStock(line.product_id, requested=line.quantity, available=product.stock)

        # unit prices are captured now and never recomputed
        unit_prices = {pid: money(p.price) for pid, p in products.items()}

        self.stock_ledger.reserve_all(lines)

        subtotal = money(sum((unit_prices[l.product_id] * l.quantity for l in lines), Decimal("0.00")))
        discount = Decimal("0.00")
        validation = None

        if coupon_code:
            validation = self.coupon_service.validate(
                coupon_code,
                subtotal,
                product_ids=[l.product_id for l in lines],
                category_ids=[p.category_id for p in products.values() if p.category_id is not None],
                user_id=cart.owner_id,
            )
            if not validation.valid:
                raise InvalidCoupon(validation.reason)
            discount = validation.discount_amount

        order = self.uow.orders.add_order(
            OrderModel(
                user_id=cart.owner_id,
                session_id=cart.session_id,
                status=OrderStatus.PENDING.value,
                subtotal=subtotal,
                discount_amount=discount,
                total=money(max(Decimal("0.00"), subtotal - discount)),
                coupon_code=validation.code if validation else None,
                items=[
                    OrderItemModel(
                        product_id=l.product_id,
                        quantity=l.quantity,
                        unit_price=unit_prices[l.product_id],
                    )
                    for l in lines
                ],
            )
        )

        if validation:
            self.coupon_service.redeem(validation, cart.owner_id, order.id)

        return order

    #queries
    def get_order(self, order_id: int) -> OrderModel:
        order = self.uow.orders.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def list_orders(self, user_id: int, page: int = 1, limit: int = 10) -> tuple[list[OrderModel], int]:
        return self.uow.orders.list_orders(user_id, page, limit)

    def update_status(self, order_id: int, status: OrderStatus) -> OrderModel:
        """
        Operator driven progression (ship, deliver, cancel).
        """
        order = self.get_order(order_id)
        current = OrderStatus(order.status)

        if status not in ORDER_TRANSITIONS[current]:
            raise InvalidStatusTransition(current.value, status.value)

        if not self.uow.orders.update_order_status(order_id, current.value, status.value):
            # someone else moved it first
            self.uow.rollback()
            self.uow.refresh(order)
            raise InvalidStatusTransition(order.status, status.value)

        self.uow.commit()
        self.uow.refresh(order)

        logger.info(f"Order {order_id} moved {current.value} -> {status.value}")
        self.notifier.notify(f"order_{status.value.lower()}", order_payload(order))
        return order
