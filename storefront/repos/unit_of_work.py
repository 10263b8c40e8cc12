# storefront/repos/unit_of_work.py
from contextlib import contextmanager

from sqlalchemy.orm import Session

from storefront.repos.cart_repo import CartRepo
from storefront.repos.coupon_repo import CouponRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.payment_repo import PaymentRepo
from storefront.repos.product_repo import ProductRepo


class UnitOfWork:
    """
    One request-scoped transaction with a repository per aggregate.
    Repositories only flush; committing or rolling back is decided here.
    """

    def __init__(self, db: Session):
        self.db = db
        self.products = ProductRepo(db)
        self.carts = CartRepo(db)
        self.orders = OrderRepo(db)
        self.payments = PaymentRepo(db)
        self.coupons = CouponRepo(db)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, instance) -> None:
        self.db.refresh(instance)

    @contextmanager
    def transaction(self):
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
