# storefront/services/stock_ledger.py
from typing import Iterable

from storefront.domain.errors import InsufficientStock
from storefront.domain.types import CartLine
from storefront.repos.unit_of_work import UnitOfWork
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class StockLedger:
    """
    Atomic stock reservation.

    ``reserve`` is a single conditional decrement checked by affected rows,
    never a read followed by a write. It does not commit: a set of
    reservations belongs to the caller's transaction and is rolled back with
    it when any line fails.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def reserve(self, product_id: int, quantity: int) -> None:
        if not self.uow.products.decrement_stock(product_id, quantity):
            logger.info(f"Reservation refused for product {product_id} x{quantity}")
            raise InsufficientStock(product_id, requested=quantity)
        logger.info(f"Reserved product {product_id} x{quantity}")

    def reserve_all(self, lines: Iterable[CartLine]) -> None:
        for line in lines:
            self.reserve(line.product_id, line.quantity)
