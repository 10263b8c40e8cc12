# storefront/repos/product_repo.py
from typing import Dict, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.product import ProductModel


class ProductRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_product(self, product_id: int) -> ProductModel | None:
        return self.db.get(ProductModel, product_id)

    def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductModel]:
        ids = list(product_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(ProductModel)
            .where(ProductModel.id.in_(ids))
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {p.id: p for p in rows}

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        # UPDATE products SET stock = stock - q WHERE id = :id AND stock >= q
        # a single statement, so two checkouts can never both pass the check
        result = self.db.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
