# storefront/data/models/product.py
from sqlalchemy import CheckConstraint, Column, Integer, Numeric, String

from storefront.data.database import Base


class ProductModel(Base):
    """Catalog row owned by the catalog service; checkout only touches stock."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    category_id = Column(Integer, nullable=True, index=True)

    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)
