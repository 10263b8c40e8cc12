# storefront/repos/cart_repo.py
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel


class CartRepo:
    """Durable, owner keyed carts."""

    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_owner(self, owner_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.owner_id == owner_id)
        ).scalar_one_or_none()

    def create_cart(self, cart: CartModel) -> CartModel:
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_cart_items(self, cart_id: int) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(CartItemModel.cart_id == cart_id)
                .order_by(CartItemModel.id)
            ).scalars()
        )

    def add_cart_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_cart_item(self, cart_id: int, product_id: int) -> None:
        self.db.execute(
            delete(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.product_id == product_id,
            )
        )

    def delete_cart(self, cart_id: int) -> None:
        self.db.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart_id))
        self.db.execute(delete(CartModel).where(CartModel.id == cart_id))

    def update_cart_version(self, cart_id: int, old_version: int) -> int:
        # optimistic locking: UPDATE ... SET version = v + 1 WHERE id = :id AND version = v
        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.version == old_version)
            .values(version=old_version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
