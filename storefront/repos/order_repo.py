# storefront/repos/order_repo.py
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.get(OrderModel, order_id)

    def list_orders(self, user_id: int, page: int = 1, limit: int = 10) -> tuple[list[OrderModel], int]:
        total = self.db.execute(
            select(func.count(OrderModel.id)).where(OrderModel.user_id == user_id)
        ).scalar_one()
        orders = self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return list(orders), total

    def update_order_status(self, order_id: int, from_status: str, to_status: str) -> bool:
        """Conditional status move; False when the order is no longer in ``from_status``."""
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == from_status)
            .values(status=to_status, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
