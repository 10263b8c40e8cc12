# storefront/repos/payment_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.data.models.payment import PaymentModel, ProviderEventModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: int) -> PaymentModel | None:
        return self.db.get(PaymentModel, payment_id)

    def get_by_intent(self, provider: str, intent_id: str) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel).where(
                PaymentModel.provider == provider,
                PaymentModel.provider_intent_id == intent_id,
            )
        ).scalar_one_or_none()

    def list_for_order(self, order_id: int) -> list[PaymentModel]:
        return list(
            self.db.execute(
                select(PaymentModel)
                .where(PaymentModel.order_id == order_id)
                .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            ).scalars()
        )

    def has_paid_payment(self, order_id: int, exclude_payment_id: int | None = None) -> bool:
        stmt = select(PaymentModel.id).where(
            PaymentModel.order_id == order_id,
            PaymentModel.status == "PAID",
        )
        if exclude_payment_id is not None:
            stmt = stmt.where(PaymentModel.id != exclude_payment_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def transition(
        self,
        payment_id: int,
        to_status: str,
        failure_reason: str | None = None,
        from_status: str = "PENDING",
    ) -> bool:
        """Conditional status move, at most once. False means the payment was not in from_status."""
        result = self.db.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment_id, PaymentModel.status == from_status)
            .values(
                status=to_status,
                failure_reason=failure_reason,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def event_seen(self, provider: str, event_id: str) -> bool:
        return self.db.execute(
            select(ProviderEventModel.id).where(
                ProviderEventModel.provider == provider,
                ProviderEventModel.event_id == event_id,
            )
        ).first() is not None

    def record_event(self, provider: str, event_id: str, event_type: str) -> None:
        self.db.add(ProviderEventModel(provider=provider, event_id=event_id, event_type=event_type))
        self.db.flush()
