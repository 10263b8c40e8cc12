from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    provider = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PENDING")  # PENDING, PAID, FAILED
    amount = Column(Numeric(10, 2), nullable=False)
    provider_intent_id = Column(String, nullable=True, unique=True)
    failure_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    order = relationship("OrderModel", back_populates="payments")


class ProviderEventModel(Base):
    """Webhook events already applied, keyed by the provider's event id."""

    __tablename__ = "provider_events"

    id = Column(Integer, primary_key=True)
    provider = Column(String, nullable=False)
    event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (UniqueConstraint("provider", "event_id", name="u_provider_event"),)
