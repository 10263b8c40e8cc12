# storefront/services/payment_service.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from storefront.data.models.payment import PaymentModel
from storefront.domain.errors import (
    InvalidWebhookSignature,
    OrderNotFound,
    OrderNotPending,
    PaymentMethodMismatch,
    PaymentNotConfirmable,
    PaymentNotFound,
    UnknownProvider,
)
from storefront.domain.types import OrderStatus, PaymentStatus, money
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.notification_service import NotificationService
from storefront.services.payment_provider import PaymentProvider, ProviderEvent, ProviderEventType, ProviderIntent
from storefront.utils.settings import CURRENCY
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DUPLICATE_CAPTURE = "duplicate capture"

Notification = Tuple[str, dict]


def to_minor_units(amount: Decimal) -> int:
    return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class WebhookOutcome:
    status: str  # applied, noop, duplicate, ignored
    payment_id: Optional[int] = None


class PaymentService:
    """
    Payment state machine: PENDING -> PAID | FAILED, both terminal.

    Webhooks may arrive late, twice, or concurrently. Two guards keep them
    idempotent: the ledger of applied provider event ids, and the
    PENDING-only conditional update on the payment row. The order row
    decides which capture pays the order when two payments succeed at once.

    Manual methods (cash on delivery, bank transfer) have no webhooks and
    are captured by confirm_manual_payment.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        providers: Dict[str, PaymentProvider],
        notifier: NotificationService,
        currency: str = CURRENCY,
    ):
        self.uow = uow
        self.providers = providers
        self.notifier = notifier
        self.currency = currency
        self._handlers: Dict[ProviderEventType, Callable[[PaymentModel, ProviderEvent], Optional[Notification]]] = {
            ProviderEventType.PAYMENT_SUCCEEDED: self._apply_success,
            ProviderEventType.PAYMENT_FAILED: self._apply_failure,
        }

    def _provider(self, name: str) -> PaymentProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise UnknownProvider(name)
        return provider
    def create_intent(self, order_id: int, provider_name: str) -> Tuple[PaymentModel, ProviderIntent]:
        """
        Use case: start paying for a PENDING order.
        Returns the PENDING payment and the provider intent: a client secret
        for card providers, payment instructions for manual ones.
        Cash on delivery moves the order to PROCESSING right away.
        """
        provider = self._provider(provider_name)

        order = self.uow.orders.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.PENDING.value:
            raise OrderNotPending(order_id, order.status)
        if order.payment_method and order.payment_method != provider.name:
            raise PaymentMethodMismatch(order.payment_method, provider.name)

        with self.uow.transaction():
            payment = self.uow.payments.add_payment(
                PaymentModel(
                    order_id=order.id,
                    provider=provider.name,
                    status=PaymentStatus.PENDING.value,
                    amount=order.total,
                )
            )
            intent = provider.create_intent(
                amount_minor_units=to_minor_units(order.total),
                currency=self.currency,
                metadata={"order_id": str(order.id), "payment_id": str(payment.id)},
            )
            payment.provider_intent_id = intent.intent_id
            if provider.collect_on_delivery and not self.uow.orders.update_order_status(
                order.id, OrderStatus.PENDING.value, OrderStatus.PROCESSING.value
            ):
                raise OrderNotPending(order_id, "PROCESSING")

        logger.info(f"Payment {payment.id} ({provider.name} {intent.intent_id}) created for order {order_id}")
        self.notifier.notify("payment_initiated", self._payload(payment, PaymentStatus.PENDING))
        return payment, intent

    def confirm_manual_payment(self, payment_id: int) -> PaymentModel:
        """
        Use case: an operator records that cash was collected or a transfer arrived.
        """
        payment = self.get_payment(payment_id)
        provider = self._provider(payment.provider)
        if not provider.manual:
            raise PaymentNotConfirmable(payment_id, f"is a {payment.provider} payment, settled by webhook")

        with self.uow.transaction():
            notification = self._capture(payment)
            if notification is None:
                raise PaymentNotConfirmable(payment_id, "is no longer PENDING")

        self.uow.refresh(payment)
        logger.info(f"Payment {payment_id} confirmed manually for order {payment.order_id}")
        self.notifier.notify(*notification)
        return payment

    def handle_webhook(self, provider_name: str, payload: bytes, signature: str) -> WebhookOutcome:
        provider = self._provider(provider_name)
        try:
            event = provider.construct_event(payload, signature)
        except InvalidWebhookSignature:
            logger.warning(f"SECURITY: rejected {provider_name} webhook with an invalid signature")
            raise
        return self.on_provider_event(provider_name, event)

    def on_provider_event(self, provider_name: str, event: ProviderEvent) -> WebhookOutcome:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.info(f"Ignoring unhandled {provider_name} event {event.raw_type} ({event.event_id})")
            return WebhookOutcome("ignored")

        if self.uow.payments.event_seen(provider_name, event.event_id):
            logger.info(f"{provider_name} event {event.event_id} already applied")
            return WebhookOutcome("duplicate")

        payment = self._correlate(provider_name, event)
        if payment is None:
            return WebhookOutcome("ignored")
        payment_id = payment.id

        try:
            with self.uow.transaction():
                notification = handler(payment, event)
                self.uow.payments.record_event(provider_name, event.event_id, event.raw_type)
        except IntegrityError:
            # the same event was recorded by a concurrent delivery
            logger.info(f"{provider_name} event {event.event_id} applied concurrently")
            return WebhookOutcome("duplicate", payment_id)

        if notification is None:
            return WebhookOutcome("noop", payment_id)

        self.notifier.notify(*notification)
        return WebhookOutcome("applied", payment_id)
    def _correlate(self, provider_name: str, event: ProviderEvent) -> PaymentModel | None:
        payment = None
        payment_id = event.metadata.get("payment_id", "")
        if payment_id.isdigit():
            payment = self.uow.payments.get_payment(int(payment_id))
        if payment is None and event.payment_intent_id:
            payment = self.uow.payments.get_by_intent(provider_name, event.payment_intent_id)

        if payment is None:
            logger.warning(f"{provider_name} event {event.event_id} matches no payment: {event.metadata}")
            return None
        if payment.provider != provider_name:
            logger.warning(f"Event {event.event_id} from {provider_name} targets a {payment.provider} payment")
            return None
        if (
            payment.provider_intent_id
            and event.payment_intent_id
            and payment.provider_intent_id != event.payment_intent_id
        ):
            logger.warning(
                f"Event {event.event_id} intent {event.payment_intent_id} does not match "
                f"payment {payment.id} intent {payment.provider_intent_id}"
            )
            return None
        order_id = event.metadata.get("order_id")
        if order_id and order_id != str(payment.order_id):
            logger.warning(f"Event {event.event_id} order {order_id} does not match payment {payment.id}")
            return None
        return payment

    def _apply_success(self, payment: PaymentModel, event: ProviderEvent) -> Optional[Notification]:
        return self._capture(payment)

    def _capture(self, payment: PaymentModel) -> Optional[Notification]:
        """
        PENDING -> PAID, then claim the order. The conditional order update
        takes the order row lock, so of two concurrent captures exactly one
        moves the order; the other sees the winner's PAID row afterwards.
        """
        if not self.uow.payments.transition(payment.id, PaymentStatus.PAID.value):
            logger.info(f"Payment {payment.id} is already {payment.status}, success ignored")
            return None

        if self.uow.orders.update_order_status(
            payment.order_id, OrderStatus.PENDING.value, OrderStatus.PROCESSING.value
        ):
            logger.info(f"Payment {payment.id} PAID, order {payment.order_id} PROCESSING")
            return "payment_success", self._payload(payment, PaymentStatus.PAID)

        if self.uow.payments.has_paid_payment(payment.order_id, exclude_payment_id=payment.id):
            # at most one PAID payment per order
            self.uow.payments.transition(
                payment.id, PaymentStatus.FAILED.value, DUPLICATE_CAPTURE, from_status=PaymentStatus.PAID.value
            )
            logger.error(
                f"Payment {payment.id} captured for already paid order {payment.order_id}, refund required"
            )
            return "payment_failed", self._payload(payment, PaymentStatus.FAILED, DUPLICATE_CAPTURE)

        order = self.uow.orders.get_order(payment.order_id)
        status = order.status if order else "missing"
        if status == OrderStatus.CANCELLED.value:
            logger.warning(f"Payment {payment.id} succeeded but order {payment.order_id} is CANCELLED")
        else:
            # cash on delivery orders are already past PENDING
            logger.info(f"Payment {payment.id} PAID, order {payment.order_id} stays {status}")
        return "payment_success", self._payload(payment, PaymentStatus.PAID)

    def _apply_failure(self, payment: PaymentModel, event: ProviderEvent) -> Optional[Notification]:
        reason = event.failure_reason or "payment failed"
        if not self.uow.payments.transition(payment.id, PaymentStatus.FAILED.value, reason):
            logger.info(f"Payment {payment.id} is already {payment.status}, failure ignored")
            return None

        logger.info(f"Payment {payment.id} FAILED: {reason}")
        return "payment_failed", self._payload(payment, PaymentStatus.FAILED, reason)

    @staticmethod
    def _payload(payment: PaymentModel, status: PaymentStatus, reason: str | None = None) -> dict:
        payload = {
            "payment_id": payment.id,
            "order_id": payment.order_id,
            "provider": payment.provider,
            "status": status.value,
            "amount": str(payment.amount),
        }
        if reason:
            payload["failure_reason"] = reason
        return payload

    def get_payment(self, payment_id: int) -> PaymentModel:
        payment = self.uow.payments.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found")
        return payment

    def list_payments(self, order_id: int) -> list[PaymentModel]:
        if self.uow.orders.get_order(order_id) is None:
            raise OrderNotFound(order_id)
        return self.uow.payments.list_for_order(order_id)
