# storefront/services/payment_provider.py
"""Payment provider port and adapters.

``PaymentProvider`` is what the payment state machine talks to. Two adapters:

- ``StripeProvider``: stripe-python PaymentIntents and signed webhooks.
- ``FakePaymentProvider``: no network, HMAC-SHA256 signed webhooks. Used in
  development and in tests.
- ``CashOnDeliveryProvider`` and ``BankTransferProvider``: manual methods with
  no webhooks. An operator confirms the payment once the money arrives.
"""

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

import stripe

from storefront.domain.errors import InvalidWebhookSignature, MalformedWebhook, PaymentProviderError
from storefront.utils.settings import (
    BANK_ACCOUNT_NAME,
    BANK_ACCOUNT_NUMBER,
    BANK_NAME,
    BANK_ROUTING_NUMBER,
    BANK_SWIFT_CODE,
    ENABLE_MANUAL_PAYMENTS,
    ENABLE_FAKE_PAYMENTS,
    FAKE_PAYMENTS_SECRET,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class ProviderIntent:
    intent_id: str
    client_secret: Optional[str] = None
    # what the customer needs to pay by a manual method
    instructions: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderEvent:
    """A verified inbound webhook event."""

    event_id: str
    raw_type: str
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    failure_reason: Optional[str] = None

    @property
    def kind(self) -> Optional[ProviderEventType]:
        """The known variant, or None for event types this service does not handle."""
        try:
            return ProviderEventType(self.raw_type)
        except ValueError:
            return None


def parse_event(data: dict) -> ProviderEvent:
    """Build a ProviderEvent from a Stripe-shaped event body."""
    obj = (data.get("data") or {}).get("object") or {}
    error = obj.get("last_payment_error") or {}
    event_id = data.get("id")
    if not event_id:
        # the id is the idempotency key
        raise MalformedWebhook("Webhook event has no id")
    return ProviderEvent(
        event_id=str(event_id),
        raw_type=str(data.get("type", "")),
        payment_intent_id=obj.get("id"),
        metadata={str(k): str(v) for k, v in (obj.get("metadata") or {}).items()},
        failure_reason=error.get("message"),
    )


def _loads(text: str) -> dict:
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedWebhook() from e
    if not isinstance(data, dict):
        raise MalformedWebhook()
    return data


class PaymentProvider(ABC):
    """Abstract payment provider interface."""

    name: str
    signature_header: str
    # settled by an operator instead of by webhooks
    manual = False
    collect_on_delivery = False

    @abstractmethod
    def create_intent(self, amount_minor_units: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        """Register a payment intent; metadata comes back on every webhook for it."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        """Verify the signature and parse the payload. Raises InvalidWebhookSignature."""
        ...


class StripeProvider(PaymentProvider):
    name = "stripe"
    signature_header = "Stripe-Signature"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_intent(self, amount_minor_units: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor_units,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe rejected payment intent for {metadata}: {e}")
            raise PaymentProviderError(f"Stripe error: {e}") from e

        return ProviderIntent(intent_id=intent.id, client_secret=intent.client_secret)

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhookSignature() from e
        return parse_event(_loads(text))


class FakePaymentProvider(PaymentProvider):
    """Configurable provider that never leaves the process."""

    name = "fake"
    signature_header = "X-Fake-Signature"

    def __init__(self, webhook_secret: str = FAKE_PAYMENTS_SECRET) -> None:
        self.webhook_secret = webhook_secret
        self.should_succeed = True
        self.intents: list[dict] = []

    def configure(self, should_succeed: bool) -> None:
        self.should_succeed = should_succeed

    def create_intent(self, amount_minor_units: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        self.intents.append({"amount": amount_minor_units, "currency": currency, "metadata": dict(metadata)})
        if not self.should_succeed:
            raise PaymentProviderError("Fake provider refused the intent")

        intent_id = f"fake_pi_{uuid4().hex[:12]}"
        return ProviderIntent(intent_id=intent_id, client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}")

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def build_event(
        self,
        event_type: str,
        intent_id: str,
        metadata: Dict[str, str],
        event_id: str | None = None,
        failure_reason: str | None = None,
    ) -> bytes:
        obj = {"id": intent_id, "metadata": metadata}
        if failure_reason:
            obj["last_payment_error"] = {"message": failure_reason}
        body = {"id": event_id or f"evt_{uuid4().hex[:12]}", "type": event_type, "data": {"object": obj}}
        return json.dumps(body).encode("utf-8")

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise InvalidWebhookSignature()
        return parse_event(_loads(payload.decode("utf-8")))


def bank_transfer_instructions() -> Dict[str, str]:
    """Account details shown to customers paying by bank transfer."""
    return {
        "bank_name": BANK_NAME,
        "account_name": BANK_ACCOUNT_NAME,
        "account_number": BANK_ACCOUNT_NUMBER,
        "routing_number": BANK_ROUTING_NUMBER,
        "swift_code": BANK_SWIFT_CODE,
    }


class ManualPaymentProvider(PaymentProvider):
    """Base for payment methods confirmed by an operator rather than a webhook."""

    manual = True
    signature_header = ""

    def create_intent(self, amount_minor_units: int, currency: str, metadata: Dict[str, str]) -> ProviderIntent:
        return ProviderIntent(
            intent_id=f"{self.name}_{uuid4().hex[:12]}",
            instructions=self.instructions(Decimal(amount_minor_units) / 100, currency, metadata),
        )

    @abstractmethod
    def instructions(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        ...

    def construct_event(self, payload: bytes, signature: str) -> ProviderEvent:
        raise InvalidWebhookSignature(f"{self.name} payments are confirmed by an operator")


class CashOnDeliveryProvider(ManualPaymentProvider):
    name = "cod"
    collect_on_delivery = True

    def __init__(self, delivery_days: int = 5) -> None:
        self.delivery_days = delivery_days

    def instructions(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        return {
            "message": "Pay in cash when your order is delivered.",
            "amount_due": f"{amount:.2f}",
            "currency": currency.upper(),
            "estimated_delivery": (datetime.utcnow() + timedelta(days=self.delivery_days)).date().isoformat(),
        }


class BankTransferProvider(ManualPaymentProvider):
    name = "bank_transfer"

    def instructions(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        details: Dict[str, Any] = dict(bank_transfer_instructions())
        details.update(
            {
                "amount": f"{amount:.2f}",
                "currency": currency.upper(),
                "reference": f"ORDER-{metadata.get('order_id', '')}",
                "message": "Include the reference in the transfer description.",
            }
        )
        return details


def build_providers() -> Dict[str, PaymentProvider]:
    """Providers enabled by configuration, keyed by name."""
    providers: Dict[str, PaymentProvider] = {}
    if ENABLE_MANUAL_PAYMENTS:
        providers[CashOnDeliveryProvider.name] = CashOnDeliveryProvider()
        providers[BankTransferProvider.name] = BankTransferProvider()
    if STRIPE_SECRET_KEY:
        providers[StripeProvider.name] = StripeProvider(STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET)
    if ENABLE_FAKE_PAYMENTS:
        providers[FakePaymentProvider.name] = FakePaymentProvider(FAKE_PAYMENTS_SECRET)
    return providers
