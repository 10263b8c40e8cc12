# storefront/api/routers/payments.py
from typing import Dict, List

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from storefront.api import http_error
from storefront.api.deps import get_notifier, get_payment_providers, get_uow
from storefront.domain.errors import CheckoutError, UnknownProvider
from storefront.domain.schemas import PaymentIntentCreate, PaymentIntentOut, PaymentOut, WebhookAck
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services.notification_service import NotificationService
from storefront.services.payment_provider import PaymentProvider, bank_transfer_instructions
from storefront.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_service(
    uow: UnitOfWork = Depends(get_uow),
    providers: Dict[str, PaymentProvider] = Depends(get_payment_providers),
    notifier: NotificationService = Depends(get_notifier),
):
    return PaymentService(uow=uow, providers=providers, notifier=notifier)


@router.post("/intents", response_model=PaymentIntentOut, status_code=201)
def create_intent(payload: PaymentIntentCreate, svc: PaymentService = Depends(get_service)):
    try:
        payment, intent = svc.create_intent(payload.order_id, payload.provider)
    except CheckoutError as e:
        raise http_error(e)
    return PaymentIntentOut(
        payment=PaymentOut.model_validate(payment),
        client_secret=intent.client_secret,
        instructions=intent.instructions,
    )


@router.post("/webhooks/{provider}", response_model=WebhookAck)
async def receive_webhook(provider: str, request: Request, svc: PaymentService = Depends(get_service)):
    """
    Provider callback. The raw body is verified before anything is parsed;
    replays are acknowledged without being applied again.
    """
    payload = await request.body()
    try:
        adapter = svc.providers.get(provider)
        if adapter is None:
            raise UnknownProvider(provider)
        signature = request.headers.get(adapter.signature_header, "")
        # database work stays off the event loop
        outcome = await run_in_threadpool(svc.handle_webhook, provider, payload, signature)
    except CheckoutError as e:
        raise http_error(e)
    return WebhookAck(status=outcome.status)


@router.get("/bank-transfer/instructions")
def bank_transfer_details() -> Dict[str, str]:
    return bank_transfer_instructions()


@router.get("/orders/{order_id}", response_model=List[PaymentOut])
def list_payments(order_id: int, svc: PaymentService = Depends(get_service)):
    try:
        return svc.list_payments(order_id)
    except CheckoutError as e:
        raise http_error(e)


@router.post("/{payment_id}/confirm", response_model=PaymentOut)
def confirm_payment(payment_id: int, svc: PaymentService = Depends(get_service)):
    """
    Operator action for cash on delivery and bank transfer payments.
    """
    try:
        return svc.confirm_manual_payment(payment_id)
    except CheckoutError as e:
        raise http_error(e)


@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: int, svc: PaymentService = Depends(get_service)):
    try:
        return svc.get_payment(payment_id)
    except CheckoutError as e:
        raise http_error(e)
