"""Payment entry points: gateway webhooks and the client-side verify fallback.

Both paths feed the same confirmation workflow; whichever arrives first
confirms the order and the other observes `alreadyProcessed`.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from shared.core import get_logger
from storefront.application.confirmation import PaymentConfirmationService
from storefront.application.orders import OrderService
from storefront.application.schemas import (
    PaystackVerifyRequest,
    StripeVerifyRequest,
    VerifyResponse,
    WebhookAck,
)
from storefront.domain.errors import GatewayVerificationFailed, OrderNotFound
from storefront.domain.models import PaymentStatus
from storefront.infrastructure.db import get_db
from storefront.infrastructure.gateway import PaymentGateway
from storefront.infrastructure.paystack_gateway import PaystackGateway
from storefront.infrastructure.stripe_gateway import StripeGateway
from .deps import get_paystack_gateway, get_stripe_gateway

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


def _not_verified(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "verified": False})


async def _handle_webhook(gateway: PaymentGateway, request: Request, db: Session):
    # Signature is computed over the exact bytes received
    raw_body = await request.body()
    event = gateway.verify_signature(raw_body, request.headers.get(gateway.signature_header))

    payment_event = gateway.normalize_event(event)
    if payment_event is None:
        return WebhookAck()

    try:
        result = await run_in_threadpool(PaymentConfirmationService(db).confirm_payment, payment_event)
    except OrderNotFound:
        return JSONResponse(status_code=400, content={"detail": "Order not found"})

    if result.already_processed:
        return WebhookAck(already_processed=True)
    logger.info(f"Order {result.order_id} ({result.order_number}) confirmed via webhook",
                extra={'extra_fields': {'provider': gateway.provider,
                                        'cart_cleared': result.cart_cleared}})
    return WebhookAck()


def _confirm_verified(gateway: PaymentGateway, reference: str, order_number, db: Session):
    try:
        outcome = gateway.verify_reference(reference, order_number)
    except GatewayVerificationFailed as e:
        return _not_verified(400, e.detail)

    if not outcome.paid:
        return VerifyResponse(verified=False, status=outcome.status,
                              message="Payment was not successful")

    try:
        result = PaymentConfirmationService(db).confirm_payment(outcome.event)
    except OrderNotFound:
        return _not_verified(400, "Could not find associated order")

    if result.already_processed:
        return VerifyResponse(verified=True, already_processed=True,
                              message="Order already confirmed")
    return VerifyResponse(verified=True, message="Payment verified and order confirmed")


@router.post("/webhooks/stripe", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(request: Request, db: Session = Depends(get_db),
                         gateway: StripeGateway = Depends(get_stripe_gateway)):
    return await _handle_webhook(gateway, request, db)


@router.post("/webhooks/paystack", response_model=WebhookAck, response_model_exclude_none=True)
async def paystack_webhook(request: Request, db: Session = Depends(get_db),
                           gateway: PaystackGateway = Depends(get_paystack_gateway)):
    return await _handle_webhook(gateway, request, db)


@router.post("/checkout/stripe/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify_stripe_payment(payload: StripeVerifyRequest, db: Session = Depends(get_db),
                          gateway: StripeGateway = Depends(get_stripe_gateway)):
    """Fallback for when the Stripe webhook has not (yet) arrived."""
    if not payload.session_id and not payload.order_number:
        return _not_verified(400, "Session ID or order number is required")

    if payload.session_id:
        return _confirm_verified(gateway, payload.session_id, payload.order_number, db)

    # No session to ask Stripe about; report what we already know
    order = OrderService(db).get_by_number(payload.order_number)
    if order is None:
        return _not_verified(400, "Could not verify payment")
    return VerifyResponse(verified=order.payment_status == PaymentStatus.PAID.value, status=order.status,
                          payment_status=order.payment_status)


@router.post("/checkout/paystack/verify", response_model=VerifyResponse, response_model_exclude_none=True)
def verify_paystack_payment(payload: PaystackVerifyRequest, db: Session = Depends(get_db),
                            gateway: PaystackGateway = Depends(get_paystack_gateway)):
    """Fallback for when the Paystack webhook has not (yet) arrived."""
    if not payload.reference:
        return _not_verified(400, "Payment reference is required")
    return _confirm_verified(gateway, payload.reference, payload.order_number, db)
