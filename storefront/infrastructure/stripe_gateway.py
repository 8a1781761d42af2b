import json
from typing import Any, Dict, Optional

import stripe

from shared.core import get_logger
from storefront.domain.errors import (
    GatewayUnavailable,
    GatewayVerificationFailed,
    InvalidSignature,
    MissingOrderReference,
)
from storefront.domain.events import PaymentEvent
from .gateway import PaymentGateway, VerificationOutcome

logger = get_logger(__name__)

PROVIDER = "stripe"
COMPLETED_EVENT = "checkout.session.completed"
EXPIRED_EVENT = "checkout.session.expired"
FAILED_EVENT = "payment_intent.payment_failed"


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


class StripeGateway(PaymentGateway):
    provider = PROVIDER
    signature_header = "stripe-signature"

    def __init__(self, secret_key: str, webhook_secret: str, timeout: float = 15.0,
                 tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.timeout = timeout
        self._client: Optional[stripe.StripeClient] = None

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.webhook_secret:
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
            raise InvalidSignature("Webhook secret not configured")
        if not signature:
            raise InvalidSignature("Missing stripe-signature header")
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidSignature("Webhook body is not valid UTF-8")
        # Same check stripe.Webhook.construct_event runs, without building a StripeObject
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise InvalidSignature(f"Webhook Error: {e}")
        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidSignature("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise InvalidSignature("Webhook body is not a JSON object")
        return event

    def normalize_event(self, event: Dict[str, Any]) -> Optional[PaymentEvent]:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == COMPLETED_EVENT:
            payment_event = self._build_event(obj)
            if not payment_event.order_id and not payment_event.order_number:
                logger.error("No order ID found in session",
                             extra={'extra_fields': {'session_id': obj.get("id")}})
                raise MissingOrderReference()
            return payment_event

        if event_type == EXPIRED_EVENT:
            logger.info("Checkout session expired",
                        extra={'extra_fields': {'order_id': self._order_id(obj), 'session_id': obj.get("id")}})
        elif event_type == FAILED_EVENT:
            logger.info("Payment failed", extra={'extra_fields': {'payment_intent': obj.get("id")}})
        else:
            logger.info(f"Unhandled event type: {event_type}")
        return None

    def verify_reference(self, reference: str, order_number: Optional[str] = None) -> VerificationOutcome:
        session = self._retrieve_session(reference)
        payment_status = session.get("payment_status")
        if payment_status != "paid":
            return VerificationOutcome(paid=False, status=payment_status)
        event = self._build_event(session, fallback_order_number=order_number, verified_via_api=True)
        return VerificationOutcome(paid=True, status=payment_status, event=event)

    def client(self) -> stripe.StripeClient:
        # Owned by this gateway; stripe.default_http_client stays untouched
        if self._client is None:
            self._client = stripe.StripeClient(
                self.secret_key, http_client=stripe.RequestsClient(timeout=self.timeout)
            )
        return self._client

    def _retrieve_session(self, session_id: str) -> Dict[str, Any]:
        try:
            session = self.client().checkout.sessions.retrieve(session_id)
        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe session lookup rejected: {e}")
            raise GatewayVerificationFailed()
        except stripe.StripeError as e:
            logger.error(f"Stripe request failed: {e}")
            raise GatewayUnavailable()
        return _as_dict(session)

    def _order_id(self, session: Dict[str, Any]) -> Optional[str]:
        metadata = session.get("metadata") or {}
        return session.get("client_reference_id") or metadata.get("orderId")

    def _build_event(self, session: Dict[str, Any], fallback_order_number: Optional[str] = None,
                     verified_via_api: bool = False) -> PaymentEvent:
        metadata = session.get("metadata") or {}
        payment_intent = session.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        extra = {
            "stripeSessionId": session.get("id"),
            "stripePaymentIntent": payment_intent,
            "amountTotal": session.get("amount_total"),
            "paymentStatus": session.get("payment_status"),
        }
        if verified_via_api:
            extra["verifiedViaAPI"] = True
        return PaymentEvent(
            provider=PROVIDER,
            reference=payment_intent or session.get("id"),
            order_id=self._order_id(session),
            order_number=metadata.get("orderNumber") or fallback_order_number,
            # Stripe minor-unit convention, stored as reported
            amount=session.get("amount_total"),
            currency=session.get("currency"),
            raw_status=session.get("payment_status"),
            metadata={k: v for k, v in extra.items() if v is not None},
        )
