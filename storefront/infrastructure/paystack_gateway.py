import hashlib
import hmac
import json
from typing import Any, Dict, Optional

import httpx

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

PROVIDER = "paystack"
SUCCESS_EVENT = "charge.success"
FAILED_EVENT = "charge.failed"


def to_major_units(amount: Optional[int]) -> Optional[float]:
    """Paystack reports kobo-style minor units."""
    if amount is None:
        return None
    return round(amount / 100, 2)


def _metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    # Paystack passes metadata through as given at initialization, sometimes as a JSON string
    metadata = data.get("metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return {}
    return metadata if isinstance(metadata, dict) else {}


class PaystackGateway(PaymentGateway):
    provider = PROVIDER
    signature_header = "x-paystack-signature"

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co",
                 timeout: float = 15.0, transport: Optional[httpx.BaseTransport] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        # An empty key would let anyone produce a matching HMAC
        if not self.secret_key:
            logger.error("Paystack webhook received but PAYSTACK_SECRET_KEY is not set")
            raise InvalidSignature("Webhook secret not configured")
        if not signature:
            raise InvalidSignature("Missing x-paystack-signature header")
        # Header values may carry arbitrary latin-1 characters; compare as bytes
        if not hmac.compare_digest(self.sign(raw_body).encode("ascii"), signature.encode("utf-8")):
            logger.warning("Invalid Paystack webhook signature")
            raise InvalidSignature()
        try:
            event = json.loads(raw_body)
        except ValueError:
            raise InvalidSignature("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise InvalidSignature("Webhook body is not a JSON object")
        return event

    def normalize_event(self, event: Dict[str, Any]) -> Optional[PaymentEvent]:
        event_type = event.get("event")
        data = event.get("data") or {}

        if event_type == SUCCESS_EVENT:
            payment_event = self._build_event(data)
            if not payment_event.order_id and not payment_event.order_number:
                logger.error("No order ID found in Paystack webhook",
                             extra={'extra_fields': {'reference': data.get("reference")}})
                raise MissingOrderReference()
            return payment_event

        if event_type == FAILED_EVENT:
            logger.info("Paystack payment failed",
                        extra={'extra_fields': {'order_id': _metadata(data).get("orderId"),
                                                'reference': data.get("reference")}})
        else:
            logger.info(f"Unhandled Paystack event type: {event_type}")
        return None

    def verify_reference(self, reference: str, order_number: Optional[str] = None) -> VerificationOutcome:
        body = self._fetch_transaction(reference)
        if not body.get("status"):
            logger.error("Paystack verification failed",
                         extra={'extra_fields': {'reference': reference, 'message': body.get("message")}})
            raise GatewayVerificationFailed()

        data = body.get("data") or {}
        status = data.get("status")
        if status != "success":
            return VerificationOutcome(paid=False, status=status)

        event = self._build_event(data, reference=reference, fallback_order_number=order_number,
                                  verified_via_api=True)
        return VerificationOutcome(paid=True, status=status, event=event)

    def _fetch_transaction(self, reference: str) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.get(f"/transaction/verify/{reference}", headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Paystack request failed: {e}")
            raise GatewayUnavailable()
        if response.status_code >= 500:
            raise GatewayUnavailable()
        try:
            return response.json()
        except ValueError:
            raise GatewayUnavailable("Unreadable response from Paystack")

    def _build_event(self, data: Dict[str, Any], reference: Optional[str] = None,
                     fallback_order_number: Optional[str] = None,
                     verified_via_api: bool = False) -> PaymentEvent:
        metadata = _metadata(data)
        reference = reference or data.get("reference")
        extra = {
            "paystackReference": reference,
            "paystackTransactionId": data.get("id"),
            "channel": data.get("channel"),
            "paidAt": data.get("paid_at"),
            "authorizationCode": (data.get("authorization") or {}).get("authorization_code"),
        }
        if verified_via_api:
            extra["verifiedViaAPI"] = True
        return PaymentEvent(
            provider=PROVIDER,
            reference=reference,
            order_id=metadata.get("orderId"),
            order_number=metadata.get("orderNumber") or fallback_order_number,
            amount=to_major_units(data.get("amount")),
            currency=data.get("currency"),
            raw_status=data.get("status"),
            metadata={k: v for k, v in extra.items() if v is not None},
        )
