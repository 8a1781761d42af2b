"""Payment gateway capability interface.

A gateway authenticates its webhook deliveries, turns the events this service
acts on into a `PaymentEvent`, and can be asked synchronously whether a
reference was paid. The confirmation workflow only ever sees `PaymentEvent`.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from storefront.domain.events import PaymentEvent


@dataclass(frozen=True)
class VerificationOutcome:
    paid: bool
    status: Optional[str]
    event: Optional[PaymentEvent] = None


class PaymentGateway(ABC):
    provider: str
    signature_header: str

    @abstractmethod
    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Return the parsed event, or raise InvalidSignature.

        Nothing in the body may be trusted before this returns.
        """

    @abstractmethod
    def normalize_event(self, event: Dict[str, Any]) -> Optional[PaymentEvent]:
        """PaymentEvent for a successful charge, None for anything else.

        Raises MissingOrderReference when a successful charge carries neither
        an order id nor an order number.
        """

    @abstractmethod
    def verify_reference(self, reference: str, order_number: Optional[str] = None) -> VerificationOutcome:
        """Ask the gateway for the state of `reference`.

        `order_number` is used to resolve the order when the gateway record
        has no order id of its own.
        """
