from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PaymentEvent:
    """Provider-neutral view of a gateway callback or verify response.

    Built per request and discarded once the confirmation workflow has run.
    `metadata` holds whatever extra fields the provider reports (channel,
    paid-at, transaction ids) and ends up in `orders.payment_metadata`.
    """
    provider: str
    reference: Optional[str]
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    raw_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def audit_metadata(self) -> Dict[str, Any]:
        audit = {
            "provider": self.provider,
            "reference": self.reference,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.raw_status,
        }
        audit.update(self.metadata)
        return {k: v for k, v in audit.items() if v is not None}
