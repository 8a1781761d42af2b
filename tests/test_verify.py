import httpx
import pytest
import stripe

from conftest import PAYSTACK_SECRET, STRIPE_WEBHOOK_SECRET
from storefront.api.deps import get_paystack_gateway, get_stripe_gateway
from storefront.domain.errors import GatewayUnavailable, GatewayVerificationFailed
from storefront.domain.models import Order
from storefront.infrastructure.paystack_gateway import PaystackGateway, to_major_units
from storefront.infrastructure.stripe_gateway import StripeGateway
from storefront.main import app


def stored(session_factory, order_id):
    session = session_factory()
    try:
        return session.get(Order, order_id)
    finally:
        session.close()


def paystack_transaction(order=None, status="success", amount=150000, metadata=None):
    return {
        "status": True,
        "message": "Verification successful",
        "data": {
            "id": 4099260516,
            "status": status,
            "reference": "REF123",
            "amount": amount,
            "currency": "NGN",
            "channel": "card",
            "paid_at": "2026-10-19T10:15:00.000Z",
            "metadata": metadata if metadata is not None else {"orderId": order.id},
        },
    }


def paystack_with(handler):
    return PaystackGateway(PAYSTACK_SECRET, transport=httpx.MockTransport(handler))


@pytest.fixture
def use_paystack(client):
    def _use(handler):
        app.dependency_overrides[get_paystack_gateway] = lambda: paystack_with(handler)
    return _use


class FakeStripeGateway(StripeGateway):
    def __init__(self, session=None, error=None):
        super().__init__("sk_test_stripe", STRIPE_WEBHOOK_SECRET)
        self.session = session
        self.error = error
        self.retrieved = []

    def _retrieve_session(self, session_id):
        self.retrieved.append(session_id)
        if self.error:
            raise self.error
        return self.session


@pytest.fixture
def use_stripe(client):
    def _use(gateway):
        app.dependency_overrides[get_stripe_gateway] = lambda: gateway
        return gateway
    return _use


def checkout_session(order=None, payment_status="paid", **overrides):
    session = {
        "id": "cs_test_a1b2c3",
        "client_reference_id": order.id if order else None,
        "payment_intent": "pi_3Nabc123",
        "payment_status": payment_status,
        "amount_total": 15000000,
        "currency": "ngn",
        "metadata": {"orderNumber": order.order_number} if order else {},
    }
    session.update(overrides)
    return session


def test_paystack_verify_confirms_order(client, session_factory, make_order, use_paystack):
    order = make_order()
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=paystack_transaction(order))

    use_paystack(handler)
    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123"})

    assert resp.status_code == 200
    assert resp.json() == {"verified": True, "message": "Payment verified and order confirmed"}
    assert seen[0].url.path == "/transaction/verify/REF123"
    assert seen[0].headers["Authorization"] == f"Bearer {PAYSTACK_SECRET}"
    confirmed = stored(session_factory, order.id)
    assert (confirmed.status, confirmed.payment_status) == ("CONFIRMED", "paid")
    assert confirmed.payment_metadata["verifiedViaAPI"] is True
    assert confirmed.payment_metadata["amount"] == 1500.0


def test_paystack_verify_after_webhook(client, make_order, use_paystack):
    order = make_order(status="CONFIRMED", payment_status="paid", payment_reference="REF123")
    use_paystack(lambda request: httpx.Response(200, json=paystack_transaction(order)))

    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123"})

    assert resp.json() == {"verified": True, "alreadyProcessed": True, "message": "Order already confirmed"}


def test_paystack_verify_uses_order_number_hint(client, session_factory, make_order, use_paystack):
    order = make_order(order_number="DV-4410")
    use_paystack(lambda request: httpx.Response(200, json=paystack_transaction(metadata={})))

    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123", "orderNumber": "DV-4410"})

    assert resp.json()["verified"] is True
    assert stored(session_factory, order.id).payment_status == "paid"


def test_paystack_verify_abandoned_transaction(client, session_factory, make_order, use_paystack):
    order = make_order()
    use_paystack(lambda request: httpx.Response(200, json=paystack_transaction(order, status="abandoned")))

    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123"})

    assert resp.status_code == 200
    assert resp.json() == {"verified": False, "status": "abandoned", "message": "Payment was not successful"}
    assert stored(session_factory, order.id).payment_status == "unpaid"


def test_paystack_verify_rejected_reference(client, use_paystack):
    use_paystack(lambda request: httpx.Response(
        400, json={"status": False, "message": "Transaction reference not found"}))

    resp = client.post("/api/checkout/paystack/verify", json={"reference": "NOPE"})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Payment verification failed", "verified": False}


def test_paystack_verify_unknown_order(client, make_order, use_paystack):
    make_order()
    use_paystack(lambda request: httpx.Response(
        200, json=paystack_transaction(metadata={"orderId": "gone"})))

    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123"})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Could not find associated order", "verified": False}


def test_paystack_verify_requires_reference(client):
    resp = client.post("/api/checkout/paystack/verify", json={"orderNumber": "DV-1001"})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Payment reference is required", "verified": False}


def test_paystack_unreachable(client, use_paystack):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    use_paystack(handler)
    resp = client.post("/api/checkout/paystack/verify", json={"reference": "REF123"})

    assert resp.status_code == 502
    assert resp.json() == {"detail": "Payment gateway unavailable"}


def test_paystack_gateway_server_error_is_unavailable():
    gateway = paystack_with(lambda request: httpx.Response(503, text="upstream down"))

    with pytest.raises(GatewayUnavailable):
        gateway.verify_reference("REF123")


def test_minor_unit_conversion():
    assert to_major_units(150000) == 1500.0
    assert to_major_units(12345) == 123.45
    assert to_major_units(None) is None


def test_stripe_verify_confirms_order(client, session_factory, make_order, use_stripe):
    order = make_order(order_number="DV-3002")
    gateway = use_stripe(FakeStripeGateway(checkout_session(order)))

    resp = client.post("/api/checkout/stripe/verify", json={"sessionId": "cs_test_a1b2c3"})

    assert resp.status_code == 200
    assert resp.json() == {"verified": True, "message": "Payment verified and order confirmed"}
    assert gateway.retrieved == ["cs_test_a1b2c3"]
    confirmed = stored(session_factory, order.id)
    assert confirmed.payment_reference == "pi_3Nabc123"
    assert confirmed.payment_metadata["verifiedViaAPI"] is True


def test_stripe_verify_then_webhook_style_repeat(client, make_order, use_stripe):
    order = make_order()
    use_stripe(FakeStripeGateway(checkout_session(order)))

    client.post("/api/checkout/stripe/verify", json={"sessionId": "cs_test_a1b2c3"})
    resp = client.post("/api/checkout/stripe/verify", json={"sessionId": "cs_test_a1b2c3"})

    assert resp.json()["alreadyProcessed"] is True


def test_stripe_verify_unpaid_session_changes_nothing(client, session_factory, make_order, use_stripe):
    order = make_order()
    use_stripe(FakeStripeGateway(checkout_session(order, payment_status="unpaid")))

    resp = client.post("/api/checkout/stripe/verify", json={"sessionId": "cs_test_a1b2c3"})

    assert resp.json() == {"verified": False, "status": "unpaid", "message": "Payment was not successful"}
    assert stored(session_factory, order.id).payment_status == "unpaid"


def test_stripe_verify_session_without_order_uses_order_number(client, session_factory, make_order, use_stripe):
    order = make_order(order_number="DV-3003")
    use_stripe(FakeStripeGateway(checkout_session(client_reference_id=None)))

    resp = client.post("/api/checkout/stripe/verify",
                       json={"sessionId": "cs_test_a1b2c3", "orderNumber": "DV-3003"})

    assert resp.json()["verified"] is True
    assert stored(session_factory, order.id).status == "CONFIRMED"


def test_stripe_verify_rejected_session(client, use_stripe):
    use_stripe(FakeStripeGateway(error=GatewayVerificationFailed()))

    resp = client.post("/api/checkout/stripe/verify", json={"sessionId": "cs_bogus"})

    assert resp.status_code == 400
    assert resp.json()["verified"] is False


def test_stripe_verify_by_order_number_reports_state(client, make_order, use_stripe):
    gateway = use_stripe(FakeStripeGateway())
    make_order(order_number="DV-3004", status="CONFIRMED", payment_status="paid")
    make_order(order_number="DV-3005")

    paid = client.post("/api/checkout/stripe/verify", json={"orderNumber": "DV-3004"}).json()
    pending = client.post("/api/checkout/stripe/verify", json={"orderNumber": "DV-3005"}).json()

    assert paid == {"verified": True, "status": "CONFIRMED", "paymentStatus": "paid"}
    assert pending == {"verified": False, "status": "PENDING", "paymentStatus": "unpaid"}
    assert gateway.retrieved == []


def test_stripe_verify_unknown_order_number(client, use_stripe):
    use_stripe(FakeStripeGateway())

    resp = client.post("/api/checkout/stripe/verify", json={"orderNumber": "DV-0000"})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Could not verify payment", "verified": False}


def test_stripe_verify_requires_session_or_order(client):
    resp = client.post("/api/checkout/stripe/verify", json={})

    assert resp.status_code == 400
    assert resp.json() == {"detail": "Session ID or order number is required", "verified": False}


def test_stripe_gateway_keeps_sdk_globals_untouched():
    before = stripe.default_http_client

    gateway = StripeGateway("sk_test_stripe", STRIPE_WEBHOOK_SECRET, timeout=3.0)
    client = gateway.client()

    assert stripe.default_http_client is before
    assert client is gateway.client()
