import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_stripe"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack"
os.environ["JWT_SECRET"] = "test-jwt-secret"

import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.api.deps import get_login_limiter
from storefront.domain.models import Base, Cart, CartItem, Order, OrderItem, Product, User
from storefront.infrastructure.db import get_db
from storefront.infrastructure.rate_limit import RateLimiter
from storefront.infrastructure.security import create_access_token, hash_password
from storefront.main import app

PAYSTACK_SECRET = os.environ["PAYSTACK_SECRET_KEY"]
STRIPE_WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'storefront.db'}",
                           connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def login_limiter():
    return RateLimiter(max_requests=3, window_seconds=60)


@pytest.fixture
def client(session_factory, login_limiter):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_login_limiter] = lambda: login_limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="admin@dehair.test", password="s3cret-pass", role="ADMIN"):
        user = User(email=email, full_name=email.split("@")[0],
                    password_hash=hash_password(password), role=role)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def admin_headers(make_user):
    user = make_user()
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def make_product(db):
    def _make(name="Vietnamese Bone Straight 20in", stock=5, track=True, price=Decimal("150000.00")):
        product = Product(name=name, price=price, stock_quantity=stock, track_inventory=track)
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def make_order(db, make_product):
    def _make(order_number="DV-1001", user_id=None, session_id="sess-guest-1",
              status="PENDING", payment_status="unpaid", quantity=1, product=None, **fields):
        product = product or make_product()
        order = Order(
            order_number=order_number,
            user_id=user_id,
            session_id=session_id,
            status=status,
            payment_status=payment_status,
            customer_name=fields.pop("customer_name", "Ada Obi"),
            customer_email=fields.pop("customer_email", "ada@example.com"),
            total=Decimal("150000.00") * quantity,
            **fields,
        )
        order.items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price=product.price,
            total_price=product.price * quantity,
        ))
        db.add(order)
        db.commit()
        return order
    return _make


@pytest.fixture
def make_cart(db, make_product):
    def _make(session_id="sess-guest-1", user_id=None, items=2):
        product = make_product(name="Closure 5x5", track=False)
        cart = Cart(session_id=session_id, user_id=user_id)
        for _ in range(items):
            cart.items.append(CartItem(product_id=product.id, quantity=1, unit_price=product.price))
        db.add(cart)
        db.commit()
        return cart
    return _make


def paystack_signature(body: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def stripe_signature(body: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{body.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def paystack_charge(order, reference="REF123", amount=150000, event="charge.success", metadata=None):
    payload = {
        "event": event,
        "data": {
            "id": 4099260516,
            "status": "success" if event == "charge.success" else "failed",
            "reference": reference,
            "amount": amount,
            "currency": "NGN",
            "channel": "card",
            "paid_at": "2026-10-19T10:15:00.000Z",
            "authorization": {"authorization_code": "AUTH_8dfhjjdt"},
            "metadata": metadata if metadata is not None else {
                "orderId": order.id, "orderNumber": order.order_number,
            },
        },
    }
    return json.dumps(payload).encode()


def stripe_session(order=None, event_type="checkout.session.completed", payment_status="paid", **overrides):
    session = {
        "id": "cs_test_a1b2c3",
        "object": "checkout.session",
        "client_reference_id": order.id if order else None,
        "payment_intent": "pi_3Nabc123",
        "payment_status": payment_status,
        "amount_total": 15000000,
        "currency": "ngn",
        "metadata": {"orderNumber": order.order_number} if order else {},
    }
    session.update(overrides)
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": session}}).encode()
