from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from shared.core import set_request_context
from storefront.application.auth import AdminContext, AuthService
from storefront.core_settings import get_settings
from storefront.infrastructure.db import get_db
from storefront.infrastructure.paystack_gateway import PaystackGateway
from storefront.infrastructure.rate_limit import RateLimiter, client_ip
from storefront.infrastructure.stripe_gateway import StripeGateway

BEARER_PREFIX = "Bearer "


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        timeout=settings.GATEWAY_TIMEOUT_SEC,
    )


@lru_cache
def get_paystack_gateway() -> PaystackGateway:
    settings = get_settings()
    return PaystackGateway(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SEC,
    )


@lru_cache
def get_login_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        max_requests=settings.LOGIN_RATE_LIMIT_MAX,
        window_seconds=settings.LOGIN_RATE_LIMIT_WINDOW_SEC,
    )


def request_ip(request: Request) -> str:
    fallback = request.client.host if request.client else "unknown"
    return client_ip(request.headers, fallback=fallback)


def require_admin(request: Request, db: Session = Depends(get_db)) -> AdminContext:
    auth_header = request.headers.get("Authorization")
    token = None
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        token = auth_header.split(" ", 1)[1]

    auth = AuthService(db)
    user = auth.require_admin(auth.authenticate(token))
    set_request_context(user_id=user.id)
    return AdminContext(
        user=user,
        ip_address=request_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
