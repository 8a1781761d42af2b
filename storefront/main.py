"""
Storefront service
Payment confirmation (Stripe, Paystack), admin order management and login.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from contextlib import asynccontextmanager
import math
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from storefront.api.admin import router as admin_router
from storefront.api.auth import router as auth_router
from storefront.api.payments import router as payments_router
from storefront.core_settings import get_settings
from storefront.domain.errors import RateLimited, StorefrontError
from storefront.infrastructure.db import get_engine, init_models

settings = get_settings()

SERVICE_NAME = settings.SERVICE_NAME
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "Storefront payments, orders and admin back-office"

setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")
    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise
    for name, value in (("STRIPE_WEBHOOK_SECRET", settings.STRIPE_WEBHOOK_SECRET),
                        ("PAYSTACK_SECRET_KEY", settings.PAYSTACK_SECRET_KEY)):
        if not value:
            logger.warning(f"{name} is not set; matching webhooks will be rejected")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(math.ceil(exc.retry_after))}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


health_service = ServiceHealth(SERVICE_NAME, SERVICE_VERSION, engine_factory=get_engine)
app.include_router(health_service.create_health_router())

app.include_router(payments_router)
app.include_router(admin_router)
app.include_router(auth_router)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }


@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "stripe_webhook": "/api/webhooks/stripe",
            "paystack_webhook": "/api/webhooks/paystack",
        }
    }
