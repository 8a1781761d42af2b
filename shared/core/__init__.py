"""Service plumbing: health/readiness probes and JSON request logging."""

from .health import HealthStatus, ServiceHealth
from .logging_config import (
    RequestLoggingMiddleware,
    get_logger,
    request_context,
    set_request_context,
    setup_logging,
)

__all__ = [
    "HealthStatus",
    "ServiceHealth",
    "RequestLoggingMiddleware",
    "get_logger",
    "request_context",
    "set_request_context",
    "setup_logging",
]
