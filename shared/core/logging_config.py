"""
Structured logging configuration
JSON log lines with request context, shaped for log aggregators
(ELK, CloudWatch Insights, Datadog).
"""

import logging
import logging.handlers
import os
import sys
import json
import time
import traceback
from datetime import datetime
from typing import Any, Dict, Optional
from contextvars import ContextVar
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)


class StructuredFormatter(logging.Formatter):
    """Render every record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'storefront'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
        }

        trace_context = self._get_trace_context(record)
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "module": record.module
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str)

    def _get_trace_context(self, record: logging.LogRecord) -> Optional[Dict[str, Any]]:
        context = {}
        for key, var in (
            ("request_id", request_id_var),
            ("correlation_id", correlation_id_var),
            ("user_id", user_id_var),
        ):
            value = getattr(record, key, None) or var.get()
            if value:
                context[key] = value
        return context or None


class PerformanceFilter(logging.Filter):
    """Expose `duration` (seconds) as `duration_ms`."""

    def filter(self, record: logging.LogRecord) -> bool:
        if hasattr(record, 'duration'):
            record.duration_ms = record.duration * 1000
        return True


class SecurityFilter(logging.Filter):
    """Redact secrets that end up in structured extra fields."""

    SENSITIVE_FIELDS = (
        'password', 'token', 'api_key', 'secret',
        'authorization', 'cookie', 'signature',
    )
    REDACTED = "***REDACTED***"

    def filter(self, record: logging.LogRecord) -> bool:
        fields = getattr(record, 'extra_fields', None)
        if isinstance(fields, dict):
            record.extra_fields = self._redact(fields)
        return True

    def _redact(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {}
        for key, value in fields.items():
            if any(s in key.lower() for s in self.SENSITIVE_FIELDS):
                cleaned[key] = self.REDACTED
            elif isinstance(value, dict):
                cleaned[key] = self._redact(value)
            else:
                cleaned[key] = value
        return cleaned


# Third-party loggers that are noisy at INFO
QUIET_LIBRARIES = ('uvicorn.access', 'sqlalchemy.engine', 'stripe', 'httpx', 'httpcore')


def _handler(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(PerformanceFilter())
    handler.addFilter(SecurityFilter())
    return handler


def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Route the root logger through the JSON formatter.

    Args:
        service_name: Name reported in every log line
        level: Log level name; unknown names fall back to INFO
        enable_console: Write to stdout
        enable_file: Also write to a rotating `log_file`
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    if enable_console:
        root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout)))
    if enable_file and log_file:
        root_logger.addHandler(_handler(
            logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        ))

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Logging initialized",
                     extra={'extra_fields': {'service': service_name, 'level': level}})


class LoggerAdapter(logging.LoggerAdapter):
    """Copies the request context onto each record so handlers need no contextvar access."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        for key, value in request_context().items():
            extra.setdefault(key, value)
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})


def request_context() -> Dict[str, str]:
    context = {
        "request_id": request_id_var.get(),
        "correlation_id": correlation_id_var.get(),
        "user_id": user_id_var.get(),
    }
    return {k: v for k, v in context.items() if v}


def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None
) -> None:
    """Bind ids for the rest of the current request; None leaves a value untouched."""
    for var, value in ((request_id_var, request_id),
                       (correlation_id_var, correlation_id),
                       (user_id_var, user_id)):
        if value:
            var.set(value)


def generate_request_id() -> str:
    return uuid.uuid4().hex


# Probe traffic from the orchestrator, logged at DEBUG only
QUIET_PATHS = ("/health", "/health/live", "/health/ready", "/metrics")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One summary line per request, tagged with X-Request-ID (generated when absent)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(request_id=request_id,
                            correlation_id=request.headers.get('X-Correlation-ID'))
        logger = get_logger(__name__)
        path = request.url.path
        fields = {
            'method': request.method,
            'path': path,
            'client_host': request.client.host if request.client else None,
        }

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields['duration_ms'] = (time.perf_counter() - start_time) * 1000
            logger.error(f"{request.method} {path} raised", exc_info=True,
                         extra={'extra_fields': fields})
            raise

        fields['status_code'] = response.status_code
        fields['duration_ms'] = round((time.perf_counter() - start_time) * 1000, 2)
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        elif path in QUIET_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        logger.log(level, f"{request.method} {path} -> {response.status_code}",
                   extra={'extra_fields': fields})

        response.headers['X-Request-ID'] = request_id
        return response
