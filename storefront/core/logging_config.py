"""
Structured JSON logging for the storefront service.

Every record carries the service identity, the request and correlation ids
of the HTTP request that produced it and, once known, the order number being
worked on, so a checkout can be followed from order creation through the
gateway handoff to payment verification.
"""

import json
import logging
import re
import sys
import time
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional, TextIO

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
order_number_var: ContextVar[Optional[str]] = ContextVar('order_number', default=None)

NOISY_LOGGERS = ('uvicorn.access', 'httpx', 'httpcore', 'sqlalchemy.engine')


def current_context() -> Dict[str, str]:
    context = {
        "request_id": request_id_var.get(),
        "correlation_id": correlation_id_var.get(),
        "order_number": order_number_var.get(),
    }
    return {k: v for k, v in context.items() if v}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line"""

    def __init__(self, service: str, environment: str, version: str):
        super().__init__()
        self.identity = {"service": service, "environment": environment, "version": version}

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "@timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self.identity,
        }

        context = getattr(record, 'context', None) or current_context()
        if context:
            log_obj["trace"] = context

        if record.levelno >= logging.WARNING:
            log_obj["location"] = {"module": record.module, "function": record.funcName, "line": record.lineno}

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            log_obj["custom"] = extra_fields

        return json.dumps(log_obj, default=str)


class SecurityFilter(logging.Filter):
    """Redacts credentials and payment signatures from messages and custom fields"""

    SENSITIVE_FIELDS = (
        'password', 'token', 'api_key', 'secret', 'signature',
        'authorization', 'cookie', 'key_secret',
    )
    _PATTERN = re.compile(
        r"(?i)\b(" + "|".join(SENSITIVE_FIELDS) + r")\b(\s*[=:]\s*)(\S+)"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self._PATTERN.sub(r"\1\2***REDACTED***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None

        extra_fields = getattr(record, 'extra_fields', None)
        if isinstance(extra_fields, dict):
            record.extra_fields = {
                k: ("***REDACTED***" if any(s in k.lower() for s in self.SENSITIVE_FIELDS) else v)
                for k, v in extra_fields.items()
            }
        return True


def setup_logging(
    service_name: str,
    level: str = "INFO",
    environment: str = "development",
    version: str = "1.0.0",
    stream: Optional[TextIO] = None,
) -> None:
    """
    Route every logger through one JSON handler on stdout.

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Deployment environment reported in every record
        version: Service version reported in every record
        stream: Output stream, stdout when omitted
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter(service_name, environment, version))
    handler.addFilter(SecurityFilter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'environment': environment}}
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Pins the request context at call time.

    Background tasks run after the response is sent; the snapshot keeps
    their records tied to the request that scheduled them.
    """

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra.setdefault('context', current_context())
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str) -> LoggerAdapter:
    return LoggerAdapter(logging.getLogger(name), {})


def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    order_number: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if order_number:
        order_number_var.set(order_number)


def generate_request_id() -> str:
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One record per request with status and duration. The request id is
    taken from X-Request-ID when the caller sends one and echoed back.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        request_id_var.set(request_id)
        correlation_id_var.set(request.headers.get('X-Correlation-ID'))
        order_number_var.set(None)

        logger = get_logger(__name__)
        fields = {
            'method': request.method,
            'path': request.url.path,
            'client_host': request.client.host if request.client else None,
        }
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            fields['duration_ms'] = round((time.perf_counter() - start) * 1000, 2)
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': fields}
            )
            raise

        fields['status_code'] = response.status_code
        fields['duration_ms'] = round((time.perf_counter() - start) * 1000, 2)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={'extra_fields': fields}
        )

        response.headers['X-Request-ID'] = request_id
        return response
