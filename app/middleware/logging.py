"""Structured logging setup and per-request logging middleware."""

import logging
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings

# Event keys whose values must never reach the logs
REDACTED_KEYS = frozenset({"client_secret", "authorization", "stripe_secret_key", "token"})

# Health check endpoints only logged at debug level
QUIET_PATHS = frozenset({"/metrics", "/api/v1/health", "/api/v1/ping"})


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask payment and auth secrets before rendering."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_logging() -> None:
    """Configure structlog on top of the standard library logger."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with a correlation id."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """
        Log request and response details.

        Every log line emitted while handling the request carries the same
        ``request_id``, which is also echoed back in ``X-Request-ID``. Webhook
        redeliveries from the payment processor can be traced by it.

        Args:
            request: Request object
            call_next: Next middleware in chain

        Returns:
            Response object
        """
        logger = structlog.get_logger()
        path = request.url.path
        log = logger.debug if path in QUIET_PATHS else logger.info

        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        log(
            "request_started",
            method=request.method,
            path=path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=path,
                error=str(e),
                duration=time.perf_counter() - start_time,
            )
            raise

        duration = time.perf_counter() - start_time
        log(
            "request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration=round(duration, 4),
        )

        response.headers["X-Process-Time"] = str(duration)
        response.headers["X-Request-ID"] = request_id

        return response
