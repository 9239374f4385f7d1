"""Structured request logging middleware.

Logs every request with:
- method, path, status_code, duration_ms
- staff_id (from the X-Staff-Id header, if present)
- request_id (incoming X-Request-ID or a fresh UUID, echoed on the response)

Uses structlog for structured JSON logging in production and
human-readable console output in development.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.dealreg.config import Environment, get_settings

logger = structlog.get_logger(__name__)


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(message)s")

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs every request with staff context and timing.

    Binds request_id into structlog contextvars so engine log lines emitted
    while handling the request carry it too.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        staff_id = request.headers.get("X-Staff-Id")
        start_time = time.monotonic()

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = round((time.monotonic() - start_time) * 1000, 2)
                logger.error(
                    "request_error",
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=duration_ms,
                    staff_id=staff_id,
                )
                raise

            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            response.headers["X-Request-ID"] = request_id

            log_method = logger.info if response.status_code < 400 else logger.warning
            if response.status_code >= 500:
                log_method = logger.error

            log_method(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                staff_id=staff_id,
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
