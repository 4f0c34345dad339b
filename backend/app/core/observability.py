"""
Observability helpers.

Adds correlation IDs and structured logging context to requests,
and configures the `zapshift` logger hierarchy.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Configure structured logger
logger = logging.getLogger("zapshift.http")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the `zapshift` logger tree (idempotent)."""
    root = logging.getLogger("zapshift")
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def request_context(request: Request) -> dict:
    """Payment identifiers carried by the request, for log correlation."""
    context = {}
    session_id = request.query_params.get("session_id")
    if session_id:
        context["session_id"] = session_id
    customer_email = request.query_params.get("customer_email")
    if customer_email:
        context["customer_email"] = customer_email
    return context


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # Correlation ID ties request logs to reconciliation and gateway logs
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "ip": request.client.host if request.client else "unknown",
            **request_context(request),
        }

        # Log level based on status
        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected", extra=log_data)
        else:
            logger.info("Request served", extra=log_data)

        return response
