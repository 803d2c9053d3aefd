"""
Request logging middleware with correlation ID support.

Generates a unique correlation ID for each request, binds it to the structlog
context, and logs request start/completion with timing information.

Privacy: the raw URL path embeds secret keys, so only the matched route
template (e.g. /api/v1/secrets/{key}) is logged. IPs, headers and bodies are
never logged.
"""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate an 8-character correlation ID."""
    return secrets.token_hex(4)


def route_template(request: Request) -> str:
    """Return the matched route pattern, available once routing has run."""
    route = request.scope.get("route")
    return getattr(route, "path_format", None) or "<unmatched>"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs:
    - request_started: method, correlation_id
    - request_completed: method, route, status_code, duration_ms, correlation_id
    - request_failed: method, route, error_type, duration_ms, correlation_id
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = generate_correlation_id()
        start_time = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger = structlog.get_logger()
        logger.info("request_started", method=request.method)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                method=request.method,
                route=route_template(request),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request_completed",
            method=request.method,
            route=route_template(request),
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
