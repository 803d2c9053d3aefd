from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine, inspect

from onetime.config import Settings, get_settings
from onetime.database import Base, build_engine, build_session_factory
from onetime.dependencies import CREATE_BUCKET, VIEW_BUCKET
from onetime.errors import (
    PassphraseError,
    RateLimited,
    SecretServiceError,
    SecretValidationError,
)
from onetime.logging_config import setup_logging
from onetime.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from onetime.models.secret import utcnow
from onetime.routers import secrets
from onetime.scheduler import build_scheduler, shutdown_scheduler, start_scheduler
from onetime.services.crypto import CryptoEngine
from onetime.services.rate_limiter import RateLimiter, RateLimitRule
from onetime.services.secret_service import SecretLimits

logger = structlog.get_logger()

# Database tables are managed by Alembic migrations
# Run: alembic upgrade head
REQUIRED_TABLES = frozenset(table.name for table in Base.metadata.sorted_tables)


def check_database_tables(engine: Engine) -> None:
    """Refuse to start when migrations have not been applied."""
    existing = set(inspect(engine).get_table_names())
    missing = sorted(REQUIRED_TABLES - existing)
    if missing:
        raise RuntimeError(
            f"Database tables missing: {', '.join(missing)}. "
            "Run `alembic upgrade head` from the backend directory before starting."
        )


def _error_response(
    status_code: int, content: dict, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _quota_headers(request: Request) -> dict[str, str]:
    """Remaining-quota header for errors raised after the request was counted."""
    remaining = getattr(request.state, "rate_limit_remaining", None)
    if remaining is None:
        return {}
    return {"X-RateLimit-Remaining": str(remaining)}


async def secret_error_handler(request: Request, exc: SecretServiceError) -> JSONResponse:
    content: dict = {"success": False, "error": exc.message}
    headers = _quota_headers(request)

    if isinstance(exc, SecretValidationError):
        content["details"] = exc.details
    elif isinstance(exc, PassphraseError):
        content["needsPassphrase"] = True
    elif isinstance(exc, RateLimited):
        reset_at = datetime.fromtimestamp(exc.reset_at, tz=UTC)
        headers = {
            "X-RateLimit-Remaining": str(exc.remaining),
            "X-RateLimit-Reset": reset_at.isoformat().replace("+00:00", "Z"),
        }

    if exc.status_code >= 500:
        logger.error("request_error", error_type=type(exc).__name__, exc_info=exc)

    return _error_response(exc.status_code, content, headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return _error_response(
        400,
        {"success": False, "error": SecretValidationError.message, "details": details},
        _quota_headers(request),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler; internal detail stays in the logs."""
    logger.error("unhandled_exception", error_type=type(exc).__name__, exc_info=exc)
    headers = None
    correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    if correlation_id:
        headers = {CORRELATION_HEADER: correlation_id}
    return _error_response(
        500, {"success": False, "error": SecretServiceError.message}, headers
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Verify the schema, then start/stop the reaper."""
    settings: Settings = app.state.settings
    check_database_tables(app.state.engine)

    scheduler = None
    if settings.reaper_enabled:
        scheduler = build_scheduler(settings, app.state.session_factory, app.state.crypto)
        start_scheduler(scheduler, settings.reaper_interval_minutes)
    try:
        yield
    finally:
        if scheduler is not None:
            shutdown_scheduler(scheduler)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the application from one explicit settings object.

    Run with: uvicorn onetime.main:create_app --factory
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="OneTimeSecret",
        description="Share secrets through links that self-destruct after viewing",
        version="0.1.0",
        lifespan=lifespan,
    )

    engine = build_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.crypto = CryptoEngine.from_settings(settings)
    app.state.secret_limits = SecretLimits.from_settings(settings)
    app.state.clock = utcnow
    app.state.rate_limiter = RateLimiter.from_settings(settings)
    app.state.rate_limit_rules = {
        CREATE_BUCKET: RateLimitRule(
            settings.rate_limit_create_requests, settings.rate_limit_create_window_ms
        ),
        VIEW_BUCKET: RateLimitRule(
            settings.rate_limit_view_requests, settings.rate_limit_view_window_ms
        ),
    }

    app.add_exception_handler(SecretServiceError, secret_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Logging (adds correlation IDs)
    app.add_middleware(LoggingMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(secrets.router, prefix="/api/v1", tags=["secrets"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
