from collections.abc import Callable

import structlog
from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from onetime.database import get_db
from onetime.errors import RateLimited
from onetime.middleware.rate_limit import get_client_identifier
from onetime.services.rate_limiter import RateLimiter, RateLimitRule
from onetime.services.secret_service import SecretLifecycle
from onetime.services.secret_store import SecretStore

logger = structlog.get_logger()

CREATE_BUCKET = "create"
VIEW_BUCKET = "view"


def get_lifecycle(request: Request, db: Session = Depends(get_db)) -> SecretLifecycle:
    state = request.app.state
    return SecretLifecycle(
        SecretStore(db),
        state.crypto,
        site_url=state.settings.site_url,
        limits=state.secret_limits,
        clock=state.clock,
    )


def rate_limit(bucket: str) -> Callable[[Request, Response], None]:
    """Build a dependency that counts the request against one rate-limit bucket."""

    def check(request: Request, response: Response) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        rule: RateLimitRule = request.app.state.rate_limit_rules[bucket]

        result = limiter.check_rule(get_client_identifier(request), rule)
        if not result.allowed:
            logger.warning("rate_limited", bucket=bucket)
            raise RateLimited(remaining=result.remaining, reset_at=result.reset_at)

        request.state.rate_limit_remaining = result.remaining
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)

    return check
