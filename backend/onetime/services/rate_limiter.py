"""
Fixed-window request counting per client identifier.

Counters live in the slowapi limiter's storage: process memory by default,
or a shared backend such as Redis when RATE_LIMIT_STORAGE_URI points at one,
which is what multi-instance deployments need.
"""

import math
import time
from dataclasses import dataclass

from limits import RateLimitItemPerSecond
from slowapi import Limiter

from onetime.config import Settings
from onetime.middleware.rate_limit import get_client_identifier


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    max_requests: int
    window_ms: int


class RateLimiter:
    def __init__(self, limiter: Limiter):
        self._limiter = limiter

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        limiter = Limiter(
            key_func=get_client_identifier,
            strategy="fixed-window",
            storage_uri=settings.rate_limit_storage_uri,
            enabled=settings.rate_limit_enabled,
        )
        return cls(limiter)

    @property
    def enabled(self) -> bool:
        return self._limiter.enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._limiter.enabled = value

    def check(self, identifier: str, max_requests: int, window_ms: int) -> RateLimitResult:
        """
        Count one request for identifier and report whether it is allowed.

        The first request of a window starts it; the window resets lazily once
        its reset time has passed.
        """
        window_seconds = max(1, math.ceil(window_ms / 1000))
        item = RateLimitItemPerSecond(max_requests, window_seconds)

        if not self._limiter.enabled:
            return RateLimitResult(
                allowed=True, remaining=max_requests, reset_at=time.time() + window_seconds
            )

        strategy = self._limiter.limiter
        allowed = strategy.hit(item, identifier)
        reset_at, remaining = strategy.get_window_stats(item, identifier)
        return RateLimitResult(allowed=allowed, remaining=max(0, remaining), reset_at=reset_at)

    def check_rule(self, identifier: str, rule: RateLimitRule) -> RateLimitResult:
        return self.check(identifier, rule.max_requests, rule.window_ms)

    def reset(self) -> None:
        """Forget every counter."""
        self._limiter.reset()
