"""Tests for the fixed-window rate limiter and client identification."""

import time

import pytest
from starlette.requests import Request

from onetime.middleware.rate_limit import get_client_identifier
from onetime.services.rate_limiter import RateLimiter
from tests.test_utils import make_settings


@pytest.fixture
def limiter():
    limiter = RateLimiter.from_settings(make_settings())
    yield limiter
    limiter.reset()


class TestRateLimiter:
    def test_allows_up_to_limit_then_rejects(self, limiter):
        results = [limiter.check("10.0.0.1", 3, 60_000) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]

    def test_reset_time_is_window_from_first_request(self, limiter):
        before = time.time()
        first = limiter.check("10.0.0.1", 3, 60_000)
        second = limiter.check("10.0.0.1", 3, 60_000)

        assert before + 59 <= first.reset_at <= time.time() + 61
        assert second.reset_at == pytest.approx(first.reset_at, abs=1)

    def test_identifiers_are_independent(self, limiter):
        limiter.check("10.0.0.1", 1, 60_000)

        assert not limiter.check("10.0.0.1", 1, 60_000).allowed
        assert limiter.check("10.0.0.2", 1, 60_000).allowed

    def test_window_resets_after_elapsing(self, limiter):
        assert limiter.check("10.0.0.1", 1, 1_000).allowed
        assert not limiter.check("10.0.0.1", 1, 1_000).allowed

        time.sleep(1.2)

        assert limiter.check("10.0.0.1", 1, 1_000).allowed

    def test_reset_clears_counters(self, limiter):
        limiter.check("10.0.0.1", 1, 60_000)
        limiter.reset()

        assert limiter.check("10.0.0.1", 1, 60_000).allowed

    def test_disabled_limiter_allows_everything(self):
        limiter = RateLimiter.from_settings(make_settings(rate_limit_enabled=False))

        assert all(limiter.check("10.0.0.1", 1, 60_000).allowed for _ in range(5))


def make_request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("192.168.1.1", 5000),
    }
    return Request(scope)


class TestClientIdentifier:
    def test_forwarded_for_first_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "1.1.1.1"})
        assert get_client_identifier(request) == "203.0.113.7"

    def test_real_ip_fallback(self):
        assert get_client_identifier(make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_unknown_sentinel(self):
        # The socket peer is deliberately not used
        assert get_client_identifier(make_request({})) == "unknown"
