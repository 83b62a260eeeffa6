"""Tests for the fixed-window rate limiter."""
from __future__ import annotations

import pytest

from vision_coach.errors import AgentError
from vision_coach.ratelimit import RATE_LIMITS, RateLimitConfig, RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    def test_counts_down_then_blocks(self):
        limiter = RateLimiter(clock=FakeClock())
        config = RateLimitConfig(max_requests=2, window_seconds=60, key_type="user")

        first = limiter.check("u1", config)
        second = limiter.check("u1", config)
        third = limiter.check("u1", config)

        assert (first.allowed, first.remaining) == (True, 1)
        assert (second.allowed, second.remaining) == (True, 0)
        assert third.allowed is False
        assert third.reset_in == 60

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=1, window_seconds=60, key_type="user")
        limiter.check("u1", config)

        clock.now += 61

        assert limiter.check("u1", config).allowed is True

    def test_keys_are_scoped_by_type(self):
        limiter = RateLimiter(clock=FakeClock())
        by_user = RateLimitConfig(max_requests=1, window_seconds=60, key_type="user")
        by_ip = RateLimitConfig(max_requests=1, window_seconds=60, key_type="ip")

        limiter.check("same", by_user)

        assert limiter.check("same", by_ip).allowed is True
        assert limiter.check("other", by_user).allowed is True

    def test_enforce_raises_rate_limited(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(RATE_LIMITS["auth"].max_requests):
            limiter.enforce("1.2.3.4", "auth")

        clock.now += 10
        with pytest.raises(AgentError) as excinfo:
            limiter.enforce("1.2.3.4", "auth")

        assert excinfo.value.code == "RATE_LIMITED"
        assert excinfo.value.context["retryAfter"] == 290

    def test_headers_and_reset(self):
        limiter = RateLimiter(clock=FakeClock())
        result = limiter.enforce("u1")

        assert result.headers() == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "99",
            "X-RateLimit-Reset": "60",
        }

        limiter.reset()
        assert limiter.enforce("u1").remaining == 99

    def test_expired_windows_are_pruned(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        config = RateLimitConfig(max_requests=5, window_seconds=60, key_type="user")
        for user in ("u1", "u2", "u3"):
            limiter.check(user, config)

        clock.now += 120
        limiter.check("u4", config)

        assert list(limiter._windows) == ["user:u4"]
