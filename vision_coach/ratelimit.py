"""In-memory fixed-window rate limiting for the API."""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .errors import AgentErrors


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    key_type: str  # "user", "ip" or "endpoint"


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int
    limit: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }


# Expired windows are dropped at most this often.
PRUNE_INTERVAL_SECONDS = 60.0

RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "auth": RateLimitConfig(max_requests=5, window_seconds=300, key_type="ip"),
    "api": RateLimitConfig(max_requests=100, window_seconds=60, key_type="user"),
    "ai": RateLimitConfig(max_requests=20, window_seconds=60, key_type="user"),
    "admin": RateLimitConfig(max_requests=30, window_seconds=60, key_type="user"),
    "public": RateLimitConfig(max_requests=200, window_seconds=60, key_type="ip"),
}


class RateLimiter:
    """Counts requests per key in fixed windows.

    State lives in process memory, so limits are per instance and reset on
    restart.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._next_prune = 0.0

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = self._clock()
        store_key = f"{config.key_type}:{key}"
        with self._lock:
            if now >= self._next_prune:
                self._prune(now)
            count, reset_at = self._windows.get(store_key, (0, 0.0))
            if reset_at < now:
                count, reset_at = 0, now + config.window_seconds
            count += 1
            self._windows[store_key] = (count, reset_at)

        return RateLimitResult(
            allowed=count <= config.max_requests,
            remaining=max(0, config.max_requests - count),
            reset_in=math.ceil(reset_at - now),
            limit=config.max_requests,
        )

    def _prune(self, now: float) -> None:
        self._windows = {key: window for key, window in self._windows.items() if window[1] >= now}
        self._next_prune = now + PRUNE_INTERVAL_SECONDS

    def enforce(self, key: str, preset: str = "api") -> RateLimitResult:
        """Count a request and raise RATE_LIMITED once the window is full."""
        config = RATE_LIMITS[preset]
        result = self.check(key, config)
        if not result.allowed:
            raise AgentErrors.rate_limited(
                config.max_requests, config.window_seconds, retry_after=result.reset_in
            )
        return result

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_prune = 0.0
