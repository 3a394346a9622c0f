"""
Per-user request limits for the coach API.

Independent of the AI gateway cooldown: this protects the API from a single
caller, the gateway protects the upstream provider from the whole process.
"""

import time
from collections import defaultdict
from typing import Callable, Dict, Optional

from fastapi import Request

from coach.api_exceptions import RateLimitError

SWEEP_INTERVAL_S = 300


class RateLimiter:
    """
    Token bucket rate limiter keyed by user id (or client IP) and endpoint.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        # {caller_key: {endpoint: (tokens, last_refill_time), ...}, ...}
        self.buckets: Dict[str, Dict[str, tuple[float, float]]] = defaultdict(dict)
        self._clock = clock
        self._last_sweep = clock()

        # (requests_per_period, period_seconds)
        self.limits = {
            "/api/recommendations": (20, 3600),
            "/api/chat":            (30, 3600),
            "/api/food/analyze":    (30, 3600),
            "/api/behavior":        (60, 3600),
            "/api/feedback":        (60, 3600),
            "default":              (100, 3600),
        }

    def set_limit(self, endpoint: str, requests_per_period: int, period_seconds: int):
        """Configure rate limit for an endpoint."""
        self.limits[endpoint] = (requests_per_period, period_seconds)

    def get_caller_key(self, request: Request, user_id: Optional[str] = None) -> str:
        if user_id:
            return f"user:{user_id}"
        ip = request.client.host if request.client else "unknown"
        return f"ip:{ip}"

    def is_allowed(
        self,
        request: Request,
        endpoint: str,
        user_id: Optional[str] = None,
    ) -> tuple[bool, int]:
        """
        Take one token from the caller's bucket.

        Returns:
            (is_allowed, retry_after_seconds)
        """
        key = self.get_caller_key(request, user_id)
        limit, period = self.limits.get(endpoint, self.limits["default"])

        now = self._clock()
        if now - self._last_sweep >= SWEEP_INTERVAL_S:
            self._sweep(now)
        bucket = self.buckets[key]
        if endpoint not in bucket:
            bucket[endpoint] = (limit, now)

        tokens, last_refill = bucket[endpoint]
        refill_rate = limit / period
        tokens = min(limit, tokens + (now - last_refill) * refill_rate)

        if tokens >= 1:
            bucket[endpoint] = (tokens - 1, now)
            return True, 0

        bucket[endpoint] = (tokens, now)
        retry_after = int((1 - tokens) / refill_rate) + 1
        return False, retry_after

    def _sweep(self, now: float) -> None:
        """Forget buckets that have refilled to the limit; they hold no state."""
        for key in list(self.buckets):
            bucket = self.buckets[key]
            for endpoint, (tokens, last_refill) in list(bucket.items()):
                limit, period = self.limits.get(endpoint, self.limits["default"])
                if tokens + (now - last_refill) * limit / period >= limit:
                    del bucket[endpoint]
            if not bucket:
                del self.buckets[key]
        self._last_sweep = now

    def check_rate_limit(
        self,
        request: Request,
        endpoint: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Raise RateLimitError when the caller is over its limit."""
        allowed, retry_after = self.is_allowed(request, endpoint, user_id)
        if not allowed:
            raise RateLimitError(retry_after=retry_after)
