"""
Sliding window rate limiting on the shared state store.
"""

import logging
import math
import uuid
from datetime import datetime
from typing import Callable

from ..models.rate_limit import RateLimitResult
from .state_store import StateStore

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """
    Sliding window rate limiting algorithm implementation.

    Each admitted request is one sorted-set entry scored by its arrival time
    in milliseconds. Entries carry a random member so that requests arriving
    in the same millisecond are still counted separately.
    """

    def __init__(self, store: StateStore, clock: Callable[[], datetime]):
        self.store = store
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)

    def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """
        Check and consume one request against a sliding window.

        Args:
            key: Store key of the window
            limit: Maximum requests per window
            window_seconds: Time window in seconds

        Returns:
            RateLimitResult object

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        now_ms = self._now_ms()
        hit = self.store.sliding_window_hit(key, limit, window_seconds, now_ms, uuid.uuid4().hex)

        retry_after = None
        if not hit.admitted:
            reset_ms = (hit.oldest_ms if hit.oldest_ms is not None else now_ms) + window_seconds * 1000
            retry_after = max(1, math.ceil((reset_ms - now_ms) / 1000))

        return RateLimitResult(
            allowed=hit.admitted,
            limit=hit.limit,
            current_count=hit.count,
            remaining=max(0, hit.limit - hit.count),
            retry_after=retry_after,
        )

    def get_count(self, key: str, window_seconds: int) -> int:
        """Count requests in the current window without recording one."""
        return self.store.sliding_window_count(key, window_seconds, self._now_ms())

    def reset(self, key: str) -> bool:
        return self.store.delete(key) > 0
