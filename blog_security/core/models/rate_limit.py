"""
Rate limiting result models.
"""

from dataclasses import dataclass
from typing import Optional

from ...settings.base import RateLimitScope


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one admit/deny decision."""
    allowed: bool
    limit: int
    current_count: int
    remaining: int
    retry_after: Optional[int] = None
    scope: RateLimitScope = RateLimitScope.IP
    endpoint: str = ''


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a rate limit window; never records a request."""
    identifier: str
    endpoint: str
    scope: RateLimitScope
    current_count: int
    limit: int
    window_size_seconds: int
    enabled: bool = True

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    @property
    def allowed(self) -> bool:
        return not self.enabled or self.current_count < self.limit
