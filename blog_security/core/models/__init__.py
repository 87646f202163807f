"""
Core models package for the blog security runtime.
"""

from .audit import LoginResult, SecurityEventCategory
from .rate_limit import RateLimitResult, RateLimitStatus
from .session import (
    SessionActivityRecord,
    SessionActivityType,
    SessionInfo,
    SessionState,
    SessionStatistics,
    TerminationReason,
    UserIdentity,
)

__all__ = [
    'LoginResult',
    'SecurityEventCategory',
    'RateLimitResult',
    'RateLimitStatus',
    'SessionActivityRecord',
    'SessionActivityType',
    'SessionInfo',
    'SessionState',
    'SessionStatistics',
    'TerminationReason',
    'UserIdentity',
]
