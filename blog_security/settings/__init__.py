"""
Settings package for the blog security runtime.
"""

from .base import (
    AlertSettings,
    AuditSettings,
    RateLimitPolicy,
    RateLimitScope,
    RateLimitSettings,
    RedisSettings,
    SecurityRuntimeSettings,
    SessionSettings,
)

__all__ = [
    'AlertSettings',
    'AuditSettings',
    'RateLimitPolicy',
    'RateLimitScope',
    'RateLimitSettings',
    'RedisSettings',
    'SecurityRuntimeSettings',
    'SessionSettings',
]
