"""
Audit event categories emitted by the security runtime.
"""

from enum import Enum


class SecurityEventCategory(str, Enum):
    SUSPICIOUS_ACTIVITY = 'SUSPICIOUS_ACTIVITY'
    RATE_LIMIT_ALERT = 'RATE_LIMIT_ALERT'


class LoginResult(str, Enum):
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'
