"""
Services package for the blog security runtime.
"""

from .audit_service import AuditDispatcher, AuditSink, CeleryAuditSink, LoggingAuditSink
from .rate_limiting_service import RateLimitingService
from .session_service import SessionManager

__all__ = [
    'AuditDispatcher',
    'AuditSink',
    'CeleryAuditSink',
    'LoggingAuditSink',
    'RateLimitingService',
    'SessionManager',
]
