"""
Structured logging for security and audit events.
"""

import logging
from typing import Optional

import structlog

from .utils.correlation import CorrelationIdFilter, get_correlation_id


def configure_structlog():
    """
    Configure structlog for structured logging.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_correlation_id,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging(level: str = 'INFO') -> None:
    """
    Configure stdlib logging and structlog for a worker or service process.

    Args:
        level: Root log level name
    """
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s'
    ))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    configure_structlog()


def add_correlation_id(logger, method_name, event_dict):
    """
    Add correlation ID to structlog event dictionary.
    """
    if 'correlation_id' not in event_dict:
        event_dict['correlation_id'] = get_correlation_id()
    return event_dict


class SecurityLogger:
    """
    Specialized logger for security and session audit events.
    """

    def __init__(self):
        self.logger = structlog.get_logger('blog_security.security')

    def log_security_event(self, category: str, principal: str, message: str,
                           correlation_id: Optional[str] = None):
        """Log a security event raised by the rate limiter."""
        self.logger.warning(
            "security_event",
            category=category,
            principal=principal,
            message=message,
            correlation_id=correlation_id or get_correlation_id(),
            event_type="security_event"
        )

    def log_user_login(self, user_id: str, username: str, ip_address: str,
                       user_agent: str, result: str, correlation_id: Optional[str] = None):
        """Log a login outcome."""
        self.logger.info(
            "user_login",
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            user_agent=user_agent,
            result=result,
            correlation_id=correlation_id or get_correlation_id(),
            event_type="user_login"
        )

    def log_user_logout(self, user_id: str, username: str, ip_address: str,
                        reason: str, correlation_id: Optional[str] = None):
        """Log a session termination."""
        self.logger.info(
            "user_logout",
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            reason=reason,
            correlation_id=correlation_id or get_correlation_id(),
            event_type="user_logout"
        )

    def log_rate_limit_exceeded(self, identifier: str, endpoint: str, scope: str):
        """Log rate limit exceeded."""
        self.logger.warning(
            "rate_limit_exceeded",
            identifier=identifier,
            endpoint=endpoint,
            scope=scope,
            event_type="rate_limit_exceeded"
        )


# Configure structlog
configure_structlog()
