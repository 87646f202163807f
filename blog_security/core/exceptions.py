"""
Custom exception classes for the blog security runtime.

This module defines the hierarchy of exceptions raised by the session
manager, the rate limiter and the shared state store. Expected negative
outcomes (missing session, denied request) are never raised; only
infrastructure failures and programming errors end up here.
"""

from typing import Any, Dict, Optional


class SecurityRuntimeError(Exception):
    """
    Base exception for all security runtime errors.

    All custom exceptions in the package inherit from this class
    to provide consistent error handling and logging.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional error details
            correlation_id: Request correlation ID for tracking
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.details = details or {}
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for structured logging.

        Returns:
            Dictionary representation of the exception
        """
        result = {
            'error': {
                'code': self.error_code,
                'message': self.message,
            }
        }

        if self.details:
            result['error']['details'] = self.details

        if self.correlation_id:
            result['error']['correlation_id'] = self.correlation_id

        return result


# Programming errors
class ConfigurationError(SecurityRuntimeError):
    """Exception raised when runtime settings are invalid."""

    def __init__(self, message: str = "Invalid configuration", setting: Optional[str] = None, **kwargs):
        details = kwargs.get('details', {})
        if setting:
            details['setting'] = setting
        kwargs['details'] = details
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


class ValidationError(SecurityRuntimeError):
    """Exception raised when a caller passes an invalid argument."""

    def __init__(self, message: str = "Invalid argument", field: Optional[str] = None, **kwargs):
        details = kwargs.get('details', {})
        if field:
            details['field'] = field
        kwargs['details'] = details
        super().__init__(message, error_code="VALIDATION_ERROR", **kwargs)


# Shared store exceptions
class StoreError(SecurityRuntimeError):
    """Base exception for shared state store errors."""
    pass


class StoreUnavailableError(StoreError):
    """Exception raised when the shared state store cannot be reached."""

    def __init__(self, message: str = "Shared state store unavailable", operation: Optional[str] = None, **kwargs):
        details = kwargs.get('details', {})
        if operation:
            details['operation'] = operation
        kwargs['details'] = details
        super().__init__(message, error_code="STORE_UNAVAILABLE", **kwargs)


# Session exceptions
class SessionError(SecurityRuntimeError):
    """Base exception for session-related errors."""
    pass


class SessionIntegrityError(SessionError):
    """Exception raised when a stored session record fails its integrity check."""

    def __init__(self, message: str = "Session data integrity check failed", **kwargs):
        super().__init__(message, error_code="SESSION_INTEGRITY", **kwargs)


class SessionConflictError(SessionError):
    """Exception raised when concurrent logins keep winning the session pointer swap."""

    def __init__(
        self,
        message: str = "Could not install session after concurrent logins",
        user_id: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.get('details', {})
        if user_id is not None:
            details['user_id'] = str(user_id)
        if attempts is not None:
            details['attempts'] = attempts
        kwargs['details'] = details
        super().__init__(message, error_code="SESSION_CONFLICT", **kwargs)


# Audit exceptions
class AuditDispatchError(SecurityRuntimeError):
    """Exception raised when the audit dispatcher is used after shutdown."""

    def __init__(self, message: str = "Audit dispatcher is closed", **kwargs):
        super().__init__(message, error_code="AUDIT_DISPATCH", **kwargs)
