"""
Correlation IDs for tying log lines and audit events to one request.

The request-handling layer binds an ID before calling into the rate limiter
or the session manager. Audit events captured on that thread carry the ID to
the dispatcher thread or Celery worker, which re-binds it while recording.
"""

import logging
import threading
import uuid
from typing import Optional


NO_CORRELATION_ID = 'no-correlation-id'

_local = threading.local()


def get_correlation_id() -> Optional[str]:
    """Return the ID bound to the current thread, if any."""
    return getattr(_local, 'correlation_id', None)


def set_correlation_id(correlation_id: str) -> None:
    _local.correlation_id = correlation_id


def clear_correlation_id() -> None:
    _local.__dict__.pop('correlation_id', None)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


class CorrelationIdFilter(logging.Filter):
    """
    Stamp stdlib log records with the bound correlation ID.

    Records logged outside any request get ``NO_CORRELATION_ID`` so that
    format strings referencing ``%(correlation_id)s`` never fail.
    """

    def filter(self, record):
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class CorrelationContext:
    """
    Bind a correlation ID for the duration of a ``with`` block.

    A fresh ID is generated when none is given. On exit the ID that was bound
    before entering (or its absence) is restored, so contexts nest.

    Usage:
        with CorrelationContext(event_correlation_id):
            sink.log_security_event(category, principal, message)
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._previous: Optional[str] = None

    def __enter__(self) -> str:
        self._previous = get_correlation_id()
        set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous is None:
            clear_correlation_id()
        else:
            set_correlation_id(self._previous)
