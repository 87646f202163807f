"""
Time helpers.

All timestamps handled by the security runtime are timezone-aware UTC.
Components take a ``clock`` callable so tests can control time.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
