"""
Key naming for everything the security runtime keeps in the shared store.
"""

from ...settings.base import RateLimitScope


class CacheKeyManager:
    """
    Manages store key generation with consistent naming patterns.
    """

    # Key prefixes for different data types
    PREFIXES = {
        'user': 'user',
        'session': 'session',
        'rate_limit': 'rate_limit',
    }

    @classmethod
    def generate_key(cls, prefix: str, identifier: str, suffix: str = None) -> str:
        """
        Generate consistent store key with optional suffix.

        Args:
            prefix: Key prefix from PREFIXES
            identifier: Unique identifier (user_id, session_id, etc.)
            suffix: Optional suffix for key variation

        Returns:
            Formatted store key
        """
        if prefix not in cls.PREFIXES:
            raise ValueError(f"Invalid prefix: {prefix}. Must be one of {list(cls.PREFIXES.keys())}")

        key_parts = [cls.PREFIXES[prefix], str(identifier)]
        if suffix:
            key_parts.append(str(suffix))

        return ':'.join(key_parts)

    @classmethod
    def session_data_key(cls, session_id: str) -> str:
        return cls.generate_key('session', 'data', session_id)

    @classmethod
    def session_activity_key(cls, session_id: str) -> str:
        return cls.generate_key('session', 'activity', session_id)

    @classmethod
    def active_session_index_key(cls) -> str:
        return cls.generate_key('session', 'index', 'active')

    @classmethod
    def session_statistics_key(cls) -> str:
        return cls.generate_key('session', 'stats', 'current')

    @classmethod
    def user_session_pointer_key(cls, user_id: str) -> str:
        return cls.generate_key('user', user_id, 'active_session')

    @classmethod
    def rate_limit_key(cls, scope: RateLimitScope, identifier: str, endpoint: str) -> str:
        return cls.generate_key('rate_limit', scope.value, f"{identifier}:{endpoint}")

    @classmethod
    def rate_limit_alert_key(cls, identifier: str, endpoint: str) -> str:
        return cls.generate_key('rate_limit', 'alert', f"{identifier}:{endpoint}")
