"""
Runtime settings for the blog security runtime.

Settings are immutable once built. Services receive them at construction
time; nothing reads the environment on the decision path.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from decouple import Csv, config

from ..core.exceptions import ConfigurationError


class RateLimitScope(str, Enum):
    """What a rate-limit window is keyed on."""
    IP = 'IP'
    USER = 'USER'
    GLOBAL = 'GLOBAL'


AUDIT_BACKENDS = ('logging', 'celery')


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota applied to one endpoint."""
    max_requests: int = 100
    window_size_seconds: int = 60
    scope: RateLimitScope = RateLimitScope.IP
    enabled: bool = True
    description: str = ''

    def __post_init__(self):
        if self.max_requests < 1:
            raise ConfigurationError("max_requests must be positive", setting='max_requests')
        if self.window_size_seconds < 1:
            raise ConfigurationError(
                "window_size_seconds must be positive", setting='window_size_seconds'
            )
        if not isinstance(self.scope, RateLimitScope):
            try:
                object.__setattr__(self, 'scope', RateLimitScope(str(self.scope).upper()))
            except ValueError:
                raise ConfigurationError(f"Unknown rate limit scope: {self.scope}", setting='scope')

    @classmethod
    def from_dict(cls, data: Mapping) -> 'RateLimitPolicy':
        return cls(
            max_requests=int(data.get('max_requests', 100)),
            window_size_seconds=int(data.get('window_size_seconds', 60)),
            scope=data.get('scope', RateLimitScope.IP),
            enabled=bool(data.get('enabled', True)),
            description=str(data.get('description', '')),
        )


@dataclass(frozen=True)
class AlertSettings:
    """When an admitted request near the quota should raise an alert."""
    enabled: bool = True
    threshold: float = 0.8
    interval_seconds: int = 300

    def __post_init__(self):
        if not 0.0 < self.threshold <= 1.0:
            raise ConfigurationError("Alert threshold must be in (0, 1]", setting='threshold')
        if self.interval_seconds < 1:
            raise ConfigurationError("Alert interval must be positive", setting='interval_seconds')


@dataclass(frozen=True)
class RateLimitSettings:
    """Global rate limiting switch, default policy and per-endpoint overrides."""
    enabled: bool = True
    default_policy: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    endpoints: Mapping[str, RateLimitPolicy] = field(default_factory=dict)
    alert: AlertSettings = field(default_factory=AlertSettings)

    def __post_init__(self):
        object.__setattr__(self, 'endpoints', MappingProxyType(dict(self.endpoints)))

    def get_endpoint_policy(self, endpoint: str) -> RateLimitPolicy:
        """Policy for an already-normalized endpoint, or the default policy."""
        return self.endpoints.get(endpoint, self.default_policy)

    def should_alert(self, current_count: int, max_requests: int) -> bool:
        """Whether a count has reached the alert threshold for a quota."""
        if not self.alert.enabled or max_requests <= 0:
            return False
        return current_count / max_requests >= self.alert.threshold


@dataclass(frozen=True)
class SessionSettings:
    """Session lifetime, inactivity and statistics cache configuration."""
    absolute_lifetime_seconds: int = 24 * 60 * 60
    inactivity_timeout_seconds: int = 30 * 60
    statistics_cache_seconds: int = 5 * 60
    activity_history_size: int = 50
    secret_key: str = 'blog-security-insecure-change-me'
    max_supersede_attempts: int = 5

    def __post_init__(self):
        if self.absolute_lifetime_seconds < 1:
            raise ConfigurationError(
                "Session lifetime must be positive", setting='absolute_lifetime_seconds'
            )
        if self.inactivity_timeout_seconds < 1:
            raise ConfigurationError(
                "Inactivity timeout must be positive", setting='inactivity_timeout_seconds'
            )
        if self.statistics_cache_seconds < 1:
            raise ConfigurationError(
                "Statistics cache TTL must be positive", setting='statistics_cache_seconds'
            )
        if self.activity_history_size < 1:
            raise ConfigurationError(
                "Activity history size must be positive", setting='activity_history_size'
            )
        if not self.secret_key:
            raise ConfigurationError("Session secret key is required", setting='secret_key')
        if self.max_supersede_attempts < 1:
            raise ConfigurationError(
                "Supersede attempts must be positive", setting='max_supersede_attempts'
            )


@dataclass(frozen=True)
class RedisSettings:
    """Connection settings for the shared state store."""
    url: str = 'redis://localhost:6379/0'
    sentinel_enabled: bool = False
    sentinel_hosts: Tuple[Tuple[str, int], ...] = ()
    master_name: str = 'mymaster'
    socket_timeout: float = 5.0
    max_connections: int = 50


@dataclass(frozen=True)
class AuditSettings:
    """Where audit events go and how many may wait for delivery."""
    backend: str = 'logging'
    queue_size: int = 1000

    def __post_init__(self):
        if self.backend not in AUDIT_BACKENDS:
            raise ConfigurationError(
                f"Unknown audit backend: {self.backend}. Must be one of {list(AUDIT_BACKENDS)}",
                setting='backend'
            )
        if self.queue_size < 1:
            raise ConfigurationError("Audit queue size must be positive", setting='queue_size')


def _parse_endpoint_policies(raw: str) -> Mapping[str, RateLimitPolicy]:
    if not raw:
        return {}

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"RATE_LIMIT_ENDPOINTS is not valid JSON: {e}",
                                 setting='RATE_LIMIT_ENDPOINTS')

    if not isinstance(data, dict):
        raise ConfigurationError("RATE_LIMIT_ENDPOINTS must be a JSON object",
                                 setting='RATE_LIMIT_ENDPOINTS')

    # Imported here to avoid a cycle: core.utils imports core.exceptions only
    from ..core.utils.validation import normalize_endpoint

    return {
        normalize_endpoint(endpoint): RateLimitPolicy.from_dict(policy)
        for endpoint, policy in data.items()
    }


def _parse_sentinel_hosts(raw) -> Tuple[Tuple[str, int], ...]:
    hosts = []
    for host_port in raw:
        if ':' in host_port:
            host, port = host_port.strip().split(':')
            hosts.append((host, int(port)))
    return tuple(hosts)


@dataclass(frozen=True)
class SecurityRuntimeSettings:
    """Everything needed to build the security runtime."""
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    celery_broker_url: str = 'redis://localhost:6379/5'
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'SecurityRuntimeSettings':
        """
        Build settings from environment variables (or a .env file).

        Args:
            env: Optional mapping used instead of the process environment

        Returns:
            Validated settings
        """
        if env is not None:
            def read(name, default=None, cast=None):
                value = env.get(name)
                if value is None:
                    return default
                return cast(value) if cast else value
            read_bool = lambda name, default: read(
                name, default, cast=lambda v: str(v).strip().lower() in ('1', 'true', 'yes', 'on')
            )
            read_list = lambda name: [v for v in read(name, '').split(',') if v.strip()]
        else:
            read = config
            read_bool = lambda name, default: config(name, default=default, cast=bool)
            read_list = lambda name: config(name, default='', cast=Csv())

        default_policy = RateLimitPolicy(
            max_requests=read('RATE_LIMIT_DEFAULT_MAX_REQUESTS', default=100, cast=int),
            window_size_seconds=read('RATE_LIMIT_DEFAULT_WINDOW_SECONDS', default=60, cast=int),
            scope=read('RATE_LIMIT_DEFAULT_SCOPE', default='IP'),
        )

        rate_limit = RateLimitSettings(
            enabled=read_bool('RATE_LIMIT_ENABLED', True),
            default_policy=default_policy,
            endpoints=_parse_endpoint_policies(read('RATE_LIMIT_ENDPOINTS', default='')),
            alert=AlertSettings(
                enabled=read_bool('RATE_LIMIT_ALERT_ENABLED', True),
                threshold=read('RATE_LIMIT_ALERT_THRESHOLD', default=0.8, cast=float),
                interval_seconds=read('RATE_LIMIT_ALERT_INTERVAL_SECONDS', default=300, cast=int),
            ),
        )

        session = SessionSettings(
            absolute_lifetime_seconds=read('SESSION_ABSOLUTE_LIFETIME_SECONDS', default=86400, cast=int),
            inactivity_timeout_seconds=read('SESSION_INACTIVITY_TIMEOUT_SECONDS', default=1800, cast=int),
            statistics_cache_seconds=read('SESSION_STATISTICS_CACHE_SECONDS', default=300, cast=int),
            activity_history_size=read('SESSION_ACTIVITY_HISTORY_SIZE', default=50, cast=int),
            secret_key=read('SECRET_KEY', default='blog-security-insecure-change-me'),
            max_supersede_attempts=read('SESSION_MAX_SUPERSEDE_ATTEMPTS', default=5, cast=int),
        )

        redis = RedisSettings(
            url=read('REDIS_URL', default='redis://localhost:6379/0'),
            sentinel_enabled=read_bool('REDIS_SENTINEL_ENABLED', False),
            sentinel_hosts=_parse_sentinel_hosts(read_list('REDIS_SENTINEL_HOSTS')),
            master_name=read('REDIS_MASTER_NAME', default='mymaster'),
            socket_timeout=read('REDIS_SOCKET_TIMEOUT', default=5.0, cast=float),
            max_connections=read('REDIS_MAX_CONNECTIONS', default=50, cast=int),
        )

        audit = AuditSettings(
            backend=read('AUDIT_BACKEND', default='logging'),
            queue_size=read('AUDIT_QUEUE_SIZE', default=1000, cast=int),
        )

        return cls(
            rate_limit=rate_limit,
            session=session,
            redis=redis,
            audit=audit,
            celery_broker_url=read('CELERY_BROKER_URL', default='redis://localhost:6379/5'),
            log_level=read('LOG_LEVEL', default='INFO'),
        )
