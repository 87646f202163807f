"""
Assembly of the security runtime from settings.

Request-handling code and Celery workers obtain the session manager and the
rate limiter from here rather than building their own, so that every caller
in a process shares one connection pool and one audit dispatcher.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..settings.base import SecurityRuntimeSettings
from .cache.redis_config import RedisConnectionManager, redis_health_check
from .cache.session_storage import SessionRecordSerializer, SessionStore
from .cache.state_store import RedisStateStore, StateStore
from .exceptions import StoreUnavailableError
from .services.audit_service import AuditDispatcher, AuditSink, CeleryAuditSink, LoggingAuditSink
from .services.rate_limiting_service import RateLimitingService
from .services.session_service import SessionManager
from .utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SecurityRuntime:
    """The wired-up services of one process."""
    settings: SecurityRuntimeSettings
    store: StateStore
    audit_sink: AuditSink
    session_manager: SessionManager
    rate_limiter: RateLimitingService
    redis_manager: Optional[RedisConnectionManager] = None

    def health_check(self) -> Dict[str, Any]:
        if self.redis_manager is not None:
            return redis_health_check(self.redis_manager)
        try:
            return {'status': 'healthy' if self.store.ping() else 'unhealthy'}
        except StoreUnavailableError as e:
            return {'status': 'unhealthy', 'error': str(e)}

    def close(self) -> None:
        if isinstance(self.audit_sink, AuditDispatcher):
            self.audit_sink.close()
        if self.redis_manager is not None:
            self.redis_manager.close_connections()


def _build_audit_sink(settings: SecurityRuntimeSettings) -> AuditSink:
    if settings.audit.backend == 'celery':
        sink = CeleryAuditSink()
    else:
        sink = LoggingAuditSink()
    return AuditDispatcher(sink, queue_size=settings.audit.queue_size)


def build_security_runtime(
    settings: Optional[SecurityRuntimeSettings] = None,
    store: Optional[StateStore] = None,
    audit_sink: Optional[AuditSink] = None,
    clock: Callable[[], datetime] = utc_now,
) -> SecurityRuntime:
    """
    Build the session manager and rate limiter.

    Args:
        settings: Runtime settings; read from the environment when omitted
        store: Shared state store; a Redis store is created when omitted
        audit_sink: Audit receiver; a dispatcher over the configured backend when omitted
        clock: Source of the current time

    Returns:
        SecurityRuntime
    """
    settings = settings or SecurityRuntimeSettings.from_env()

    redis_manager = None
    if store is None:
        redis_manager = RedisConnectionManager(settings.redis)
        store = RedisStateStore(redis_manager.get_connection('default'))

    if audit_sink is None:
        audit_sink = _build_audit_sink(settings)

    session_store = SessionStore(store, SessionRecordSerializer(settings.session.secret_key))

    runtime = SecurityRuntime(
        settings=settings,
        store=store,
        audit_sink=audit_sink,
        session_manager=SessionManager(session_store, settings.session, audit_sink, clock),
        rate_limiter=RateLimitingService(store, settings.rate_limit, audit_sink, clock),
        redis_manager=redis_manager,
    )

    logger.info(
        f"Security runtime ready (store={type(store).__name__}, "
        f"audit={settings.audit.backend}, rate_limiting={settings.rate_limit.enabled})"
    )
    return runtime


_runtime: Optional[SecurityRuntime] = None
_runtime_lock = threading.Lock()


def get_security_runtime() -> SecurityRuntime:
    """Get the process-wide runtime, building it from the environment on first use."""
    global _runtime

    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = build_security_runtime()
    return _runtime


def reset_security_runtime() -> None:
    """Close and forget the process-wide runtime."""
    global _runtime

    with _runtime_lock:
        if _runtime is not None:
            _runtime.close()
        _runtime = None
