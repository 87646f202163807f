"""
Rate limiting service for the blog security runtime.

Evaluates per-endpoint quota policies against sliding windows kept in the
shared store. Denied requests raise a suspicious-activity event; admitted
requests close to the quota raise a throttled alert. When the store is
unreachable the service fails open.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from ...settings.base import RateLimitPolicy, RateLimitScope, RateLimitSettings
from ..cache.cache_manager import CacheKeyManager
from ..cache.rate_limiter import SlidingWindowRateLimiter
from ..cache.state_store import StateStore
from ..exceptions import StoreUnavailableError
from ..logging import SecurityLogger
from ..models.audit import SecurityEventCategory
from ..models.rate_limit import RateLimitResult, RateLimitStatus
from ..utils.time_utils import utc_now
from ..utils.validation import normalize_endpoint, require_identifier
from .audit_service import AuditSink


logger = logging.getLogger(__name__)

ANONYMOUS_PRINCIPAL = 'anonymous'
GLOBAL_IDENTIFIER = 'global'


class RateLimitingService:
    """
    Per-endpoint rate limiting with alert-threshold detection.

    Keeps no local state: every decision is one atomic call against the
    shared store, so any number of service instances enforce the same quota.
    """

    def __init__(
        self,
        store: StateStore,
        settings: RateLimitSettings,
        audit_sink: AuditSink,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.settings = settings
        self.audit_sink = audit_sink
        self.clock = clock
        self.limiter = SlidingWindowRateLimiter(store, clock)
        self.security_logger = SecurityLogger()

    def is_allowed(self, identifier: str, endpoint: str, principal: Optional[str] = None) -> bool:
        """
        Decide whether a request may proceed, consuming one unit of quota.

        Args:
            identifier: Caller identifier, usually the client IP
            endpoint: Request path
            principal: Authenticated username, if any

        Returns:
            True if the request is admitted
        """
        return self.check_rate_limit(identifier, endpoint, principal).allowed

    def check_rate_limit(self, identifier: str, endpoint: str,
                         principal: Optional[str] = None) -> RateLimitResult:
        """
        Same decision as is_allowed, with the details callers need for
        rate limit response headers.
        """
        identifier = require_identifier(identifier, 'identifier')
        endpoint = normalize_endpoint(endpoint)
        policy = self.settings.get_endpoint_policy(endpoint)

        if not self.settings.enabled or not policy.enabled:
            return self._unlimited_result(policy, endpoint)

        key = self._window_key(policy, identifier, endpoint, principal)

        try:
            result = self.limiter.check_rate_limit(key, policy.max_requests, policy.window_size_seconds)
        except StoreUnavailableError as e:
            logger.error(f"Rate limit check for {identifier} on {endpoint} failed open: {e}")
            return self._unlimited_result(policy, endpoint)

        result = replace(result, scope=policy.scope, endpoint=endpoint)

        if not result.allowed:
            self._report_limit_exceeded(identifier, endpoint, principal, policy, result)
        elif self.settings.should_alert(result.current_count, result.limit):
            self._raise_threshold_alert(identifier, endpoint, principal, result)

        return result

    def get_rate_limit_status(self, identifier: str, endpoint: str,
                              principal: Optional[str] = None) -> RateLimitStatus:
        """
        Get the current window state without recording a request.
        """
        identifier = require_identifier(identifier, 'identifier')
        endpoint = normalize_endpoint(endpoint)
        policy = self.settings.get_endpoint_policy(endpoint)
        enabled = self.settings.enabled and policy.enabled

        current_count = 0
        if enabled:
            key = self._window_key(policy, identifier, endpoint, principal)
            try:
                current_count = self.limiter.get_count(key, policy.window_size_seconds)
            except StoreUnavailableError as e:
                logger.error(f"Rate limit status for {identifier} on {endpoint} unavailable: {e}")

        return RateLimitStatus(
            identifier=identifier,
            endpoint=endpoint,
            scope=policy.scope,
            current_count=current_count,
            limit=policy.max_requests,
            window_size_seconds=policy.window_size_seconds,
            enabled=enabled,
        )

    def clear_rate_limit(self, identifier: str, endpoint: str,
                         principal: Optional[str] = None) -> bool:
        """
        Reset the window and alert marker for an identifier on an endpoint.

        Returns:
            True if the store accepted the reset
        """
        identifier = require_identifier(identifier, 'identifier')
        endpoint = normalize_endpoint(endpoint)
        policy = self.settings.get_endpoint_policy(endpoint)
        key = self._window_key(policy, identifier, endpoint, principal)

        try:
            self.limiter.reset(key)
            self.store.delete(CacheKeyManager.rate_limit_alert_key(identifier, endpoint))
        except StoreUnavailableError as e:
            logger.error(f"Failed to clear rate limit for {identifier} on {endpoint}: {e}")
            return False

        logger.info(f"Cleared rate limit for {identifier} on {endpoint}")
        return True

    def _window_key(self, policy: RateLimitPolicy, identifier: str, endpoint: str,
                    principal: Optional[str]) -> str:
        if policy.scope is RateLimitScope.USER:
            key_identifier = principal or identifier
        elif policy.scope is RateLimitScope.GLOBAL:
            key_identifier = GLOBAL_IDENTIFIER
        else:
            key_identifier = identifier
        return CacheKeyManager.rate_limit_key(policy.scope, key_identifier, endpoint)

    def _unlimited_result(self, policy: RateLimitPolicy, endpoint: str) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            limit=policy.max_requests,
            current_count=0,
            remaining=policy.max_requests,
            scope=policy.scope,
            endpoint=endpoint,
        )

    def _report_limit_exceeded(self, identifier: str, endpoint: str, principal: Optional[str],
                               policy: RateLimitPolicy, result: RateLimitResult) -> None:
        self.security_logger.log_rate_limit_exceeded(identifier, endpoint, policy.scope.value)

        message = (
            f"Rate limit exceeded: identifier={identifier}, endpoint={endpoint}, "
            f"count={result.current_count}/{result.limit} per {policy.window_size_seconds}s"
        )
        try:
            self.audit_sink.log_security_event(
                SecurityEventCategory.SUSPICIOUS_ACTIVITY,
                principal or ANONYMOUS_PRINCIPAL,
                message,
            )
        except Exception as e:
            logger.error(f"Failed to emit rate limit audit event: {e}")

    def _raise_threshold_alert(self, identifier: str, endpoint: str, principal: Optional[str],
                               result: RateLimitResult) -> None:
        alert_key = CacheKeyManager.rate_limit_alert_key(identifier, endpoint)

        try:
            marker_set = self.store.set_if_absent(
                alert_key, self.clock().isoformat(), self.settings.alert.interval_seconds
            )
        except StoreUnavailableError as e:
            logger.error(f"Rate limit alert marker for {identifier} on {endpoint} failed: {e}")
            return

        if not marker_set:
            return

        usage = result.current_count / result.limit * 100
        message = (
            f"Rate limit threshold reached: identifier={identifier}, endpoint={endpoint}, "
            f"usage={result.current_count}/{result.limit} ({usage:.0f}%)"
        )
        logger.warning(message)
        try:
            self.audit_sink.log_security_event(
                SecurityEventCategory.RATE_LIMIT_ALERT,
                principal or ANONYMOUS_PRINCIPAL,
                message,
            )
        except Exception as e:
            logger.error(f"Failed to emit rate limit alert event: {e}")
