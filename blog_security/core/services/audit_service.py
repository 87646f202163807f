"""
Audit event emission for the security runtime.

Persistent audit storage lives outside this package. The session manager and
the rate limiter only hand events to an AuditSink; in production that sink is
an AuditDispatcher, which delivers events from a background thread so that a
slow or failing sink never delays an admit/deny or valid/invalid decision.
"""

import logging
import queue
import threading
from typing import Optional, Protocol

from ..exceptions import AuditDispatchError
from ..logging import SecurityLogger
from ..models.audit import LoginResult, SecurityEventCategory
from ..models.session import TerminationReason, UserIdentity
from ..utils.correlation import CorrelationContext, get_correlation_id

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Receiver of security and session audit events."""

    def log_security_event(self, category: SecurityEventCategory, principal: str,
                           message: str) -> None:
        ...

    def log_user_login(self, user: UserIdentity, ip_address: str, user_agent: str,
                       result: LoginResult) -> None:
        ...

    def log_user_logout(self, user_id: str, username: str, ip_address: str,
                        reason: TerminationReason) -> None:
        ...


class LoggingAuditSink:
    """
    Audit sink that writes events to the structured security log.
    """

    def __init__(self, security_logger: Optional[SecurityLogger] = None):
        self.security_logger = security_logger or SecurityLogger()

    def log_security_event(self, category, principal, message):
        self.security_logger.log_security_event(
            category=SecurityEventCategory(category).value,
            principal=principal,
            message=message,
        )

    def log_user_login(self, user, ip_address, user_agent, result):
        self.security_logger.log_user_login(
            user_id=user.user_id,
            username=user.username,
            ip_address=ip_address,
            user_agent=user_agent,
            result=LoginResult(result).value,
        )

    def log_user_logout(self, user_id, username, ip_address, reason):
        self.security_logger.log_user_logout(
            user_id=user_id,
            username=username,
            ip_address=ip_address,
            reason=TerminationReason(reason).value,
        )


class CeleryAuditSink:
    """
    Audit sink that hands events to Celery workers.

    Only plain values cross the broker; the correlation ID of the calling
    thread travels with each event.
    """

    def log_security_event(self, category, principal, message):
        from ..tasks.audit_tasks import record_security_event_task

        record_security_event_task.delay(
            SecurityEventCategory(category).value, principal, message,
            correlation_id=get_correlation_id(),
        )

    def log_user_login(self, user, ip_address, user_agent, result):
        from ..tasks.audit_tasks import record_user_login_task

        record_user_login_task.delay(
            user.user_id, user.username, user.role, ip_address, user_agent,
            LoginResult(result).value,
            correlation_id=get_correlation_id(),
        )

    def log_user_logout(self, user_id, username, ip_address, reason):
        from ..tasks.audit_tasks import record_user_logout_task

        record_user_logout_task.delay(
            user_id, username, ip_address, TerminationReason(reason).value,
            correlation_id=get_correlation_id(),
        )


_STOP = object()


class AuditDispatcher:
    """
    Fire-and-forget AuditSink that delivers events on a daemon worker thread.

    Events wait in a bounded queue. When the queue is full the event is
    dropped and a warning is logged; callers are never blocked. Failures
    raised by the wrapped sink are logged and discarded.
    """

    def __init__(self, sink: AuditSink, queue_size: int = 1000, name: str = 'audit-dispatcher'):
        self.sink = sink
        self._queue = queue.Queue(maxsize=queue_size)
        self._closed = False
        self.dropped_events = 0
        self._worker = threading.Thread(target=self._run, name=name, daemon=True)
        self._worker.start()

    def log_security_event(self, category, principal, message):
        self._enqueue('log_security_event', (category, principal, message))

    def log_user_login(self, user, ip_address, user_agent, result):
        self._enqueue('log_user_login', (user, ip_address, user_agent, result))

    def log_user_logout(self, user_id, username, ip_address, reason):
        self._enqueue('log_user_logout', (user_id, username, ip_address, reason))

    def _enqueue(self, method_name: str, args: tuple) -> None:
        if self._closed:
            raise AuditDispatchError()

        try:
            self._queue.put_nowait((method_name, args, get_correlation_id()))
        except queue.Full:
            self.dropped_events += 1
            logger.warning(f"Audit queue full, dropping {method_name} event")

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                method_name, args, correlation_id = item
                with CorrelationContext(correlation_id):
                    getattr(self.sink, method_name)(*args)
            except Exception as e:
                logger.error(f"Audit sink failed to record event: {e}")
            finally:
                self._queue.task_done()

    def flush(self) -> None:
        """Block until every queued event has been handed to the sink."""
        self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        """Deliver pending events and stop the worker thread."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout)
