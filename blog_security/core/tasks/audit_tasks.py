"""
Celery tasks that record audit events handed off by CeleryAuditSink.
"""

import logging

from celery import shared_task

from ..models.session import UserIdentity
from ..services.audit_service import LoggingAuditSink
from ..utils.correlation import CorrelationContext


logger = logging.getLogger(__name__)

_sink = LoggingAuditSink()


@shared_task(ignore_result=True)
def record_security_event_task(category, principal, message, correlation_id=None):
    with CorrelationContext(correlation_id):
        _sink.log_security_event(category, principal, message)


@shared_task(ignore_result=True)
def record_user_login_task(user_id, username, role, ip_address, user_agent, result,
                           correlation_id=None):
    with CorrelationContext(correlation_id):
        _sink.log_user_login(UserIdentity(user_id, username, role), ip_address, user_agent, result)


@shared_task(ignore_result=True)
def record_user_logout_task(user_id, username, ip_address, reason, correlation_id=None):
    with CorrelationContext(correlation_id):
        _sink.log_user_logout(user_id, username, ip_address, reason)
