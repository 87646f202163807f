"""
Celery tasks for session management and cleanup.

Sessions expire lazily when read; these periodic tasks evict the ones that
are never read again and keep the statistics snapshot warm.
"""

import logging

from celery import shared_task

from ..runtime import get_security_runtime
from ..utils.time_utils import utc_now


logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def cleanup_expired_sessions_task(self):
    """
    Celery task to cleanup expired sessions.

    Evicts expired and timed-out sessions and prunes dangling index entries.
    Should be run frequently (e.g., every 5 minutes).
    """
    try:
        cleaned_count = get_security_runtime().session_manager.cleanup_expired_sessions()

        logger.info(f"Session cleanup task completed: {cleaned_count} expired sessions evicted")

        return {
            'status': 'success',
            'expired_sessions_evicted': cleaned_count,
            'timestamp': utc_now().isoformat(),
        }

    except Exception as exc:
        logger.error(f"Session cleanup task failed: {exc}")

        # Retry with exponential backoff
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))


@shared_task(bind=True, max_retries=3)
def generate_session_statistics_task(self):
    """
    Celery task to recompute and cache session statistics.
    """
    try:
        statistics = get_security_runtime().session_manager.get_session_statistics(force_refresh=True)

        logger.info(
            f"Session statistics generated: {statistics.total_active_sessions} active sessions, "
            f"{statistics.total_online_users} online users"
        )

        return {
            'status': 'success',
            'statistics': statistics.to_dict(),
            'timestamp': utc_now().isoformat(),
        }

    except Exception as exc:
        logger.error(f"Session statistics task failed: {exc}")
        raise self.retry(exc=exc, countdown=60 * (2 ** self.request.retries))
