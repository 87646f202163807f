"""
Celery configuration for the blog security runtime.
"""

from celery import Celery
from celery.signals import setup_logging
from decouple import config

from .core.logging import configure_logging

app = Celery('blog_security')

app.conf.update(
    broker_url=config('CELERY_BROKER_URL', default='redis://localhost:6379/5'),
    result_backend=config('CELERY_RESULT_BACKEND', default=None),
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@setup_logging.connect
def configure_worker_logging(**kwargs):
    configure_logging(config('LOG_LEVEL', default='INFO'))


# Load task modules
app.autodiscover_tasks(['blog_security.core'])

# Celery beat schedule for periodic tasks
app.conf.beat_schedule = {
    'cleanup-expired-sessions': {
        'task': 'blog_security.core.tasks.session_tasks.cleanup_expired_sessions_task',
        'schedule': 300.0,  # Run every 5 minutes
    },
    'generate-session-statistics': {
        'task': 'blog_security.core.tasks.session_tasks.generate_session_statistics_task',
        'schedule': 3600.0,  # Run every hour
    },
}
