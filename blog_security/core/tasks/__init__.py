# Core tasks package

from .audit_tasks import (
    record_security_event_task,
    record_user_login_task,
    record_user_logout_task,
)

from .session_tasks import (
    cleanup_expired_sessions_task,
    generate_session_statistics_task,
)
