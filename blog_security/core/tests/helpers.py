"""
Shared test helpers: a controllable clock and an audit sink that records events.
"""

import threading
from datetime import datetime, timedelta, timezone


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, **kwargs):
        with self._lock:
            self.now = self.now + timedelta(**kwargs)
            return self.now


class RecordingAuditSink:
    """Audit sink that keeps every event it receives."""

    def __init__(self):
        self.security_events = []
        self.logins = []
        self.logouts = []
        self._lock = threading.Lock()

    def log_security_event(self, category, principal, message):
        with self._lock:
            self.security_events.append((category, principal, message))

    def log_user_login(self, user, ip_address, user_agent, result):
        with self._lock:
            self.logins.append((user, ip_address, user_agent, result))

    def log_user_logout(self, user_id, username, ip_address, reason):
        with self._lock:
            self.logouts.append((user_id, username, ip_address, reason))

    def logout_reasons(self, user_id=None):
        return [reason for uid, _, _, reason in self.logouts if user_id is None or uid == user_id]

    def security_categories(self):
        return [category for category, _, _ in self.security_events]


CHROME_WINDOWS_UA = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
IPHONE_SAFARI_UA = (
    'Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 '
    '(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1'
)
