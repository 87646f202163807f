"""
Session models for the blog security runtime.

Session records live only in the shared state store; these dataclasses are
the in-process view of a record and the aggregates computed from them.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionState(str, Enum):
    """Lifecycle states of a session. Every transition out of ACTIVE is final."""
    ACTIVE = 'ACTIVE'
    TIMED_OUT = 'TIMED_OUT'
    EXPIRED = 'EXPIRED'
    TERMINATED = 'TERMINATED'
    SUPERSEDED = 'SUPERSEDED'


class TerminationReason(str, Enum):
    """Reason code attached to every session destruction audit event."""
    USER_LOGOUT = 'USER_LOGOUT'
    ADMIN_REVOKE = 'ADMIN_REVOKE'
    TIMEOUT = 'TIMEOUT'
    EXPIRED = 'EXPIRED'
    SUPERSEDED = 'SUPERSEDED'
    CLEANUP = 'CLEANUP'


class SessionActivityType(str, Enum):
    """Entries written to a session's activity trail."""
    SESSION_CREATED = 'SESSION_CREATED'
    SESSION_ACTIVITY = 'SESSION_ACTIVITY'
    SESSION_TERMINATED = 'SESSION_TERMINATED'
    USER_LOGOUT = 'USER_LOGOUT'


@dataclass(frozen=True)
class UserIdentity:
    """The authenticated principal a session is created for."""
    user_id: str
    username: str
    role: str = 'USER'


@dataclass
class SessionInfo:
    """
    One authenticated principal's live login.

    Device, browser and OS categories are derived from ``user_agent`` when the
    session is created and never change afterwards.
    """
    session_id: str
    user_id: str
    username: str
    role: str
    ip_address: str
    user_agent: str
    device_type: str
    browser_type: str
    os_type: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    login_time: datetime
    last_activity_time: datetime
    expiration_time: datetime
    active: bool = True

    def is_expired(self, now: datetime) -> bool:
        """Check if the absolute lifetime has elapsed."""
        return now >= self.expiration_time

    def is_timed_out(self, now: datetime, inactivity_timeout: timedelta) -> bool:
        """Check if the session has been idle for the inactivity timeout or longer."""
        return now - self.last_activity_time >= inactivity_timeout

    def state_at(self, now: datetime, inactivity_timeout: timedelta) -> SessionState:
        if not self.active:
            return SessionState.TERMINATED
        if self.is_expired(now):
            return SessionState.EXPIRED
        if self.is_timed_out(now, inactivity_timeout):
            return SessionState.TIMED_OUT
        return SessionState.ACTIVE

    def remaining_lifetime_seconds(self, now: datetime) -> int:
        return int((self.expiration_time - now).total_seconds())

    def duration_minutes(self, now: datetime) -> int:
        return int((now - self.login_time).total_seconds() // 60)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in ('login_time', 'last_activity_time', 'expiration_time'):
            data[name] = data[name].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionInfo':
        data = dict(data)
        for name in ('login_time', 'last_activity_time', 'expiration_time'):
            data[name] = datetime.fromisoformat(data[name])
        return cls(**data)


@dataclass(frozen=True)
class SessionActivityRecord:
    """One entry of a session's activity trail."""
    timestamp: datetime
    activity: str
    ip_address: str

    def serialize(self) -> str:
        return f"{self.timestamp.isoformat()}|{self.activity}|{self.ip_address}"

    @classmethod
    def parse(cls, raw: str) -> Optional['SessionActivityRecord']:
        parts = raw.split('|', 2)
        if len(parts) != 3:
            return None
        try:
            timestamp = datetime.fromisoformat(parts[0])
        except ValueError:
            return None
        return cls(timestamp=timestamp, activity=parts[1], ip_address=parts[2])


@dataclass
class SessionStatistics:
    """
    Point-in-time aggregate over all active sessions.

    Snapshots are cached in the shared store for ``validity_minutes`` and
    have no identity of their own.
    """
    total_online_users: int = 0
    total_active_sessions: int = 0
    today_login_users: int = 0
    average_session_duration_minutes: float = 0.0
    max_session_duration_minutes: int = 0
    users_by_role: Dict[str, int] = field(default_factory=dict)
    sessions_by_device: Dict[str, int] = field(default_factory=dict)
    sessions_by_browser: Dict[str, int] = field(default_factory=dict)
    sessions_by_os: Dict[str, int] = field(default_factory=dict)
    recent_active_ips: List[str] = field(default_factory=list)
    logins_by_hour: Dict[int, int] = field(default_factory=dict)
    generated_at: Optional[datetime] = None
    validity_minutes: int = 5

    def is_expired(self, now: datetime) -> bool:
        if self.generated_at is None:
            return True
        return now >= self.generated_at + timedelta(minutes=self.validity_minutes)

    @property
    def user_activity_rate(self) -> float:
        """Share of today's logged-in users that are online right now, as a percentage."""
        if self.today_login_users == 0:
            return 0.0
        return self.total_online_users / self.today_login_users * 100.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['generated_at'] = self.generated_at.isoformat() if self.generated_at else None
        # JSON object keys are strings
        data['logins_by_hour'] = {str(hour): count for hour, count in self.logins_by_hour.items()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionStatistics':
        data = dict(data)
        if data.get('generated_at'):
            data['generated_at'] = datetime.fromisoformat(data['generated_at'])
        data['logins_by_hour'] = {
            int(hour): count for hour, count in data.get('logins_by_hour', {}).items()
        }
        return cls(**data)
