"""
Session lifecycle management.

This service creates sessions at login, enforces a single active session
per user, validates and refreshes sessions on each authenticated request,
terminates them, and aggregates statistics over the active ones.

Expiry is lazy: nothing runs on a timer. A session that is read after its
absolute lifetime or inactivity timeout has elapsed is evicted on the spot,
and a periodic sweep catches the ones nobody reads again.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ...settings.base import SessionSettings
from ..cache.session_storage import SessionStore
from ..exceptions import SessionConflictError, StoreUnavailableError, ValidationError
from ..models.audit import LoginResult
from ..models.session import (
    SessionActivityRecord,
    SessionActivityType,
    SessionInfo,
    SessionState,
    SessionStatistics,
    TerminationReason,
    UserIdentity,
)
from ..utils.device_fingerprinting import classify_user_agent
from ..utils.time_utils import utc_now
from ..utils.validation import require_identifier
from .audit_service import AuditSink


logger = logging.getLogger(__name__)

RECENT_ACTIVE_IP_LIMIT = 10

_EVICTION_REASONS = {
    SessionState.EXPIRED: TerminationReason.EXPIRED,
    SessionState.TIMED_OUT: TerminationReason.TIMEOUT,
    SessionState.TERMINATED: TerminationReason.CLEANUP,
}


class SessionManager:
    """
    Session management backed by the shared state store.

    Handles session creation with single-session enforcement, lazy expiry,
    activity tracking, termination and statistics.
    """

    def __init__(
        self,
        session_store: SessionStore,
        settings: SessionSettings,
        audit_sink: AuditSink,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_store = session_store
        self.settings = settings
        self.audit_sink = audit_sink
        self.clock = clock
        self.absolute_lifetime = timedelta(seconds=settings.absolute_lifetime_seconds)
        self.inactivity_timeout = timedelta(seconds=settings.inactivity_timeout_seconds)

    def create_session(
        self,
        user: UserIdentity,
        session_id: str,
        ip_address: str,
        user_agent: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> SessionInfo:
        """
        Create a session for a freshly authenticated user.

        Any session the user already has is terminated with reason
        SUPERSEDED before the new one becomes reachable through the user's
        session pointer.

        Args:
            user: Authenticated principal
            session_id: Opaque session token
            ip_address: Client IP address
            user_agent: Raw User-Agent header
            access_token: Access token issued with the session
            refresh_token: Refresh token issued with the session

        Returns:
            The new session

        Raises:
            ValidationError: If the user or session ID is missing
            SessionConflictError: If concurrent logins keep replacing the pointer
            StoreUnavailableError: If the store cannot be reached
        """
        if user is None:
            raise ValidationError("user is required", field='user')
        user_id = require_identifier(user.user_id, 'user_id')
        session_id = require_identifier(session_id, 'session_id')

        classification = classify_user_agent(user_agent)
        lifetime_seconds = self.settings.absolute_lifetime_seconds

        for attempt in range(1, self.settings.max_supersede_attempts + 1):
            self._supersede_current_session(user_id)

            now = self.clock()
            session = SessionInfo(
                session_id=session_id,
                user_id=user_id,
                username=user.username,
                role=user.role,
                ip_address=ip_address or '',
                user_agent=user_agent or '',
                device_type=classification.device_type,
                browser_type=classification.browser_type,
                os_type=classification.os_type,
                access_token=access_token,
                refresh_token=refresh_token,
                login_time=now,
                last_activity_time=now,
                expiration_time=now + self.absolute_lifetime,
                active=True,
            )

            self.session_store.save(session, lifetime_seconds)

            if self.session_store.install_user_pointer(user_id, session_id, lifetime_seconds):
                self.session_store.add_to_index(session_id)
                self._record_activity(session, SessionActivityType.SESSION_CREATED,
                                      session.ip_address, now)
                self._emit_login(session)

                logger.info(
                    f"Session {session_id} created for user {user_id} "
                    f"({session.device_type}/{session.browser_type}/{session.os_type})"
                )
                return session

            # A concurrent login installed its pointer first
            self.session_store.delete(session_id)
            logger.warning(
                f"Concurrent login for user {user_id} won the session pointer "
                f"(attempt {attempt}), retrying"
            )

        raise SessionConflictError(user_id=user_id, attempts=self.settings.max_supersede_attempts)

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        """
        Get a valid session.

        Expired or timed-out sessions are evicted and reported as absent.
        Store failures are reported as absent too.

        Args:
            session_id: Session token

        Returns:
            The session, or None if it is absent or no longer valid
        """
        session_id = require_identifier(session_id, 'session_id')

        try:
            return self._load_valid_session(session_id, self.clock())
        except StoreUnavailableError as e:
            logger.error(f"Session lookup for {session_id} failed closed: {e}")
            return None

    def update_session_activity(self, session_id: str, ip_address: Optional[str] = None) -> bool:
        """
        Refresh a session's last activity time.

        The record is re-persisted with a TTL equal to its remaining absolute
        lifetime, and only if it still exists, so a concurrent termination is
        never undone and the absolute expiry never moves.

        Args:
            session_id: Session token
            ip_address: Client IP address of the current request

        Returns:
            True if the session is valid and was refreshed
        """
        session_id = require_identifier(session_id, 'session_id')

        try:
            now = self.clock()
            session = self._load_valid_session(session_id, now)
            if session is None:
                return False

            session.last_activity_time = now
            remaining = session.remaining_lifetime_seconds(now)
            if remaining <= 0:
                return False

            if not self.session_store.save(session, remaining, only_if_exists=True):
                logger.debug(f"Session {session_id} disappeared during activity update")
                return False

            self._record_activity(session, SessionActivityType.SESSION_ACTIVITY,
                                  ip_address or session.ip_address, now)
            return True
        except StoreUnavailableError as e:
            logger.error(f"Activity update for session {session_id} failed: {e}")
            return False

    def terminate_session(self, session_id: str,
                          reason: TerminationReason = TerminationReason.USER_LOGOUT) -> bool:
        """
        Terminate a session.

        Args:
            session_id: Session token
            reason: Reason code recorded in the logout audit event

        Returns:
            True if this call terminated the session, False if it was absent
        """
        session_id = require_identifier(session_id, 'session_id')
        reason = self._coerce_reason(reason)

        try:
            session = self.session_store.load(session_id)
            if session is None:
                return False
            return self._destroy(session, reason, session.ip_address)
        except StoreUnavailableError as e:
            logger.error(f"Termination of session {session_id} failed: {e}")
            return False

    def user_logout(self, session_id: str, ip_address: Optional[str] = None) -> bool:
        """
        Handle an explicit logout by the session owner.

        Returns:
            True if the session was terminated
        """
        session_id = require_identifier(session_id, 'session_id')

        try:
            now = self.clock()
            session = self._load_valid_session(session_id, now)
            if session is None:
                return False

            ip_address = ip_address or session.ip_address
            self._record_activity(session, SessionActivityType.USER_LOGOUT, ip_address, now)
            return self._destroy(session, TerminationReason.USER_LOGOUT, ip_address)
        except StoreUnavailableError as e:
            logger.error(f"Logout of session {session_id} failed: {e}")
            return False

    def get_user_active_session(self, user_id: str) -> Optional[SessionInfo]:
        """Get the user's current valid session, if any."""
        user_id = require_identifier(user_id, 'user_id')

        try:
            session_id = self.session_store.get_user_session_id(user_id)
        except StoreUnavailableError as e:
            logger.error(f"Session pointer lookup for user {user_id} failed closed: {e}")
            return None

        if session_id is None:
            return None
        return self.get_session(session_id)

    def get_session_activity(self, session_id: str) -> List[SessionActivityRecord]:
        """Get a session's activity trail, newest first."""
        session_id = require_identifier(session_id, 'session_id')

        try:
            return self.session_store.load_activity(session_id)
        except StoreUnavailableError as e:
            logger.error(f"Activity lookup for session {session_id} failed: {e}")
            return []

    def get_all_active_sessions(self) -> List[SessionInfo]:
        """Get every valid session, evicting the ones found invalid."""
        try:
            sessions, _ = self._scan_sessions(self.clock())
            return sessions
        except StoreUnavailableError as e:
            logger.error(f"Active session scan failed: {e}")
            return []

    def cleanup_expired_sessions(self) -> int:
        """
        Sweep the active-session index.

        Evicts sessions whose lifetime or inactivity timeout has elapsed and
        drops index entries whose record no longer exists.

        Returns:
            Number of sessions evicted

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        _, evicted = self._scan_sessions(self.clock())
        if evicted:
            logger.info(f"Cleaned up {evicted} expired sessions")
        return evicted

    def get_session_statistics(self, force_refresh: bool = False) -> SessionStatistics:
        """
        Get statistics over the active sessions.

        A cached snapshot is returned while it is still valid; otherwise the
        active-session index is scanned and the result cached again.

        Args:
            force_refresh: Ignore any cached snapshot

        Returns:
            SessionStatistics snapshot; empty if the store is unavailable
        """
        now = self.clock()

        try:
            if not force_refresh:
                cached = self.session_store.load_statistics()
                if cached is not None and not cached.is_expired(now):
                    return cached

            statistics = self._calculate_statistics(now)
            self.session_store.save_statistics(statistics, self.settings.statistics_cache_seconds)
            return statistics
        except StoreUnavailableError as e:
            logger.error(f"Session statistics unavailable: {e}")
            return SessionStatistics(generated_at=now, validity_minutes=self._validity_minutes())

    def _coerce_reason(self, reason) -> TerminationReason:
        try:
            return TerminationReason(reason)
        except ValueError:
            raise ValidationError(f"Unknown termination reason: {reason}", field='reason')

    def _supersede_current_session(self, user_id: str) -> None:
        current_id = self.session_store.get_user_session_id(user_id)
        if current_id is None:
            return

        current = self.session_store.load(current_id)
        if current is None:
            # Pointer outlived its record
            self.session_store.release_user_pointer(user_id, current_id)
            self.session_store.remove_from_index(current_id)
            return

        state = current.state_at(self.clock(), self.inactivity_timeout)
        reason = _EVICTION_REASONS.get(state, TerminationReason.SUPERSEDED)
        self._destroy(current, reason, current.ip_address)

        if reason is TerminationReason.SUPERSEDED:
            logger.info(f"Session {current_id} of user {user_id} superseded by a new login")

    def _load_valid_session(self, session_id: str, now: datetime) -> Optional[SessionInfo]:
        session = self.session_store.load(session_id)
        if session is None:
            return None

        state = session.state_at(now, self.inactivity_timeout)
        if state is SessionState.ACTIVE:
            return session

        self._destroy(session, _EVICTION_REASONS[state], session.ip_address)
        logger.info(f"Session {session_id} evicted ({state.value})")
        return None

    def _destroy(self, session: SessionInfo, reason: TerminationReason, ip_address: str) -> bool:
        """
        Remove a session's record, pointer and index entry.

        Only the caller whose delete removed the record emits the audit
        event, so concurrent terminations report the session once.
        """
        deleted = self.session_store.delete(session.session_id)
        self.session_store.release_user_pointer(session.user_id, session.session_id)
        self.session_store.remove_from_index(session.session_id)

        if not deleted:
            return False

        self._emit_logout(session, reason, ip_address)
        self._record_activity(session, SessionActivityType.SESSION_TERMINATED, ip_address, self.clock())
        return True

    def _scan_sessions(self, now: datetime) -> Tuple[List[SessionInfo], int]:
        sessions = []
        dangling = []
        evicted = 0

        for session_id in self.session_store.indexed_session_ids():
            session = self.session_store.load(session_id)
            if session is None:
                dangling.append(session_id)
                continue

            state = session.state_at(now, self.inactivity_timeout)
            if state is SessionState.ACTIVE:
                sessions.append(session)
            elif self._destroy(session, _EVICTION_REASONS[state], session.ip_address):
                evicted += 1

        if dangling:
            self.session_store.remove_from_index(*dangling)
            logger.debug(f"Removed {len(dangling)} dangling session index entries")

        return sessions, evicted

    def _calculate_statistics(self, now: datetime) -> SessionStatistics:
        sessions, _ = self._scan_sessions(now)

        today_logins = [s for s in sessions if s.login_time.date() == now.date()]
        durations = [s.duration_minutes(now) for s in sessions]

        recent_ips = []
        for session in sorted(sessions, key=lambda s: s.last_activity_time, reverse=True):
            if session.ip_address and session.ip_address not in recent_ips:
                recent_ips.append(session.ip_address)
            if len(recent_ips) >= RECENT_ACTIVE_IP_LIMIT:
                break

        return SessionStatistics(
            total_online_users=len({s.user_id for s in sessions}),
            total_active_sessions=len(sessions),
            today_login_users=len({s.user_id for s in today_logins}),
            average_session_duration_minutes=(
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
            max_session_duration_minutes=max(durations) if durations else 0,
            users_by_role=dict(Counter(s.role for s in sessions)),
            sessions_by_device=dict(Counter(s.device_type for s in sessions)),
            sessions_by_browser=dict(Counter(s.browser_type for s in sessions)),
            sessions_by_os=dict(Counter(s.os_type for s in sessions)),
            recent_active_ips=recent_ips,
            logins_by_hour=dict(Counter(s.login_time.hour for s in today_logins)),
            generated_at=now,
            validity_minutes=self._validity_minutes(),
        )

    def _validity_minutes(self) -> int:
        return max(1, self.settings.statistics_cache_seconds // 60)

    def _record_activity(self, session: SessionInfo, activity: SessionActivityType,
                         ip_address: str, now: datetime) -> None:
        try:
            self.session_store.record_activity(
                session.session_id,
                SessionActivityRecord(timestamp=now, activity=activity.value, ip_address=ip_address or ''),
                self.settings.activity_history_size,
                self.settings.absolute_lifetime_seconds,
            )
        except StoreUnavailableError as e:
            logger.warning(
                f"Failed to record {activity.value} for session {session.session_id}: {e}"
            )

    def _emit_login(self, session: SessionInfo) -> None:
        try:
            self.audit_sink.log_user_login(
                UserIdentity(session.user_id, session.username, session.role),
                session.ip_address,
                session.user_agent,
                LoginResult.SUCCESS,
            )
        except Exception as e:
            logger.error(f"Failed to emit login audit event for session {session.session_id}: {e}")

    def _emit_logout(self, session: SessionInfo, reason: TerminationReason, ip_address: str) -> None:
        try:
            self.audit_sink.log_user_logout(session.user_id, session.username, ip_address, reason)
        except Exception as e:
            logger.error(f"Failed to emit logout audit event for session {session.session_id}: {e}")
