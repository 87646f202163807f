"""
Tests for the session manager.
"""

import threading
from unittest import TestCase
from unittest.mock import Mock, patch

from blog_security.core.cache.cache_manager import CacheKeyManager
from blog_security.core.cache.memory_store import InMemoryStateStore
from blog_security.core.cache.session_storage import SessionRecordSerializer, SessionStore
from blog_security.core.exceptions import (
    SessionConflictError,
    StoreUnavailableError,
    ValidationError,
)
from blog_security.core.models.audit import LoginResult
from blog_security.core.models.session import (
    SessionActivityType,
    TerminationReason,
    UserIdentity,
)
from blog_security.core.services.session_service import SessionManager
from blog_security.settings.base import SessionSettings

from .helpers import CHROME_WINDOWS_UA, IPHONE_SAFARI_UA, ManualClock, RecordingAuditSink


class SessionManagerTestMixin:
    """Builds a session manager over an in-memory store."""

    def build_manager(self, **settings_overrides):
        settings_overrides.setdefault('secret_key', 'test-secret')
        self.clock = ManualClock()
        self.store = InMemoryStateStore(clock=self.clock)
        self.audit = RecordingAuditSink()
        self.settings = SessionSettings(**settings_overrides)
        self.session_store = SessionStore(self.store, SessionRecordSerializer('test-secret'))
        self.manager = SessionManager(self.session_store, self.settings, self.audit, clock=self.clock)

    def create(self, session_id, user=None, ip_address='203.0.113.10', user_agent=CHROME_WINDOWS_UA):
        return self.manager.create_session(
            user or self.alice, session_id, ip_address, user_agent,
            access_token=f'access-{session_id}', refresh_token=f'refresh-{session_id}',
        )


class SessionCreationTest(SessionManagerTestMixin, TestCase):
    """Test session creation and single-session enforcement."""

    def setUp(self):
        self.build_manager()
        self.alice = UserIdentity('u-1', 'alice', 'ADMIN')
        self.bob = UserIdentity('u-2', 'bob', 'USER')

    def test_create_session_populates_record(self):
        """Test a new session carries timestamps and device classification."""
        session = self.create('s1')

        self.assertEqual(session.user_id, 'u-1')
        self.assertEqual(session.role, 'ADMIN')
        self.assertEqual(session.device_type, 'Desktop')
        self.assertEqual(session.browser_type, 'Chrome')
        self.assertEqual(session.os_type, 'Windows')
        self.assertEqual(session.login_time, self.clock.now)
        self.assertEqual(session.last_activity_time, self.clock.now)
        self.assertEqual(
            (session.expiration_time - session.login_time).total_seconds(),
            self.settings.absolute_lifetime_seconds,
        )
        self.assertTrue(session.active)

    def test_create_session_installs_pointer_index_and_audit(self):
        """Test creation installs the user pointer and emits a login event."""
        self.create('s1')

        self.assertEqual(self.session_store.get_user_session_id('u-1'), 's1')
        self.assertIn('s1', self.session_store.indexed_session_ids())
        self.assertEqual(len(self.audit.logins), 1)
        user, ip_address, _, result = self.audit.logins[0]
        self.assertEqual(user.user_id, 'u-1')
        self.assertEqual(ip_address, '203.0.113.10')
        self.assertEqual(result, LoginResult.SUCCESS)

    def test_record_ttl_matches_absolute_lifetime(self):
        """Test the stored record expires with the session."""
        self.create('s1')

        ttl = self.store.ttl(CacheKeyManager.session_data_key('s1'))
        self.assertAlmostEqual(ttl, self.settings.absolute_lifetime_seconds, delta=1)

    def test_second_login_supersedes_first(self):
        """Test a second login terminates the first session with SUPERSEDED."""
        self.create('s1')
        self.create('s2', ip_address='198.51.100.7')

        self.assertIsNone(self.manager.get_session('s1'))
        self.assertEqual(self.manager.get_session('s2').session_id, 's2')
        self.assertEqual(self.audit.logout_reasons('u-1'), [TerminationReason.SUPERSEDED])
        self.assertEqual(self.manager.get_user_active_session('u-1').session_id, 's2')
        self.assertNotIn('s1', self.session_store.indexed_session_ids())

    def test_sessions_of_different_users_coexist(self):
        """Test single-session enforcement is per user."""
        self.create('s1')
        self.create('s2', user=self.bob)

        self.assertIsNotNone(self.manager.get_session('s1'))
        self.assertIsNotNone(self.manager.get_session('s2'))
        self.assertEqual(self.audit.logouts, [])

    def test_stale_pointer_is_released(self):
        """Test a pointer whose record vanished does not block a new login."""
        self.create('s1')
        self.store.delete(CacheKeyManager.session_data_key('s1'))

        self.create('s2')

        self.assertEqual(self.session_store.get_user_session_id('u-1'), 's2')
        self.assertEqual(self.audit.logouts, [])

    def test_concurrent_logins_leave_one_session(self):
        """Test concurrent logins for one user leave exactly one valid session."""
        self.build_manager(max_supersede_attempts=100)
        session_ids = [f'c{i}' for i in range(8)]
        errors = []
        barrier = threading.Barrier(len(session_ids))

        def login(session_id):
            barrier.wait()
            try:
                self.create(session_id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=login, args=(sid,)) for sid in session_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        valid = [sid for sid in session_ids if self.manager.get_session(sid) is not None]
        self.assertEqual(len(valid), 1)
        self.assertEqual(self.session_store.get_user_session_id('u-1'), valid[0])

    def test_conflict_raised_when_pointer_never_installs(self):
        """Test running out of attempts raises SessionConflictError."""
        with patch.object(self.session_store, 'install_user_pointer', return_value=False):
            with self.assertRaises(SessionConflictError) as ctx:
                self.create('s1')

        self.assertEqual(ctx.exception.details['attempts'], self.settings.max_supersede_attempts)
        self.assertFalse(self.store.exists(CacheKeyManager.session_data_key('s1')))
        self.assertEqual(self.audit.logins, [])

    def test_create_session_propagates_store_errors(self):
        """Test store failures during login are not swallowed."""
        with patch.object(self.store, 'get', side_effect=StoreUnavailableError()):
            with self.assertRaises(StoreUnavailableError):
                self.create('s1')

    def test_create_session_validates_arguments(self):
        """Test missing identifiers are rejected."""
        with self.assertRaises(ValidationError):
            self.create('')
        with self.assertRaises(ValidationError):
            self.create('s1', user=UserIdentity('', 'nobody'))
        with self.assertRaises(ValidationError):
            self.manager.create_session(None, 's1', '203.0.113.10', CHROME_WINDOWS_UA)

    def test_audit_failure_does_not_fail_login(self):
        """Test a failing audit sink does not affect session creation."""
        self.manager.audit_sink = Mock()
        self.manager.audit_sink.log_user_login.side_effect = RuntimeError('sink down')

        session = self.create('s1')

        self.assertIsNotNone(self.manager.get_session(session.session_id))


class SessionExpiryTest(SessionManagerTestMixin, TestCase):
    """Test lazy inactivity and absolute expiry."""

    def setUp(self):
        self.build_manager()
        self.alice = UserIdentity('u-1', 'alice', 'ADMIN')

    def test_inactivity_timeout(self):
        """Test a session is valid at +29 minutes and evicted at +31 minutes."""
        self.create('s1')

        self.clock.advance(minutes=29)
        self.assertIsNotNone(self.manager.get_session('s1'))

        self.clock.advance(minutes=2)
        self.assertIsNone(self.manager.get_session('s1'))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.TIMEOUT])
        self.assertNotIn('s1', self.session_store.indexed_session_ids())
        self.assertIsNone(self.session_store.get_user_session_id('u-1'))

    def test_get_session_does_not_refresh_activity(self):
        """Test reads leave last activity untouched."""
        session = self.create('s1')

        self.clock.advance(minutes=10)
        fetched = self.manager.get_session('s1')

        self.assertEqual(fetched.last_activity_time, session.last_activity_time)

    def test_activity_update_extends_inactivity_window(self):
        """Test refreshed sessions survive past the original idle deadline."""
        self.create('s1')

        self.clock.advance(minutes=20)
        self.assertTrue(self.manager.update_session_activity('s1', '203.0.113.10'))

        self.clock.advance(minutes=25)
        session = self.manager.get_session('s1')
        self.assertIsNotNone(session)
        self.assertEqual(session.last_activity_time, self.clock.now.replace(minute=20))

    def test_activity_update_never_extends_absolute_lifetime(self):
        """Test the record TTL shrinks with the remaining lifetime."""
        self.build_manager(absolute_lifetime_seconds=3600, inactivity_timeout_seconds=1800)
        session = self.create('s1')

        for _ in range(2):
            self.clock.advance(minutes=20)
            self.assertTrue(self.manager.update_session_activity('s1'))

        ttl = self.store.ttl(CacheKeyManager.session_data_key('s1'))
        self.assertAlmostEqual(ttl, 1200, delta=1)
        self.assertEqual(self.manager.get_session('s1').expiration_time, session.expiration_time)

        self.clock.advance(minutes=20)
        self.assertIsNone(self.manager.get_session('s1'))
        self.assertFalse(self.manager.update_session_activity('s1'))

    def test_expired_record_is_evicted_with_expired_reason(self):
        """Test a record read past its absolute expiry is evicted as EXPIRED."""
        self.build_manager(absolute_lifetime_seconds=3600, inactivity_timeout_seconds=7200)
        session = self.create('s1')
        # Simulate a store that kept the record longer than its lifetime
        self.session_store.save(session, 7200)

        self.clock.advance(minutes=61)

        self.assertIsNone(self.manager.get_session('s1'))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.EXPIRED])

    def test_update_does_not_resurrect_terminated_session(self):
        """Test an activity write racing a termination does not recreate the record."""
        session = self.create('s1')
        self.manager.terminate_session('s1')

        with patch.object(self.manager, '_load_valid_session', return_value=session):
            self.assertFalse(self.manager.update_session_activity('s1'))

        self.assertFalse(self.store.exists(CacheKeyManager.session_data_key('s1')))

    def test_cleanup_evicts_idle_sessions_and_dangling_ids(self):
        """Test the periodic sweep evicts idle sessions and prunes the index."""
        bob = UserIdentity('u-2', 'bob', 'USER')
        self.create('s1')
        self.clock.advance(minutes=20)
        self.create('s2', user=bob)
        self.session_store.add_to_index('ghost')
        self.clock.advance(minutes=15)

        evicted = self.manager.cleanup_expired_sessions()

        self.assertEqual(evicted, 1)
        self.assertEqual(self.session_store.indexed_session_ids(), {'s2'})
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.TIMEOUT])


class SessionTerminationTest(SessionManagerTestMixin, TestCase):
    """Test explicit termination and logout."""

    def setUp(self):
        self.build_manager()
        self.alice = UserIdentity('u-1', 'alice', 'ADMIN')

    def test_terminate_is_idempotent(self):
        """Test terminate, then get is absent and a second terminate is False."""
        self.create('s1')

        self.assertTrue(self.manager.terminate_session('s1', TerminationReason.ADMIN_REVOKE))
        self.assertIsNone(self.manager.get_session('s1'))
        self.assertFalse(self.manager.terminate_session('s1', TerminationReason.ADMIN_REVOKE))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.ADMIN_REVOKE])

    def test_terminate_releases_pointer_and_index(self):
        """Test termination clears the pointer and the index entry."""
        self.create('s1')
        self.manager.terminate_session('s1')

        self.assertIsNone(self.session_store.get_user_session_id('u-1'))
        self.assertNotIn('s1', self.session_store.indexed_session_ids())

    def test_terminate_accepts_reason_strings(self):
        """Test reason codes may be passed by value."""
        self.create('s1')
        self.assertTrue(self.manager.terminate_session('s1', 'CLEANUP'))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.CLEANUP])

    def test_terminate_rejects_unknown_reason(self):
        """Test an unknown reason code is a programming error."""
        self.create('s1')
        with self.assertRaises(ValidationError):
            self.manager.terminate_session('s1', 'BECAUSE')

    def test_user_logout_records_activity_trail(self):
        """Test logout is recorded in the activity trail, newest first."""
        self.create('s1')
        self.clock.advance(minutes=1)
        self.manager.update_session_activity('s1', '203.0.113.11')
        self.clock.advance(minutes=1)

        self.assertTrue(self.manager.user_logout('s1', '203.0.113.12'))

        activities = [record.activity for record in self.manager.get_session_activity('s1')]
        self.assertEqual(activities, [
            SessionActivityType.SESSION_TERMINATED.value,
            SessionActivityType.USER_LOGOUT.value,
            SessionActivityType.SESSION_ACTIVITY.value,
            SessionActivityType.SESSION_CREATED.value,
        ])
        self.assertEqual(self.audit.logouts[0][2], '203.0.113.12')
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.USER_LOGOUT])

    def test_user_logout_of_idle_session_evicts_with_timeout(self):
        """Test logging out an idle session reports the timeout, not the logout."""
        self.create('s1')
        self.clock.advance(minutes=31)

        self.assertFalse(self.manager.user_logout('s1'))
        self.assertIsNone(self.store.get(CacheKeyManager.session_data_key('s1')))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.TIMEOUT])

    def test_terminate_survives_activity_trail_failure(self):
        """Test an unwritable activity trail does not suppress the termination event."""
        self.create('s1')

        with patch.object(self.store, 'push_capped', side_effect=StoreUnavailableError()):
            self.assertTrue(self.manager.terminate_session('s1', TerminationReason.ADMIN_REVOKE))

        self.assertIsNone(self.manager.get_session('s1'))
        self.assertEqual(self.audit.logout_reasons(), [TerminationReason.ADMIN_REVOKE])

    def test_activity_trail_is_capped(self):
        """Test only the newest entries of the activity trail are kept."""
        self.build_manager(activity_history_size=3)
        self.create('s1')
        for _ in range(5):
            self.clock.advance(seconds=30)
            self.manager.update_session_activity('s1')

        self.assertEqual(len(self.manager.get_session_activity('s1')), 3)


class SessionFailureModeTest(SessionManagerTestMixin, TestCase):
    """Test session reads fail closed."""

    def setUp(self):
        self.build_manager()
        self.alice = UserIdentity('u-1', 'alice', 'ADMIN')

    def test_get_session_fails_closed(self):
        """Test store errors make sessions look absent."""
        self.create('s1')
        with patch.object(self.store, 'get', side_effect=StoreUnavailableError()):
            self.assertIsNone(self.manager.get_session('s1'))
            self.assertIsNone(self.manager.get_user_active_session('u-1'))
            self.assertFalse(self.manager.update_session_activity('s1'))
            self.assertFalse(self.manager.terminate_session('s1'))

    def test_get_session_validates_identifier(self):
        """Test a missing session ID is a programming error."""
        with self.assertRaises(ValidationError):
            self.manager.get_session(None)

    def test_tampered_record_is_discarded(self):
        """Test a record failing its integrity check is treated as absent."""
        self.create('s1')
        key = CacheKeyManager.session_data_key('s1')
        self.store.set(key, self.store.get(key).replace('ADMIN', 'SUPER'), ttl_seconds=60)

        self.assertIsNone(self.manager.get_session('s1'))
        self.assertFalse(self.store.exists(key))


class SessionStatisticsTest(SessionManagerTestMixin, TestCase):
    """Test statistics aggregation and caching."""

    def setUp(self):
        self.build_manager()
        self.alice = UserIdentity('u-1', 'alice', 'ADMIN')
        self.bob = UserIdentity('u-2', 'bob', 'USER')
        self.carol = UserIdentity('u-3', 'carol', 'USER')

    def test_statistics_aggregate_active_sessions(self):
        """Test counts are grouped by role, device, browser and OS."""
        self.create('s1', ip_address='203.0.113.1')
        self.clock.advance(minutes=10)
        self.create('s2', user=self.bob, ip_address='203.0.113.2', user_agent=IPHONE_SAFARI_UA)

        stats = self.manager.get_session_statistics()

        self.assertEqual(stats.total_online_users, 2)
        self.assertEqual(stats.total_active_sessions, 2)
        self.assertEqual(stats.today_login_users, 2)
        self.assertEqual(stats.users_by_role, {'ADMIN': 1, 'USER': 1})
        self.assertEqual(stats.sessions_by_device, {'Desktop': 1, 'Mobile': 1})
        self.assertEqual(stats.sessions_by_browser, {'Chrome': 1, 'Safari': 1})
        self.assertEqual(stats.sessions_by_os, {'Windows': 1, 'iOS': 1})
        self.assertEqual(stats.recent_active_ips, ['203.0.113.2', '203.0.113.1'])
        self.assertEqual(stats.logins_by_hour, {9: 2})
        self.assertEqual(stats.max_session_duration_minutes, 10)
        self.assertEqual(stats.average_session_duration_minutes, 5.0)
        self.assertEqual(stats.generated_at, self.clock.now)
        self.assertEqual(stats.validity_minutes, 5)
        self.assertEqual(stats.user_activity_rate, 100.0)

    def test_statistics_are_cached_until_stale(self):
        """Test the snapshot is reused while valid and recomputed afterwards."""
        self.create('s1')
        self.create('s2', user=self.bob)
        self.assertEqual(self.manager.get_session_statistics().total_active_sessions, 2)

        self.create('s3', user=self.carol)
        self.assertEqual(self.manager.get_session_statistics().total_active_sessions, 2)

        self.clock.advance(minutes=6)
        self.assertEqual(self.manager.get_session_statistics().total_active_sessions, 3)

    def test_force_refresh_bypasses_cache(self):
        """Test a forced refresh rescans the index."""
        self.create('s1')
        self.manager.get_session_statistics()
        self.create('s2', user=self.bob)

        stats = self.manager.get_session_statistics(force_refresh=True)

        self.assertEqual(stats.total_active_sessions, 2)

    def test_statistics_skip_evicted_sessions(self):
        """Test idle sessions found during the scan are evicted and not counted."""
        self.create('s1')
        self.clock.advance(minutes=31)
        self.create('s2', user=self.bob)

        stats = self.manager.get_session_statistics()

        self.assertEqual(stats.total_active_sessions, 1)
        self.assertEqual(self.audit.logout_reasons('u-1'), [TerminationReason.TIMEOUT])

    def test_statistics_empty_when_store_unavailable(self):
        """Test store failures produce an empty snapshot."""
        self.create('s1')
        with patch.object(self.store, 'get', side_effect=StoreUnavailableError()):
            stats = self.manager.get_session_statistics()

        self.assertEqual(stats.total_active_sessions, 0)
        self.assertEqual(stats.generated_at, self.clock.now)

    def test_get_all_active_sessions(self):
        """Test listing returns only valid sessions."""
        self.create('s1')
        self.create('s2', user=self.bob)
        self.manager.terminate_session('s1')

        sessions = self.manager.get_all_active_sessions()

        self.assertEqual([s.session_id for s in sessions], ['s2'])
