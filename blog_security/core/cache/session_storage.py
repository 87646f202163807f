"""
Session record storage with integrity protection.

Translates session records, the per-user session pointer, the active-session
index, activity trails and cached statistics to and from the shared store's
key namespace.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional, Set

from ..exceptions import SessionIntegrityError
from ..models.session import SessionActivityRecord, SessionInfo, SessionStatistics
from .cache_manager import CacheKeyManager
from .state_store import StateStore

logger = logging.getLogger(__name__)


class SessionRecordSerializer:
    """
    Session record serializer with integrity checking.
    """

    VERSION = '1.0'

    def __init__(self, secret_key: str):
        self.secret_key = secret_key.encode()

    def _sign(self, json_data: str) -> str:
        return hmac.new(self.secret_key, json_data.encode(), hashlib.sha256).hexdigest()

    def serialize(self, session_data: Dict[str, Any]) -> str:
        """
        Serialize session data with integrity protection.

        Args:
            session_data: Session data dictionary

        Returns:
            Serialized and signed session data
        """
        payload = dict(session_data)
        payload['_version'] = self.VERSION

        json_data = json.dumps(payload, default=str, sort_keys=True)

        return json.dumps({
            'data': json_data,
            'integrity_hash': self._sign(json_data),
        })

    def deserialize(self, serialized_data: str) -> Dict[str, Any]:
        """
        Deserialize and verify session data integrity.

        Args:
            serialized_data: Serialized session data

        Returns:
            Deserialized session data dictionary

        Raises:
            SessionIntegrityError: If the data is malformed or was tampered with
        """
        try:
            final_data = json.loads(serialized_data)
            json_data = final_data['data']
            stored_hash = final_data['integrity_hash']
        except (ValueError, KeyError, TypeError) as e:
            raise SessionIntegrityError(f"Malformed session record: {e}")

        if not hmac.compare_digest(str(stored_hash), self._sign(json_data)):
            raise SessionIntegrityError()

        session_data = json.loads(json_data)
        session_data.pop('_version', None)
        return session_data


class SessionStore:
    """
    Store adapter for session state.

    Store errors are not handled here; they propagate as StoreUnavailableError
    so the session manager can decide whether to fail open or closed.
    """

    def __init__(self, store: StateStore, serializer: SessionRecordSerializer):
        self.store = store
        self.serializer = serializer

    # Session records

    def load(self, session_id: str) -> Optional[SessionInfo]:
        """
        Load a session record.

        A record that fails its integrity check is deleted and reported as absent.
        """
        key = CacheKeyManager.session_data_key(session_id)
        raw = self.store.get(key)
        if raw is None:
            return None

        try:
            return SessionInfo.from_dict(self.serializer.deserialize(raw))
        except (SessionIntegrityError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable session record {session_id}: {e}")
            self.store.delete(key)
            return None

    def save(self, session: SessionInfo, ttl_seconds: int, only_if_exists: bool = False) -> bool:
        return self.store.set(
            CacheKeyManager.session_data_key(session.session_id),
            self.serializer.serialize(session.to_dict()),
            ttl_seconds=ttl_seconds,
            only_if_exists=only_if_exists,
        )

    def delete(self, session_id: str) -> bool:
        return self.store.delete(CacheKeyManager.session_data_key(session_id)) > 0

    # Per-user pointer

    def get_user_session_id(self, user_id: str) -> Optional[str]:
        return self.store.get(CacheKeyManager.user_session_pointer_key(user_id))

    def install_user_pointer(self, user_id: str, session_id: str, ttl_seconds: int) -> bool:
        """Point the user at ``session_id`` only if no pointer currently exists."""
        return self.store.compare_and_set(
            CacheKeyManager.user_session_pointer_key(user_id), None, session_id, ttl_seconds
        )

    def release_user_pointer(self, user_id: str, session_id: str) -> bool:
        """Remove the user's pointer only if it still names ``session_id``."""
        return self.store.compare_and_delete(
            CacheKeyManager.user_session_pointer_key(user_id), session_id
        )

    # Active-session index

    def add_to_index(self, session_id: str) -> None:
        self.store.sadd(CacheKeyManager.active_session_index_key(), session_id)

    def remove_from_index(self, *session_ids: str) -> None:
        if session_ids:
            self.store.srem(CacheKeyManager.active_session_index_key(), *session_ids)

    def indexed_session_ids(self) -> Set[str]:
        return self.store.smembers(CacheKeyManager.active_session_index_key())

    # Activity trail

    def record_activity(self, session_id: str, record: SessionActivityRecord,
                        max_len: int, ttl_seconds: int) -> None:
        self.store.push_capped(
            CacheKeyManager.session_activity_key(session_id),
            record.serialize(),
            max_len,
            ttl_seconds,
        )

    def load_activity(self, session_id: str) -> List[SessionActivityRecord]:
        raw_records = self.store.list_range(CacheKeyManager.session_activity_key(session_id))
        records = []
        for raw in raw_records:
            record = SessionActivityRecord.parse(raw)
            if record is not None:
                records.append(record)
        return records

    # Statistics cache

    def load_statistics(self) -> Optional[SessionStatistics]:
        raw = self.store.get(CacheKeyManager.session_statistics_key())
        if raw is None:
            return None
        try:
            return SessionStatistics.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session statistics cache: {e}")
            return None

    def save_statistics(self, statistics: SessionStatistics, ttl_seconds: int) -> None:
        self.store.set(
            CacheKeyManager.session_statistics_key(),
            json.dumps(statistics.to_dict()),
            ttl_seconds=ttl_seconds,
        )
