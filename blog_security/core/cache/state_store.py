"""
Shared state store abstraction and its Redis implementation.

Everything the session manager and the rate limiter know lives behind this
interface. Every method is a single atomic operation against the store; any
failure to reach the store surfaces as StoreUnavailableError.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import List, NamedTuple, Optional, Set

import redis

from ..exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


class WindowHit(NamedTuple):
    """Result of one atomic sliding-window admission attempt."""
    count: int
    limit: int
    admitted: bool
    oldest_ms: Optional[int]


class StateStore(ABC):
    """
    Key-value store with per-key TTLs and the atomic primitives the
    security runtime needs.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None,
            only_if_exists: bool = False) -> bool:
        """
        Store a value.

        Args:
            key: Store key
            value: String value
            ttl_seconds: Time to live; None keeps the key until deleted
            only_if_exists: Write only when the key is already present

        Returns:
            True if the value was written
        """

    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        pass

    @abstractmethod
    def delete(self, *keys: str) -> int:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def sadd(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    def srem(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    def smembers(self, key: str) -> Set[str]:
        pass

    @abstractmethod
    def compare_and_set(self, key: str, expected: Optional[str], value: str,
                        ttl_seconds: int) -> bool:
        """
        Write ``value`` only if the key currently holds ``expected``.

        An ``expected`` of None means the key must be absent.
        """

    @abstractmethod
    def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete the key only if it currently holds ``expected``."""

    @abstractmethod
    def sliding_window_hit(self, key: str, limit: int, window_seconds: int,
                           now_ms: int, member: str) -> WindowHit:
        """
        Prune, count and conditionally record one request in a single step.

        Entries older than ``window_seconds`` before ``now_ms`` are dropped.
        The request is recorded under ``member`` only if fewer than ``limit``
        entries remain. Denied requests are never recorded.
        """

    @abstractmethod
    def sliding_window_count(self, key: str, window_seconds: int, now_ms: int) -> int:
        pass

    @abstractmethod
    def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        """Prepend to a list, keep its newest ``max_len`` entries and refresh its TTL."""

    @abstractmethod
    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass


def _ttl(ttl_seconds) -> int:
    # Redis rejects non-positive expirations
    return max(1, int(ttl_seconds))


class RedisStateStore(StateStore):
    """
    StateStore backed by Redis. Multi-step operations run as Lua scripts so
    that they execute indivisibly on the server.
    """

    SLIDING_WINDOW_SCRIPT = """
    local window_key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local member = ARGV[4]

    -- Remove expired entries
    redis.call('ZREMRANGEBYSCORE', window_key, '-inf', now_ms - window_ms)

    local current_count = redis.call('ZCARD', window_key)
    local admitted = 0

    if current_count < limit then
        redis.call('ZADD', window_key, now_ms, member)
        current_count = current_count + 1
        admitted = 1
    end

    if current_count > 0 then
        redis.call('PEXPIRE', window_key, window_ms)
    end

    local oldest_ms = -1
    local oldest_entries = redis.call('ZRANGE', window_key, 0, 0, 'WITHSCORES')
    if #oldest_entries > 0 then
        oldest_ms = tonumber(oldest_entries[2])
    end

    return {current_count, limit, admitted, oldest_ms}
    """

    COMPARE_AND_SET_SCRIPT = """
    local current = redis.call('GET', KEYS[1])
    if ARGV[2] == '1' then
        if current then
            return 0
        end
    elseif current ~= ARGV[1] then
        return 0
    end
    redis.call('SET', KEYS[1], ARGV[3], 'EX', ARGV[4])
    return 1
    """

    COMPARE_AND_DELETE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_conn: redis.Redis):
        self.redis_conn = redis_conn
        self._sliding_window = redis_conn.register_script(self.SLIDING_WINDOW_SCRIPT)
        self._compare_and_set = redis_conn.register_script(self.COMPARE_AND_SET_SCRIPT)
        self._compare_and_delete = redis_conn.register_script(self.COMPARE_AND_DELETE_SCRIPT)

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except redis.RedisError as e:
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(f"Redis {operation} failed: {e}", operation=operation) from e

    def get(self, key: str) -> Optional[str]:
        with self._translate_errors('get'):
            return self.redis_conn.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None,
            only_if_exists: bool = False) -> bool:
        ex = _ttl(ttl_seconds) if ttl_seconds is not None else None
        with self._translate_errors('set'):
            return bool(self.redis_conn.set(key, value, ex=ex, xx=only_if_exists))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._translate_errors('set_if_absent'):
            return bool(self.redis_conn.set(key, value, ex=_ttl(ttl_seconds), nx=True))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate_errors('delete'):
            return int(self.redis_conn.delete(*keys))

    def exists(self, key: str) -> bool:
        with self._translate_errors('exists'):
            return bool(self.redis_conn.exists(key))

    def sadd(self, key: str, *members: str) -> int:
        with self._translate_errors('sadd'):
            return int(self.redis_conn.sadd(key, *members))

    def srem(self, key: str, *members: str) -> int:
        with self._translate_errors('srem'):
            return int(self.redis_conn.srem(key, *members))

    def smembers(self, key: str) -> Set[str]:
        with self._translate_errors('smembers'):
            return set(self.redis_conn.smembers(key))

    def compare_and_set(self, key: str, expected: Optional[str], value: str,
                        ttl_seconds: int) -> bool:
        args = [
            expected if expected is not None else '',
            '1' if expected is None else '0',
            value,
            _ttl(ttl_seconds),
        ]
        with self._translate_errors('compare_and_set'):
            return bool(self._compare_and_set(keys=[key], args=args))

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._translate_errors('compare_and_delete'):
            return bool(self._compare_and_delete(keys=[key], args=[expected]))

    def sliding_window_hit(self, key: str, limit: int, window_seconds: int,
                           now_ms: int, member: str) -> WindowHit:
        with self._translate_errors('sliding_window_hit'):
            result = self._sliding_window(
                keys=[key],
                args=[limit, window_seconds * 1000, now_ms, member]
            )
            try:
                current_count, rate_limit, admitted, oldest_ms = (int(value) for value in result)
            except (TypeError, ValueError) as e:
                logger.error(f"Malformed sliding window reply {result!r}: {e}")
                raise StoreUnavailableError(
                    f"Malformed sliding window reply: {result!r}", operation='sliding_window_hit'
                ) from e

        return WindowHit(
            count=current_count,
            limit=rate_limit,
            admitted=bool(admitted),
            oldest_ms=oldest_ms if oldest_ms >= 0 else None,
        )

    def sliding_window_count(self, key: str, window_seconds: int, now_ms: int) -> int:
        cutoff = now_ms - window_seconds * 1000
        with self._translate_errors('sliding_window_count'):
            return int(self.redis_conn.zcount(key, f"({cutoff}", '+inf'))

    def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        with self._translate_errors('push_capped'):
            pipe = self.redis_conn.pipeline()
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_len - 1)
            pipe.expire(key, _ttl(ttl_seconds))
            pipe.execute()

    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        with self._translate_errors('list_range'):
            return list(self.redis_conn.lrange(key, start, end))

    def ping(self) -> bool:
        with self._translate_errors('ping'):
            return bool(self.redis_conn.ping())
