"""
Redis connection management for the shared state store.

Supports a standalone server or a Sentinel-managed master, with pooled
connections reused per purpose.
"""

import logging
import time
from typing import Any, Dict, Optional

import redis
from redis.sentinel import Sentinel

from ...settings.base import RedisSettings

logger = logging.getLogger(__name__)


class RedisClusterConfig:
    """
    Redis high availability configuration.
    Chooses between a Sentinel-managed master and a standalone server.
    """

    def __init__(self, settings: RedisSettings):
        self.settings = settings

    def get_redis_connection(self) -> redis.Redis:
        """
        Get Redis connection based on configuration (sentinel or standalone).

        Returns:
            Redis connection instance
        """
        if self.settings.sentinel_enabled and self.settings.sentinel_hosts:
            return self._get_sentinel_connection()
        return self._get_standalone_connection()

    def _get_sentinel_connection(self) -> redis.Redis:
        """Get Redis connection through Sentinel for high availability."""
        try:
            sentinel = Sentinel(
                list(self.settings.sentinel_hosts),
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_timeout,
                retry_on_timeout=True
            )

            # Writes must go to the master
            return sentinel.master_for(
                self.settings.master_name,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_timeout,
                decode_responses=True,
                max_connections=self.settings.max_connections,
                retry_on_timeout=True
            )
        except Exception as e:
            logger.error(f"Failed to connect to Redis via Sentinel: {e}")
            raise

    def _get_standalone_connection(self) -> redis.Redis:
        """Get standalone Redis connection."""
        try:
            return redis.from_url(
                self.settings.url,
                decode_responses=True,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_timeout,
                retry_on_timeout=True,
                max_connections=self.settings.max_connections,
                health_check_interval=30
            )
        except Exception as e:
            logger.error(f"Failed to connect to standalone Redis: {e}")
            raise


class RedisConnectionManager:
    """
    Manages Redis connections for different purposes with connection pooling.
    """

    def __init__(self, settings: Optional[RedisSettings] = None):
        self.config = RedisClusterConfig(settings or RedisSettings())
        self._connections = {}

    def get_connection(self, purpose: str = 'default') -> redis.Redis:
        """
        Get Redis connection for specific purpose.

        Args:
            purpose: Connection purpose (default, sessions, rate_limit)

        Returns:
            Redis connection instance
        """
        if purpose not in self._connections:
            try:
                self._connections[purpose] = self.config.get_redis_connection()
                logger.info(f"Created Redis connection for {purpose}")
            except Exception as e:
                logger.error(f"Failed to create Redis connection for {purpose}: {e}")
                raise

        return self._connections[purpose]

    def health_check(self) -> Dict[str, bool]:
        """
        Perform health check on all Redis connections.

        Returns:
            Dictionary with connection status for each purpose
        """
        health_status = {}

        for purpose, connection in self._connections.items():
            try:
                connection.ping()
                health_status[purpose] = True
                logger.debug(f"Redis connection {purpose} is healthy")
            except redis.RedisError as e:
                health_status[purpose] = False
                logger.error(f"Redis connection {purpose} failed health check: {e}")

        return health_status

    def close_connections(self):
        """Close all Redis connections."""
        for purpose, connection in self._connections.items():
            try:
                connection.close()
                logger.info(f"Closed Redis connection: {purpose}")
            except redis.RedisError as e:
                logger.error(f"Error closing Redis connection {purpose}: {e}")

        self._connections.clear()


def redis_health_check(manager: RedisConnectionManager) -> Dict[str, Any]:
    """
    Redis health check.

    Args:
        manager: Connection manager whose default connection is probed

    Returns:
        Health check results with connection status and server details
    """
    start_time = time.time()

    try:
        redis_conn = manager.get_connection('default')

        test_key = 'health_check_test'
        redis_conn.set(test_key, 'test_value', ex=10)
        redis_conn.get(test_key)
        redis_conn.delete(test_key)

        redis_info = redis_conn.info()

        response_time = (time.time() - start_time) * 1000

        return {
            'status': 'healthy',
            'response_time_ms': round(response_time, 2),
            'redis_version': redis_info.get('redis_version'),
            'connected_clients': redis_info.get('connected_clients'),
            'used_memory_human': redis_info.get('used_memory_human'),
            'connections': manager.health_check()
        }
    except redis.RedisError as e:
        return {
            'status': 'unhealthy',
            'error': str(e),
            'response_time_ms': (time.time() - start_time) * 1000
        }
