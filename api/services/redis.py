# SPDX-License-Identifier: Apache-2.0

"""
Redis-backed key-value store.

Versioned values are stored as hashes {value, version}; conditional writes run
as Lua scripts so each check-and-write is a single atomic step on the server.
Lists and counters map directly onto RPUSH/LRANGE and INCRBY.
"""

import os
import logging
from typing import Any, Dict, List, Optional

import redis
from opentelemetry import trace

from services.kv_store import KeyValueStore, StoreUnavailableError, VersionedValue

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

_SET_IF_ABSENT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], 'value', ARGV[1], 'version', 1)
return 1
"""

_COMPARE_AND_SET = """
local current = redis.call('HGET', KEYS[1], 'version')
if ARGV[2] == '' then
    if current then
        return 0
    end
    redis.call('HSET', KEYS[1], 'value', ARGV[1], 'version', 1)
    return 1
end
if (not current) or current ~= ARGV[2] then
    return 0
end
redis.call('HSET', KEYS[1], 'value', ARGV[1], 'version', tonumber(current) + 1)
return 1
"""

_DELETE_IF_VERSION = """
local current = redis.call('HGET', KEYS[1], 'version')
if (not current) or current ~= ARGV[1] then
    return 0
end
redis.call('DEL', KEYS[1])
return 1
"""


class RedisKeyValueStore(KeyValueStore):
    """
    Key-value store on a standard Redis server (redis-py client).

    All keys are namespaced with a prefix so several deployments can share one
    Redis instance.
    """

    backend_name = "redis"

    def __init__(self, redis_url: Optional[str] = None, key_prefix: Optional[str] = None, client=None):
        """
        Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (redis://host:port/db)
            key_prefix: Namespace prepended to every key
            client: Pre-built redis client (mainly for tests)
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.key_prefix = key_prefix if key_prefix is not None else os.getenv("STORE_KEY_PREFIX", "relief")
        self.client = client if client is not None else redis.from_url(self.redis_url, decode_responses=True)

        self._set_if_absent = self.client.register_script(_SET_IF_ABSENT)
        self._compare_and_set = self.client.register_script(_COMPARE_AND_SET)
        self._delete_if_version = self.client.register_script(_DELETE_IF_VERSION)

        logger.info(f"Redis store initialized with prefix '{self.key_prefix}'")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def _handle_redis_error(self, operation: str, key: str, error: Exception) -> None:
        logger.error(f"Redis {operation} failed for key {key}: {str(error)}")
        raise StoreUnavailableError(f"Redis {operation} failed: {str(error)}") from error

    def get(self, key: str) -> Optional[VersionedValue]:
        with tracer.start_as_current_span("redis.get") as span:
            span.set_attribute("redis.key", key)
            try:
                value, version = self.client.hmget(self._key(key), ["value", "version"])
            except redis.RedisError as e:
                span.set_attribute("redis.result", "error")
                self._handle_redis_error("get", key, e)

            if value is None or version is None:
                span.set_attribute("redis.result", "not_found")
                return None
            span.set_attribute("redis.result", "found")
            return VersionedValue(value=value, version=int(version))

    def set_if_absent(self, key: str, value: str) -> bool:
        with tracer.start_as_current_span("redis.set_if_absent") as span:
            span.set_attribute("redis.key", key)
            try:
                created = bool(int(self._set_if_absent(keys=[self._key(key)], args=[value])))
            except redis.RedisError as e:
                self._handle_redis_error("set_if_absent", key, e)
            span.set_attribute("redis.result", "created" if created else "exists")
            return created

    def compare_and_set(self, key: str, value: str, expected_version: Optional[int]) -> bool:
        with tracer.start_as_current_span("redis.compare_and_set") as span:
            span.set_attributes({
                "redis.key": key,
                "redis.expected_version": expected_version if expected_version is not None else 0
            })
            expected = "" if expected_version is None else str(expected_version)
            try:
                swapped = bool(int(self._compare_and_set(keys=[self._key(key)], args=[value, expected])))
            except redis.RedisError as e:
                self._handle_redis_error("compare_and_set", key, e)
            span.set_attribute("redis.result", "swapped" if swapped else "conflict")
            return swapped

    def delete_if_version(self, key: str, expected_version: int) -> bool:
        with tracer.start_as_current_span("redis.delete_if_version") as span:
            span.set_attribute("redis.key", key)
            try:
                return bool(int(self._delete_if_version(keys=[self._key(key)], args=[str(expected_version)])))
            except redis.RedisError as e:
                self._handle_redis_error("delete_if_version", key, e)

    def append(self, key: str, value: str) -> int:
        with tracer.start_as_current_span("redis.append") as span:
            span.set_attribute("redis.key", key)
            try:
                return int(self.client.rpush(self._key(key), value))
            except redis.RedisError as e:
                self._handle_redis_error("append", key, e)

    def read_list(self, key: str) -> List[str]:
        try:
            return list(self.client.lrange(self._key(key), 0, -1))
        except redis.RedisError as e:
            self._handle_redis_error("read_list", key, e)

    def list_length(self, key: str) -> int:
        try:
            return int(self.client.llen(self._key(key)))
        except redis.RedisError as e:
            self._handle_redis_error("list_length", key, e)

    def increment(self, key: str, amount: int = 1) -> int:
        try:
            return int(self.client.incrby(self._key(key), amount))
        except redis.RedisError as e:
            self._handle_redis_error("increment", key, e)

    def read_counter(self, key: str) -> int:
        try:
            value = self.client.get(self._key(key))
        except redis.RedisError as e:
            self._handle_redis_error("read_counter", key, e)
        return int(value) if value is not None else 0

    def health_check(self) -> Dict[str, Any]:
        """Check Redis health status."""
        try:
            if not self.client.ping():
                return {'status': 'unhealthy', 'backend': self.backend_name, 'error': 'Redis ping failed'}
            info = self.client.info()
            return {
                'status': 'healthy',
                'backend': self.backend_name,
                'redis_version': info.get('redis_version', 'unknown'),
                'connected_clients': info.get('connected_clients', 0)
            }
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {str(e)}")
            return {'status': 'unhealthy', 'backend': self.backend_name, 'error': str(e)}

    def close(self) -> None:
        self.client.close()
