# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the Redis key-value store with a mocked redis-py client.
"""

import pytest
import redis
from unittest.mock import MagicMock

from services.kv_store import StoreUnavailableError, VersionedValue
from services.redis import RedisKeyValueStore


@pytest.fixture
def client():
    mock_client = MagicMock()
    # One callable per registered Lua script, in registration order
    mock_client.register_script.side_effect = [MagicMock(name="set_if_absent"),
                                               MagicMock(name="compare_and_set"),
                                               MagicMock(name="delete_if_version")]
    return mock_client


@pytest.fixture
def redis_store(client):
    return RedisKeyValueStore(key_prefix="test", client=client)


class TestRedisKeyValueStore:

    def test_scripts_registered(self, client, redis_store):
        assert client.register_script.call_count == 3

    def test_get(self, client, redis_store):
        client.hmget.return_value = ["payload", "3"]

        assert redis_store.get("household:X") == VersionedValue(value="payload", version=3)
        client.hmget.assert_called_once_with("test:household:X", ["value", "version"])

    def test_get_missing(self, client, redis_store):
        client.hmget.return_value = [None, None]

        assert redis_store.get("missing") is None

    def test_set_if_absent(self, redis_store):
        redis_store._set_if_absent.return_value = 1

        assert redis_store.set_if_absent("k", "v") is True
        redis_store._set_if_absent.assert_called_once_with(keys=["test:k"], args=["v"])

        redis_store._set_if_absent.return_value = 0
        assert redis_store.set_if_absent("k", "v") is False

    def test_compare_and_set_passes_expected_version(self, redis_store):
        redis_store._compare_and_set.return_value = 1

        assert redis_store.compare_and_set("k", "v2", 4)
        redis_store._compare_and_set.assert_called_with(keys=["test:k"], args=["v2", "4"])

    def test_compare_and_set_absent_uses_empty_version(self, redis_store):
        redis_store._compare_and_set.return_value = 0

        assert not redis_store.compare_and_set("k", "v", None)
        redis_store._compare_and_set.assert_called_with(keys=["test:k"], args=["v", ""])

    def test_delete_if_version(self, redis_store):
        redis_store._delete_if_version.return_value = 1

        assert redis_store.delete_if_version("k", 2)
        redis_store._delete_if_version.assert_called_with(keys=["test:k"], args=["2"])

    def test_lists_and_counters(self, client, redis_store):
        client.rpush.return_value = 2
        client.lrange.return_value = ["a", "b"]
        client.llen.return_value = 2
        client.incrby.return_value = 7
        client.get.return_value = None

        assert redis_store.append("events", "b") == 2
        assert redis_store.read_list("events") == ["a", "b"]
        assert redis_store.list_length("events") == 2
        assert redis_store.increment("counter", 3) == 7
        assert redis_store.read_counter("counter") == 0
        client.lrange.assert_called_once_with("test:events", 0, -1)

    @pytest.mark.parametrize("operation,args", [
        ("get", ("k",)),
        ("append", ("k", "v")),
        ("read_list", ("k",)),
        ("increment", ("k",)),
        ("read_counter", ("k",)),
    ])
    def test_redis_errors_become_unavailable(self, client, redis_store, operation, args):
        error = redis.ConnectionError("connection refused")
        client.hmget.side_effect = error
        client.rpush.side_effect = error
        client.lrange.side_effect = error
        client.incrby.side_effect = error
        client.get.side_effect = error

        with pytest.raises(StoreUnavailableError, match="connection refused"):
            getattr(redis_store, operation)(*args)

    def test_script_errors_become_unavailable(self, redis_store):
        redis_store._compare_and_set.side_effect = redis.TimeoutError("timed out")

        with pytest.raises(StoreUnavailableError):
            redis_store.compare_and_set("k", "v", 1)

    def test_health_check(self, client, redis_store):
        client.ping.return_value = True
        client.info.return_value = {"redis_version": "7.2.4", "connected_clients": 3}

        health = redis_store.health_check()

        assert health["status"] == "healthy"
        assert health["redis_version"] == "7.2.4"

    def test_health_check_unreachable(self, client, redis_store):
        client.ping.side_effect = redis.ConnectionError("down")

        health = redis_store.health_check()

        assert health["status"] == "unhealthy"
        assert health["backend"] == "redis"

    def test_empty_prefix(self, client):
        client.register_script.side_effect = None
        store = RedisKeyValueStore(key_prefix="", client=client)

        assert store._key("k") == "k"
