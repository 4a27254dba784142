import redis
from redis.connection import SSLConnection

from agonyl.cache import (
    CacheService,
    add_logged_in_user,
    is_logged_in,
    logged_in_user_key,
    new_redis_cache_service,
    remove_logged_in_user,
)


class FakeCache:
    def __init__(self):
        self.data = {}

    def ping(self):
        return True

    def set(self, name, value, ex=None):
        self.data[name] = value
        return True

    def get(self, name):
        return self.data.get(name)

    def delete(self, *names):
        removed = sum(1 for name in names if self.data.pop(name, None) is not None)
        return removed

    def exists(self, *names):
        return sum(1 for name in names if name in self.data)


class BrokenCache(FakeCache):
    def exists(self, *names):
        raise redis.ConnectionError("down")

    def set(self, name, value, ex=None):
        raise redis.ConnectionError("down")

    def delete(self, *names):
        raise redis.ConnectionError("down")


def test_key_uses_prefix():
    assert logged_in_user_key("bob") == "agonyl:logged_in_user:bob"


def test_fake_satisfies_protocol_and_works_with_helpers():
    cache = FakeCache()
    assert isinstance(cache, CacheService)
    add_logged_in_user(cache, "carol", 3)
    assert is_logged_in(cache, "carol") is True
    assert cache.data == {"agonyl:logged_in_user:carol": 3}


def test_add_then_is_logged_in():
    cache = FakeCache()
    assert is_logged_in(cache, "alice") is False
    add_logged_in_user(cache, "alice", 17)
    assert is_logged_in(cache, "alice") is True
    assert cache.get(logged_in_user_key("alice")) == 17


def test_remove_logged_in_user():
    cache = FakeCache()
    add_logged_in_user(cache, "alice", 17)
    remove_logged_in_user(cache, "alice")
    assert is_logged_in(cache, "alice") is False


def test_cache_errors_mean_not_logged_in():
    assert is_logged_in(BrokenCache(), "alice") is False


def test_cache_errors_are_swallowed_on_write():
    cache = BrokenCache()
    add_logged_in_user(cache, "alice", 1)
    remove_logged_in_user(cache, "alice")
    assert cache.data == {}


def test_redis_client_address():
    client = new_redis_cache_service("cache.example.com:6380", "", False)
    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["host"] == "cache.example.com"
    assert kwargs["port"] == 6380
    assert kwargs["password"] is None
    assert client.connection_pool.connection_class is not SSLConnection


def test_redis_client_with_tls():
    password = "password"
    client = new_redis_cache_service("localhost:6379", password, True)
    assert client.connection_pool.connection_class is SSLConnection
    assert client.connection_pool.connection_kwargs["password"] == password