"""Redis-backed cache service and the logged-in-user bookkeeping built on it."""

from __future__ import annotations

import contextlib
import ssl
from typing import Any, Protocol, runtime_checkable

import redis

from agonyl.constants import LOGGED_IN_USER_KEY_PREFIX

_DEFAULT_REDIS_HOST = "localhost"
_DEFAULT_REDIS_PORT = 6379


@runtime_checkable
class CacheService(Protocol):
    """The subset of the Redis client the servers rely on."""

    def ping(self) -> Any: ...

    def set(self, name: str, value: Any, ex: Any = None) -> Any: ...

    def get(self, name: str) -> Any: ...

    def delete(self, *names: str) -> Any: ...

    def exists(self, *names: str) -> int: ...


def _split_address(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr or _DEFAULT_REDIS_HOST, _DEFAULT_REDIS_PORT
    return host or _DEFAULT_REDIS_HOST, int(port) if port else _DEFAULT_REDIS_PORT


def new_redis_cache_service(addr: str, password: str, tls_enabled: bool) -> redis.Redis:
    """Create a Redis client for ``host:port``; TLS skips certificate checks."""
    host, port = _split_address(addr)
    options: dict[str, Any] = {
        "host": host,
        "port": port,
        "password": password or None,
        "db": 0,
    }
    if tls_enabled:
        options.update(ssl=True, ssl_cert_reqs=ssl.CERT_NONE, ssl_check_hostname=False)
    return redis.Redis(**options)


def logged_in_user_key(username: str) -> str:
    return LOGGED_IN_USER_KEY_PREFIX + username


def is_logged_in(cache: CacheService, username: str) -> bool:
    """True when the user's key exists; cache failures count as not logged in."""
    try:
        return cache.exists(logged_in_user_key(username)) > 0
    except (redis.RedisError, OSError):
        return False


def add_logged_in_user(cache: CacheService, username: str, user_id: int) -> None:
    """Record the user as logged in, without expiry; cache failures are ignored."""
    with contextlib.suppress(redis.RedisError, OSError):
        cache.set(logged_in_user_key(username), user_id)


def remove_logged_in_user(cache: CacheService, username: str) -> None:
    """Forget the user's login; cache failures are ignored."""
    with contextlib.suppress(redis.RedisError, OSError):
        cache.delete(logged_in_user_key(username))