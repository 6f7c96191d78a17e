"""Redis-backed lease store for multi-instance leader election.

Data structure in Redis:
  String key (default ``restaurant:maintenance:master``) whose value is the
  owning instance id, written with a PX expiry equal to the lease TTL.

Acquire/renew and release run as Lua scripts so the read-compare-write happens
atomically on the server; a plain GET followed by PEXPIRE could extend a lease
that expired and was taken by a peer in between.

Unlike the queue backends, there is no in-memory fallback here: a process that
cannot reach Redis must not believe it holds the lease. Every Redis failure is
raised as ``CoordinationUnavailable`` and the gate reports "not master".
"""
from __future__ import annotations

from typing import Optional

import redis

from restaurant_ops.config import LEADER_ELECTION
from restaurant_ops.exceptions import CoordinationUnavailable
from restaurant_ops.utils import get_logger

logger = get_logger(__name__)

_ACQUIRE_OR_RENEW = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], ARGV[1], 'PX', ARGV[2])
  return 1
end
if current == ARGV[1] then
  redis.call('PEXPIRE', KEYS[1], ARGV[2])
  return 1
end
return 0
"""

_RELEASE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""

_REDIS_ERRORS = (redis.RedisError, ConnectionError, TimeoutError)


class RedisLeaseStore:
    def __init__(self, redis_url: Optional[str] = None, *, socket_timeout: Optional[float] = None) -> None:
        self._redis_url: str = str(redis_url or LEADER_ELECTION.get("redis_url", "redis://localhost:6379/0"))
        timeout = float(socket_timeout if socket_timeout is not None else LEADER_ELECTION.get("socket_timeout", 2.0))
        # from_url does not connect; the first command does.
        self._client = redis.from_url(
            self._redis_url,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            decode_responses=True,
        )
        self._acquire_script = self._client.register_script(_ACQUIRE_OR_RENEW)
        self._release_script = self._client.register_script(_RELEASE)

    @property
    def redis_url(self) -> str:
        return self._redis_url

    def acquire_or_renew(self, key: str, owner: str, ttl_seconds: float) -> bool:
        ttl_ms = int(ttl_seconds * 1000)
        if ttl_ms <= 0:
            raise ValueError("ttl_seconds must be positive")
        try:
            result = self._acquire_script(keys=[key], args=[owner, ttl_ms])
        except _REDIS_ERRORS as e:
            raise CoordinationUnavailable(f"Redis lease renew failed: {e}") from e
        return int(result or 0) == 1

    def release(self, key: str, owner: str) -> bool:
        try:
            result = self._release_script(keys=[key], args=[owner])
        except _REDIS_ERRORS as e:
            raise CoordinationUnavailable(f"Redis lease release failed: {e}") from e
        return int(result or 0) == 1

    def current_holder(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except _REDIS_ERRORS as e:
            raise CoordinationUnavailable(f"Redis lease lookup failed: {e}") from e
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except _REDIS_ERRORS as e:
            logger.warning("Redis ping failed", url=self._redis_url, error=str(e))
            return False


__all__ = ["RedisLeaseStore"]
