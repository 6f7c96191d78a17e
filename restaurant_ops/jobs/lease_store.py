"""Lease stores backing leader election.

A lease is a single named slot holding an owner id with a TTL. The only write a
candidate performs is `acquire_or_renew`, an atomic compare-and-set:

  - slot empty or expired   -> take it, set TTL, return True
  - slot held by caller     -> extend TTL, return True
  - slot held by someone else -> return False

`InMemoryLeaseStore` implements this inside one process. It is the backend for
single-instance deployments (the lone process always wins) and for tests.
Multi-instance deployments use `RedisLeaseStore`, which shares the slot across
processes. Stores raise `CoordinationUnavailable` when the backend is unreachable.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol
import threading
import time


class LeaseStore(Protocol):
    def acquire_or_renew(self, key: str, owner: str, ttl_seconds: float) -> bool: ...
    def release(self, key: str, owner: str) -> bool: ...
    def current_holder(self, key: str) -> str | None: ...
    def ping(self) -> bool: ...


@dataclass(slots=True)
class _Lease:
    owner: str
    expires_at: float


class InMemoryLeaseStore:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._leases: dict[str, _Lease] = {}

    def _live(self, key: str) -> _Lease | None:
        lease = self._leases.get(key)
        if lease is not None and lease.expires_at <= self._clock():
            del self._leases[key]
            return None
        return lease

    def acquire_or_renew(self, key: str, owner: str, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            lease = self._live(key)
            if lease is not None and lease.owner != owner:
                return False
            self._leases[key] = _Lease(owner=owner, expires_at=self._clock() + ttl_seconds)
            return True

    def release(self, key: str, owner: str) -> bool:
        with self._lock:
            lease = self._live(key)
            if lease is None or lease.owner != owner:
                return False
            del self._leases[key]
            return True

    def current_holder(self, key: str) -> str | None:
        with self._lock:
            lease = self._live(key)
            return lease.owner if lease else None

    def ping(self) -> bool:
        return True

    def snapshot(self) -> dict:
        with self._lock:
            now = self._clock()
            return {
                key: {"owner": lease.owner, "ttl_remaining": round(lease.expires_at - now, 3)}
                for key, lease in self._leases.items()
                if lease.expires_at > now
            }


__all__ = ["LeaseStore", "InMemoryLeaseStore"]
