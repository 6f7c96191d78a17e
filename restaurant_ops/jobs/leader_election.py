"""Leader election gate: "is this instance currently the master?"

A daemon thread keeps renewing a lease in the shared store every
``renew_interval_seconds``; readers only ever look at a cached flag, so
`is_master()` is a lock-guarded read with no network round trip.

Fail-safe rules:
  - the store raising (unreachable Redis, timeouts) -> not master
  - any unexpected error in a renewal                -> not master
  - last successful renewal older than the lease TTL -> not master, even if the
    renewal thread is stuck and never got to record a failure

While the store is unreachable, retries back off exponentially (capped at the
renew interval) and recover automatically on reconnection.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional
import threading
import time
import uuid

from restaurant_ops.config import LEADER_ELECTION
from restaurant_ops.exceptions import CoordinationUnavailable
from restaurant_ops.jobs.lease_store import InMemoryLeaseStore, LeaseStore
from restaurant_ops.utils import get_logger
from restaurant_ops.utils.backoff import compute_backoff_seconds

logger = get_logger(__name__)


@dataclass(slots=True)
class InstanceIdentity:
    instance_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_heartbeat: float | None = None  # epoch seconds of last successful renewal


class MasterStatus:
    """Single-writer / multi-reader boolean cell owned by the gate."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = False
        self._confirmed_at: float | None = None  # monotonic

    def set(self, value: bool, confirmed_at: float | None = None) -> bool:
        """Store the new value; returns the previous one."""
        with self._lock:
            previous = self._value
            self._value = value
            self._confirmed_at = confirmed_at if value else None
            return previous

    def read(self) -> tuple[bool, float | None]:
        with self._lock:
            return self._value, self._confirmed_at


class LeaderElectionGate:
    def __init__(
        self,
        store: LeaseStore,
        *,
        key: Optional[str] = None,
        lease_ttl_seconds: Optional[float] = None,
        renew_interval_seconds: Optional[float] = None,
        identity: Optional[InstanceIdentity] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.key = str(key or LEADER_ELECTION.get("key", "restaurant:maintenance:master"))
        self.lease_ttl_seconds = float(lease_ttl_seconds if lease_ttl_seconds is not None else LEADER_ELECTION.get("lease_ttl_seconds", 15))
        self.renew_interval_seconds = float(
            renew_interval_seconds if renew_interval_seconds is not None else LEADER_ELECTION.get("renew_interval_seconds", 5)
        )
        if self.lease_ttl_seconds <= 0:
            raise ValueError("lease_ttl_seconds must be positive")
        if self.renew_interval_seconds <= 0 or self.renew_interval_seconds >= self.lease_ttl_seconds:
            raise ValueError("renew_interval_seconds must be positive and shorter than the lease TTL")
        self.identity = identity or InstanceIdentity()
        self._clock = clock
        self._status = MasterStatus()
        self._consecutive_failures = 0
        self._coordination_down = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def instance_id(self) -> str:
        return self.identity.instance_id

    # ----------------------------- public API ----------------------------- #
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("Leader election already started; ignoring second start", instance_id=self.instance_id)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="leader-election", daemon=True)
        self._thread.start()
        logger.info(
            "Leader election started",
            instance_id=self.instance_id,
            key=self.key,
            lease_ttl_seconds=self.lease_ttl_seconds,
            renew_interval_seconds=self.renew_interval_seconds,
        )

    def is_master(self) -> bool:
        try:
            value, confirmed_at = self._status.read()
            if not value or confirmed_at is None:
                return False
            # Renewal thread stalled past the TTL: a peer may own the lease now.
            return (self._clock() - confirmed_at) < self.lease_ttl_seconds
        except Exception:  # pragma: no cover - reads must never raise
            return False

    def refresh(self) -> bool:
        """Run one acquire/renew round and update the cached status.

        Called by the background loop; exposed so tests and startup code can
        drive the election synchronously. Never raises.
        """
        # Taken before the round trip: a slow reply must not stretch the local lease.
        attempted_at = self._clock()
        try:
            won = self.store.acquire_or_renew(self.key, self.instance_id, self.lease_ttl_seconds)
        except CoordinationUnavailable as e:
            self._record_unavailable(e)
            return False
        except Exception as e:
            self._consecutive_failures += 1
            self._set_master(False)
            logger.error("Leader election round failed", instance_id=self.instance_id, error=str(e), exc_info=True)
            return False

        if self._coordination_down:
            logger.info("Coordination backend reachable again", instance_id=self.instance_id)
        self._coordination_down = False
        self._consecutive_failures = 0
        if won:
            self.identity.last_heartbeat = time.time()
            self._set_master(True, confirmed_at=attempted_at)
        else:
            self._set_master(False)
        return won

    def stop(self, *, release: bool = True, timeout: float | None = 5.0) -> None:
        """Stop renewing (process shutdown only) and give up the lease so a peer takes over."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        was_master = self.is_master()
        self._set_master(False)
        if release and was_master:
            try:
                self.store.release(self.key, self.instance_id)
                logger.info("Released master lease", instance_id=self.instance_id)
            except CoordinationUnavailable as e:
                logger.warning("Could not release master lease; it will expire", instance_id=self.instance_id, error=str(e))
        logger.info("Leader election stopped", instance_id=self.instance_id)

    def current_holder(self) -> str | None:
        try:
            return self.store.current_holder(self.key)
        except CoordinationUnavailable:
            return None

    def snapshot(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "is_master": self.is_master(),
            "key": self.key,
            "last_heartbeat": self.identity.last_heartbeat,
            "coordination_available": not self._coordination_down,
            "consecutive_failures": self._consecutive_failures,
            "running": bool(self._thread and self._thread.is_alive()),
        }

    # ----------------------------- internals ----------------------------- #
    def _set_master(self, value: bool, confirmed_at: float | None = None) -> None:
        previous = self._status.set(value, confirmed_at)
        if value and not previous:
            logger.info("This instance became master", instance_id=self.instance_id, key=self.key)
        elif previous and not value:
            logger.warning("This instance is no longer master", instance_id=self.instance_id, key=self.key)

    def _record_unavailable(self, error: CoordinationUnavailable) -> None:
        self._consecutive_failures += 1
        self._set_master(False)
        if not self._coordination_down:
            logger.warning(
                "Coordination backend unavailable; acting as non-master",
                instance_id=self.instance_id,
                error=str(error),
            )
        self._coordination_down = True

    def _next_delay(self) -> float:
        if self._consecutive_failures == 0:
            return self.renew_interval_seconds
        return min(compute_backoff_seconds(self._consecutive_failures), self.renew_interval_seconds)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.refresh()
            self._stop_event.wait(self._next_delay())


def create_lease_store() -> LeaseStore:
    """Create the lease store selected by ``LEADER_ELECTION['backend']``.

    A configured-but-unreachable Redis is still returned as-is: falling back to the
    in-process store would make every instance master.
    """
    backend = str(LEADER_ELECTION.get("backend", "memory")).lower()
    if backend == "redis":
        from restaurant_ops.jobs.redis_lease_store import RedisLeaseStore
        store = RedisLeaseStore()
        if store.ping():
            logger.info("Using Redis lease store for leader election", url=store.redis_url)
        else:
            logger.warning("Redis lease store unreachable at startup; instance stays non-master until it recovers", url=store.redis_url)
        return store
    if backend != "memory":
        raise ValueError(f"Unknown leader election backend '{backend}'")
    logger.info("Using in-process lease store (single-instance leader election)")
    return InMemoryLeaseStore()


__all__ = ["InstanceIdentity", "MasterStatus", "LeaderElectionGate", "create_lease_store"]
