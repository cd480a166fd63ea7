"""Cluster-wide named mutexes.

Webhook reconciliation for one user must never run concurrently anywhere in
the cluster. ``CacheDistributedLock`` stores an owner token under the lock key
with SET NX and a lease, and releases it with an owner-checked delete, so it
is cluster-wide whenever the key-value store is Redis. ``InProcessDistributedLock``
keeps one ``asyncio.Lock`` per key for single-process deployments.

Usage:
    async with lock.hold(f"drive_watch_lock-{user_id}", timeout=60):
        ...
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .cache_backend import CacheBackend, RedisCacheBackend
from .exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "mutex_"
# Upper bound on how long a crashed holder can block others
DEFAULT_LEASE_SECONDS = 120.0


@dataclass
class LockGuard:
    """Proof of ownership returned by ``acquire``."""

    key: str
    lock_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.monotonic)
    released: bool = False


class BaseDistributedLock:
    """Shared ``hold`` context manager on top of ``acquire``/``release``."""

    async def acquire(self, key: str, timeout: float | None) -> LockGuard:
        raise NotImplementedError

    async def release(self, guard: LockGuard) -> None:
        raise NotImplementedError

    @staticmethod
    def _check_releasable(guard: LockGuard) -> None:
        if guard.released:
            raise RuntimeError(f"Lock '{guard.key}' released twice")

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None) -> AsyncIterator[LockGuard]:
        guard = await self.acquire(key, timeout)
        try:
            yield guard
        finally:
            await self.release(guard)


class CacheDistributedLock(BaseDistributedLock):
    """Mutex over the shared key-value store (cluster-wide with Redis)."""

    def __init__(
        self,
        backend: CacheBackend,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        poll_interval: float = 0.05,
        max_poll_interval: float = 0.5,
    ):
        self._backend = backend
        self._lease_seconds = lease_seconds
        self._poll_interval = poll_interval
        self._max_poll_interval = max_poll_interval

    async def acquire(self, key: str, timeout: float | None) -> LockGuard:
        guard = LockGuard(key=key)
        storage_key = f"{LOCK_KEY_PREFIX}{key}"
        deadline = None if timeout is None else time.monotonic() + timeout
        interval = self._poll_interval

        while True:
            if await self._backend.set_if_absent(storage_key, guard.lock_id, ttl_seconds=self._lease_seconds):
                guard.acquired_at = time.monotonic()
                logger.debug("Lock acquired", extra={"lock_key": key})
                return guard

            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise LockTimeoutError(key, timeout)
                interval = min(interval, remaining)
            await asyncio.sleep(interval)
            interval = min(interval * 2, self._max_poll_interval)

    async def release(self, guard: LockGuard) -> None:
        self._check_releasable(guard)
        guard.released = True
        deleted = await self._backend.delete_if_equals(f"{LOCK_KEY_PREFIX}{guard.key}", guard.lock_id)
        if not deleted:
            # Lease ran out while we held it; another holder may have taken over
            logger.warning(
                "Lock lease expired before release",
                extra={"lock_key": guard.key, "held_seconds": round(time.monotonic() - guard.acquired_at, 3)},
            )


class InProcessDistributedLock(BaseDistributedLock):
    """Keyed ``asyncio.Lock`` for single-process deployments and tests."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._owners: dict[str, str] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def acquire(self, key: str, timeout: float | None) -> LockGuard:
        lock = self._lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except TimeoutError:
            raise LockTimeoutError(key, timeout) from None
        guard = LockGuard(key=key)
        self._owners[key] = guard.lock_id
        return guard

    async def release(self, guard: LockGuard) -> None:
        self._check_releasable(guard)
        if self._owners.get(guard.key) != guard.lock_id:
            raise RuntimeError(f"Lock '{guard.key}' is not held by this guard")
        guard.released = True
        del self._owners[guard.key]
        self._locks[guard.key].release()


def create_distributed_lock(backend: CacheBackend) -> BaseDistributedLock:
    """Pick the lock implementation matching the configured store."""
    if isinstance(backend, RedisCacheBackend):
        logger.info("Using Redis-backed cluster lock")
        return CacheDistributedLock(backend)
    logger.info("Using in-process lock (single node)")
    return InProcessDistributedLock()
