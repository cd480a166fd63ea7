"""
Tests for the per-user reconciliation mutex.
"""

import asyncio

import pytest

from drivelink.core.cache_backend import InMemoryCacheBackend, RedisCacheBackend
from drivelink.core.distributed_lock import (
    LOCK_KEY_PREFIX,
    CacheDistributedLock,
    InProcessDistributedLock,
    create_distributed_lock,
)
from drivelink.core.exceptions import LockTimeoutError


@pytest.fixture(params=["cache", "in_process"])
def lock(request):
    if request.param == "cache":
        return CacheDistributedLock(InMemoryCacheBackend(cleanup_interval_seconds=0), poll_interval=0.01)
    return InProcessDistributedLock()


class TestDistributedLock:
    """Mutual exclusion contract shared by both implementations."""

    @pytest.mark.asyncio
    async def test_holders_never_overlap(self, lock):
        """Concurrent holders of the same key run one at a time."""
        active = 0
        max_active = 0

        async def worker():
            nonlocal active, max_active
            async with lock.hold("drive_watch_lock-user1", timeout=5):
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        assert max_active == 1

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, lock):
        async with lock.hold("drive_watch_lock-user1", timeout=1):
            async with lock.hold("drive_watch_lock-user2", timeout=0.1):
                pass

    @pytest.mark.asyncio
    async def test_timeout_raises(self, lock):
        async with lock.hold("drive_watch_lock-user1", timeout=1):
            with pytest.raises(LockTimeoutError):
                await lock.acquire("drive_watch_lock-user1", timeout=0.05)

    @pytest.mark.asyncio
    async def test_released_on_exception(self, lock):
        with pytest.raises(ValueError):
            async with lock.hold("drive_watch_lock-user1", timeout=1):
                raise ValueError("boom")

        guard = await lock.acquire("drive_watch_lock-user1", timeout=0.1)
        await lock.release(guard)

    @pytest.mark.asyncio
    async def test_double_release_rejected(self, lock):
        guard = await lock.acquire("drive_watch_lock-user1", timeout=1)
        await lock.release(guard)
        with pytest.raises(RuntimeError):
            await lock.release(guard)


class TestCacheDistributedLock:
    """Storage details of the key-value backed lock."""

    @pytest.mark.asyncio
    async def test_owner_token_stored_under_prefixed_key(self):
        backend = InMemoryCacheBackend(cleanup_interval_seconds=0)
        lock = CacheDistributedLock(backend, lease_seconds=30)

        guard = await lock.acquire("drive_watch_lock-user1", timeout=1)

        assert await backend.get(f"{LOCK_KEY_PREFIX}drive_watch_lock-user1") == guard.lock_id
        await lock.release(guard)
        assert await backend.get(f"{LOCK_KEY_PREFIX}drive_watch_lock-user1") is None

    @pytest.mark.asyncio
    async def test_release_after_lease_loss_keeps_new_owner(self):
        """A holder whose lease expired must not delete the next owner's key."""
        backend = InMemoryCacheBackend(cleanup_interval_seconds=0)
        lock = CacheDistributedLock(backend)
        guard = await lock.acquire("k", timeout=1)

        await backend.set(f"{LOCK_KEY_PREFIX}k", "someone-else")
        await lock.release(guard)

        assert await backend.get(f"{LOCK_KEY_PREFIX}k") == "someone-else"


class TestCreateDistributedLock:
    def test_in_memory_backend_gets_in_process_lock(self):
        assert isinstance(create_distributed_lock(InMemoryCacheBackend()), InProcessDistributedLock)

    def test_redis_backend_gets_cache_lock(self):
        assert isinstance(create_distributed_lock(RedisCacheBackend(object())), CacheDistributedLock)
