"""
Key-value store backend for DriveLink.

This module defines the CacheBackend protocol used as the plugin's persistent
key-value store: watch channel records, per-file activity cursors, encrypted
OAuth tokens, rate-limit cool-down flags and OAuth state nonces all live here.
Two interchangeable implementations are provided:
- RedisCacheBackend: shared across every node of a horizontally scaled deployment
- InMemoryCacheBackend: single-node/development deployments and tests

Backend selection is automatic based on the DRIVELINK_REDIS_URL configuration.

Example usage:
    from drivelink.core.cache_backend import get_cache_backend

    backend = await get_cache_backend()
    await backend.set("my_key", "my_value", ttl_seconds=300)
    keys = await backend.list_keys("drive_change_channels-", page=0, per_page=100)
"""

import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

# Global cache backend instance (singleton)
_cache_backend: Optional["CacheBackend"] = None

# Global Redis client instance (internal use only)
_redis_client: Optional[Any] = None

# Compare-and-delete: only remove the key if it still holds the caller's value.
# KEYS[1]=key, ARGV[1]=expected value
DELETE_IF_EQUALS_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class CacheError(Exception):
    """Base exception for cache operations.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class CacheConnectionError(CacheError):
    """Raised when the cache backend is unreachable."""
    pass


class CacheOperationError(CacheError):
    """Raised when the backend was reachable but the operation failed."""
    pass


class CacheKeyError(CacheError):
    """Raised when the provided key is invalid (e.g. empty)."""
    pass


@runtime_checkable
class CacheBackend(Protocol):
    """Protocol defining the key-value store interface.

    Values are strings; consumers serialize structured data (JSON) before
    storing. Keys are plain strings namespaced by prefix, for example
    ``drive_change_channels-{user_id}``.
    """

    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None when absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value`` with an optional TTL. Non-positive TTL deletes the key."""
        ...

    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if it existed."""
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        """Atomically store ``value`` only if ``key`` is not set. Returns True if stored."""
        ...

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically delete ``key`` only if it currently holds ``value``."""
        ...

    async def list_keys(self, prefix: str = "", page: int = 0, per_page: int = 100) -> List[str]:
        """Return one page of live keys starting with ``prefix``, in sorted order."""
        ...


def _require_key(key: str) -> None:
    if not key:
        raise CacheKeyError("Cache key cannot be empty")


def _require_page(page: int, per_page: int) -> None:
    if page < 0 or per_page <= 0:
        raise CacheOperationError("Invalid pagination parameters", details={"page": page, "per_page": per_page})


def _page(keys: List[str], page: int, per_page: int) -> List[str]:
    start = page * per_page
    return keys[start : start + per_page]


class InMemoryCacheBackend:
    """Process-local store with TTL support.

    All state sits behind one ``threading.RLock``. Expired entries vanish on
    access and in a sweep that runs at most every ``cleanup_interval_seconds``
    (0 disables the sweep). Nothing is shared with other processes.
    """

    def __init__(self, cleanup_interval_seconds: int = 60):
        # key -> (value, monotonic deadline or None)
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()
        self._cleanup_interval = cleanup_interval_seconds
        self._last_cleanup = time.monotonic()

    @staticmethod
    def _deadline(ttl_seconds: Optional[float]) -> Optional[float]:
        return None if ttl_seconds is None else time.monotonic() + ttl_seconds

    @staticmethod
    def _is_expired(expiry: Optional[float]) -> bool:
        return expiry is not None and time.monotonic() >= expiry

    def _sweep(self) -> None:
        # Caller holds self._lock
        now = time.monotonic()
        if self._cleanup_interval <= 0 or now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        for key in [k for k, (_, expiry) in self._data.items() if self._is_expired(expiry)]:
            del self._data[key]

    def _live_value(self, key: str) -> Optional[str]:
        # Caller holds self._lock
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._is_expired(entry[1]):
            del self._data[key]
            return None
        return entry[0]

    async def get(self, key: str) -> Optional[str]:
        _require_key(key)
        with self._lock:
            self._sweep()
            return self._live_value(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        _require_key(key)
        with self._lock:
            self._sweep()
            if ttl_seconds is not None and ttl_seconds <= 0:
                self._data.pop(key, None)
            else:
                self._data[key] = (value, self._deadline(ttl_seconds))
            return True

    async def delete(self, key: str) -> bool:
        _require_key(key)
        with self._lock:
            return self._live_value(key) is not None and self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        _require_key(key)
        with self._lock:
            return self._live_value(key) is not None

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        _require_key(key)
        with self._lock:
            value = self._live_value(key)
            if value is None:
                return False
            if ttl_seconds <= 0:
                del self._data[key]
            else:
                self._data[key] = (value, self._deadline(ttl_seconds))
            return True

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        _require_key(key)
        with self._lock:
            if self._live_value(key) is not None:
                return False
            self._data[key] = (value, self._deadline(ttl_seconds))
            return True

    async def delete_if_equals(self, key: str, value: str) -> bool:
        _require_key(key)
        with self._lock:
            if self._live_value(key) != value:
                return False
            del self._data[key]
            return True

    async def list_keys(self, prefix: str = "", page: int = 0, per_page: int = 100) -> List[str]:
        _require_page(page, per_page)
        with self._lock:
            keys = sorted(k for k in list(self._data) if k.startswith(prefix) and self._live_value(k) is not None)
        return _page(keys, page, per_page)


class RedisCacheBackend:
    """Store shared by every node through Redis.

    Any client failure surfaces as ``CacheConnectionError`` carrying the
    command and key. Obtain instances from ``get_cache_backend()``.
    """

    def __init__(self, redis_client: Any):
        self._client = redis_client

    @property
    def client(self) -> Any:
        return self._client

    async def _run(self, command: str, key: str, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await call()
        except Exception as e:
            logger.error(f"Redis {command} failed for key '{key}': {e}")
            raise CacheConnectionError(
                f"Redis {command} failed for key '{key}'",
                details={"command": command, "key": key, "error": str(e)},
            ) from e

    async def get(self, key: str) -> Optional[str]:
        _require_key(key)
        return await self._run("GET", key, lambda: self._client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        _require_key(key)
        if ttl_seconds is not None and ttl_seconds <= 0:
            await self._run("DEL", key, lambda: self._client.delete(key))
        elif ttl_seconds is not None:
            await self._run("SETEX", key, lambda: self._client.setex(key, ttl_seconds, value))
        else:
            await self._run("SET", key, lambda: self._client.set(key, value))
        return True

    async def delete(self, key: str) -> bool:
        _require_key(key)
        return await self._run("DEL", key, lambda: self._client.delete(key)) > 0

    async def exists(self, key: str) -> bool:
        _require_key(key)
        return await self._run("EXISTS", key, lambda: self._client.exists(key)) > 0

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        _require_key(key)
        if ttl_seconds <= 0:
            return await self.delete(key)
        return bool(await self._run("EXPIRE", key, lambda: self._client.expire(key, ttl_seconds)))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> bool:
        _require_key(key)
        px = max(1, int(ttl_seconds * 1000)) if ttl_seconds is not None else None
        return bool(await self._run("SET NX", key, lambda: self._client.set(key, value, nx=True, px=px)))

    async def delete_if_equals(self, key: str, value: str) -> bool:
        _require_key(key)
        deleted = await self._run("EVAL", key, lambda: self._client.eval(DELETE_IF_EQUALS_LUA, 1, key, value))
        return int(deleted) == 1

    async def list_keys(self, prefix: str = "", page: int = 0, per_page: int = 100) -> List[str]:
        _require_page(page, per_page)
        pattern = f"{_escape_glob(prefix)}*"

        async def scan() -> List[str]:
            return [k async for k in self._client.scan_iter(match=pattern, count=500)]

        # SCAN order is unstable across calls; sort so page boundaries are deterministic
        keys = sorted(await self._run("SCAN", prefix, scan))
        return _page(keys, page, per_page)


def _escape_glob(prefix: str) -> str:
    """Escape Redis MATCH metacharacters in a literal prefix."""
    return "".join(f"\\{c}" if c in "*?[]\\" else c for c in prefix)


async def _connect_redis(settings) -> Any:
    """Open a Redis client and PING it.

    Raises:
        CacheConnectionError: the server could not be reached.
    """
    try:
        client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_connection_timeout,
        )
        await client.ping()
    except Exception as e:
        raise CacheConnectionError(f"Redis connection failed: {e}", details={"error": str(e)}) from e

    logger.info(
        "Connected to Redis",
        extra={
            "connection_timeout": settings.redis_connection_timeout,
            "socket_timeout": settings.redis_socket_timeout,
        },
    )
    return client


async def get_cache_backend() -> CacheBackend:
    """Return the process-wide backend, choosing it on first call.

    Redis when ``DRIVELINK_REDIS_URL`` is set and answers a PING, otherwise
    the in-memory store.
    """
    global _cache_backend, _redis_client  # noqa: PLW0603
    if _cache_backend is not None:
        return _cache_backend

    from .config import get_settings_instance

    settings = get_settings_instance()
    if not settings.redis_enabled:
        logger.info("No Redis URL configured, using InMemoryCacheBackend")
        _cache_backend = InMemoryCacheBackend()
        return _cache_backend

    try:
        _redis_client = await _connect_redis(settings)
    except CacheConnectionError as e:
        # Watch records and cursors will not survive a restart or be shared
        # between nodes in this mode
        logger.warning("Redis unavailable, falling back to InMemoryCacheBackend", extra={"error": e.message})
        _cache_backend = InMemoryCacheBackend()
        return _cache_backend

    _cache_backend = RedisCacheBackend(_redis_client)
    logger.info("Using RedisCacheBackend")
    return _cache_backend


async def close_cache_backend() -> None:
    """Close the Redis connection pool, if one was opened, and forget the backend."""
    global _cache_backend, _redis_client  # noqa: PLW0603
    client, _redis_client, _cache_backend = _redis_client, None, None
    if client is not None:
        try:
            await client.aclose()
        except Exception as e:
            logger.warning(f"Error closing Redis client: {e}")
