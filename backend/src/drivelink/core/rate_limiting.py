"""
Outbound rate limiting for Google API calls.

Two independent gates guard every call to a provider surface:

1. Cool-down flags. When Google reports quota exhaustion the caller sets a
   short-lived flag keyed by (service type, user) or by service type alone.
   While either flag is present, ``acquire`` refuses immediately with
   ``RateLimitedError`` and makes no network call. Flags expire by TTL and
   are never cleared by hand.
2. A local token bucket per provider surface (only "drive" today), refilled
   at queries-per-minute / 60 with a configurable burst. ``acquire`` waits
   for a token until its deadline.

The bucket is shared by every concurrent request. ``TokenBucket.reconfigure``
swaps rate and burst under the bucket's lock; waiters re-read the state on
every wake-up so none of them are dropped by a reload.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol

from .exceptions import RateLimitedError

logger = logging.getLogger(__name__)

# Provider surfaces
SERVICE_DRIVE = "drive"
SERVICE_DRIVE_ACTIVITY = "driveactivity"
SERVICE_DOCS = "docs"
SERVICE_SHEETS = "sheets"
SERVICE_SLIDES = "slides"

SERVICE_TYPES = (SERVICE_DRIVE, SERVICE_DRIVE_ACTIVITY, SERVICE_DOCS, SERVICE_SHEETS, SERVICE_SLIDES)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a non-blocking token bucket check."""
    allowed: bool
    retry_after_seconds: float = 0.0
    remaining: int = 0
    limit: int = 0


class CooldownFlagStore(Protocol):
    """Persistence for quota cool-down flags."""

    async def is_rate_limited(self, service_type: str, user_id: str) -> bool:
        """True if either the user-level or the project-level flag is set."""
        ...

    async def set_user_rate_limited(self, service_type: str, user_id: str, ttl_seconds: int) -> None:
        ...

    async def set_project_rate_limited(self, service_type: str, ttl_seconds: int) -> None:
        ...


class TokenBucket:
    """In-process token bucket with hot-reloadable rate and burst."""

    def __init__(self, rate_per_second: float, burst: int, name: str = SERVICE_DRIVE, clock=time.monotonic):
        if rate_per_second <= 0 or burst <= 0:
            raise ValueError("rate_per_second and burst must be greater than zero")
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._rate = float(rate_per_second)
        self._burst = int(burst)
        self._tokens = float(burst)
        self._updated = clock()

    @classmethod
    def per_minute(cls, queries_per_minute: int, burst: int, name: str = SERVICE_DRIVE, clock=time.monotonic) -> TokenBucket:
        return cls(queries_per_minute / 60.0, burst, name=name, clock=clock)

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    def _refill(self, now: float) -> None:
        # Caller holds self._lock
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self._burst), self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self, cost: int = 1) -> RateLimitResult:
        """Take ``cost`` tokens if available, without waiting."""
        with self._lock:
            self._refill(self._clock())
            if self._tokens >= cost:
                self._tokens -= cost
                return RateLimitResult(allowed=True, remaining=int(self._tokens), limit=self._burst)
            retry_after = (cost - self._tokens) / self._rate
            return RateLimitResult(
                allowed=False,
                retry_after_seconds=retry_after,
                remaining=0,
                limit=self._burst,
            )

    async def acquire(self, timeout: float | None = None, cost: int = 1) -> None:
        """Wait until ``cost`` tokens are granted.

        Raises:
            RateLimitedError: if the tokens cannot be granted before ``timeout``
                seconds elapse. Cancellation of the awaiting task propagates.
        """
        deadline = None if timeout is None else self._clock() + timeout
        while True:
            result = self.try_acquire(cost)
            if result.allowed:
                return
            wait = result.retry_after_seconds
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    raise RateLimitedError(self.name, "timed out waiting for a rate limit token")
                # Sleep at most until the deadline; a reconfigure may free a token sooner
                wait = min(wait, remaining)
            await asyncio.sleep(wait)

    def reconfigure(self, rate_per_second: float, burst: int) -> None:
        """Atomically replace rate and burst.

        Tokens accrued under the old rate are kept, capped at the new burst.
        """
        if rate_per_second <= 0 or burst <= 0:
            raise ValueError("rate_per_second and burst must be greater than zero")
        with self._lock:
            self._refill(self._clock())
            self._rate = float(rate_per_second)
            self._burst = int(burst)
            self._tokens = min(self._tokens, float(self._burst))
        logger.info(
            "Token bucket reconfigured",
            extra={"rate_per_second": rate_per_second, "burst": burst},
        )


class ProviderRateLimiter:
    """Gatekeeper consulted before every outbound provider call.

    Constructed once per process and injected into the Google client; it is
    not a module-level singleton.
    """

    def __init__(
        self,
        flag_store: CooldownFlagStore,
        buckets: dict[str, TokenBucket] | None = None,
        wait_timeout_seconds: float | None = 30.0,
        flag_ttl_seconds: int = 10,
    ):
        self._flags = flag_store
        self._buckets = dict(buckets or {})
        self.wait_timeout_seconds = wait_timeout_seconds
        self.flag_ttl_seconds = flag_ttl_seconds

    @classmethod
    def from_settings(cls, flag_store: CooldownFlagStore, settings) -> ProviderRateLimiter:
        drive_bucket = TokenBucket.per_minute(settings.drive_queries_per_minute, settings.drive_burst_size)
        return cls(
            flag_store,
            buckets={SERVICE_DRIVE: drive_bucket},
            wait_timeout_seconds=settings.rate_limit_wait_timeout_seconds,
            flag_ttl_seconds=settings.rate_limit_flag_ttl_seconds,
        )

    def bucket(self, service_type: str) -> TokenBucket | None:
        return self._buckets.get(service_type)

    async def acquire(self, service_type: str, user_id: str, use_bucket: bool = True, timeout: float | None = None) -> None:
        """Allow or deny one outbound call.

        Raises:
            RateLimitedError: a cool-down flag is set, or no bucket token
                became available in time.
        """
        if await self._flags.is_rate_limited(service_type, user_id):
            logger.warning(
                "Provider call refused by cool-down flag",
                extra={"service_type": service_type, "user_id": user_id},
            )
            raise RateLimitedError(service_type, "quota cool-down in effect")

        bucket = self._buckets.get(service_type) if use_bucket else None
        if bucket is None:
            return
        try:
            await bucket.acquire(timeout=timeout if timeout is not None else self.wait_timeout_seconds)
        except RateLimitedError:
            logger.warning(
                "Timed out waiting for rate limit token",
                extra={"service_type": service_type, "user_id": user_id},
            )
            raise

    async def flag_user(self, service_type: str, user_id: str) -> None:
        await self._flags.set_user_rate_limited(service_type, user_id, self.flag_ttl_seconds)
        logger.warning(
            "User-level quota exceeded; cool-down flag set",
            extra={"service_type": service_type, "user_id": user_id, "ttl_seconds": self.flag_ttl_seconds},
        )

    async def flag_project(self, service_type: str) -> None:
        await self._flags.set_project_rate_limited(service_type, self.flag_ttl_seconds)
        logger.warning(
            "Project-level quota exceeded; cool-down flag set",
            extra={"service_type": service_type, "ttl_seconds": self.flag_ttl_seconds},
        )

    def reconfigure(self, queries_per_minute: int, burst: int) -> None:
        """Apply new Drive limits in place."""
        bucket = self._buckets.get(SERVICE_DRIVE)
        if bucket is None:
            self._buckets[SERVICE_DRIVE] = TokenBucket.per_minute(queries_per_minute, burst)
            return
        bucket.reconfigure(queries_per_minute / 60.0, burst)
