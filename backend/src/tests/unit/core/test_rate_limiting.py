"""
Tests for outbound Google API rate limiting.

Covers the token bucket (burst, refill, hot reconfiguration, waiting) and
the cool-down flags consulted by ProviderRateLimiter.
"""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from drivelink.core.exceptions import RateLimitedError
from drivelink.core.rate_limiting import (
    SERVICE_DRIVE,
    SERVICE_DRIVE_ACTIVITY,
    ProviderRateLimiter,
    TokenBucket,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTokenBucket:
    """Local token bucket behaviour."""

    def test_burst_then_refusal(self):
        """A fresh bucket grants exactly ``burst`` immediate tokens."""
        clock = FakeClock()
        bucket = TokenBucket(rate_per_second=1.0, burst=3, clock=clock)

        results = [bucket.try_acquire() for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[-1].retry_after_seconds == pytest.approx(1.0)

    def test_refill_over_time(self):
        clock = FakeClock()
        bucket = TokenBucket(rate_per_second=2.0, burst=2, clock=clock)
        bucket.try_acquire()
        bucket.try_acquire()
        assert not bucket.try_acquire().allowed

        clock.advance(0.5)
        assert bucket.try_acquire().allowed
        assert not bucket.try_acquire().allowed

    def test_refill_capped_at_burst(self):
        clock = FakeClock()
        bucket = TokenBucket(rate_per_second=10.0, burst=2, clock=clock)
        clock.advance(100)
        assert [bucket.try_acquire().allowed for _ in range(3)] == [True, True, False]

    def test_per_minute_rate(self):
        bucket = TokenBucket.per_minute(120, 5)
        assert bucket.rate == pytest.approx(2.0)
        assert bucket.burst == 5

    def test_rejects_non_positive_configuration(self):
        with pytest.raises(ValueError):
            TokenBucket(rate_per_second=0, burst=1)
        bucket = TokenBucket(rate_per_second=1, burst=1)
        with pytest.raises(ValueError):
            bucket.reconfigure(1, 0)

    def test_reconfigure_caps_tokens_at_new_burst(self):
        """Shrinking the burst drops surplus tokens; raising the rate speeds refill."""
        clock = FakeClock()
        bucket = TokenBucket(rate_per_second=1.0, burst=10, clock=clock)

        bucket.reconfigure(5.0, 2)

        assert bucket.rate == 5.0
        assert bucket.burst == 2
        assert [bucket.try_acquire().allowed for _ in range(3)] == [True, True, False]
        clock.advance(0.2)
        assert bucket.try_acquire().allowed

    @pytest.mark.asyncio
    async def test_acquire_times_out(self):
        """Waiting past the deadline raises RateLimitedError."""
        bucket = TokenBucket(rate_per_second=0.001, burst=1)
        await bucket.acquire(timeout=0.05)

        with pytest.raises(RateLimitedError) as exc_info:
            await bucket.acquire(timeout=0.05)
        assert exc_info.value.service_type == SERVICE_DRIVE

    @pytest.mark.asyncio
    async def test_acquire_waits_for_refill(self):
        bucket = TokenBucket(rate_per_second=50.0, burst=1)
        await bucket.acquire(timeout=1.0)
        # Next token arrives after ~20ms
        await asyncio.wait_for(bucket.acquire(timeout=1.0), timeout=2.0)

    @settings(max_examples=100)
    @given(
        rate=st.floats(min_value=0.1, max_value=20.0),
        burst=st.integers(min_value=1, max_value=20),
        steps=st.lists(st.floats(min_value=0.0, max_value=2.0), min_size=1, max_size=60),
    )
    def test_never_exceeds_rate_plus_burst(self, rate, burst, steps):
        """Over any schedule, grants never exceed burst + rate * elapsed."""
        clock = FakeClock()
        bucket = TokenBucket(rate_per_second=rate, burst=burst, clock=clock)

        granted = 0
        elapsed = 0.0
        for step in steps:
            clock.advance(step)
            elapsed += step
            if bucket.try_acquire().allowed:
                granted += 1

        assert granted <= burst + rate * elapsed + 1e-6


class TestProviderRateLimiter:
    """Cool-down flags and bucket gating."""

    @pytest.mark.asyncio
    async def test_user_flag_blocks_only_that_user(self, kv_store):
        limiter = ProviderRateLimiter(kv_store, flag_ttl_seconds=10)

        await limiter.flag_user(SERVICE_DRIVE, "user1")

        with pytest.raises(RateLimitedError):
            await limiter.acquire(SERVICE_DRIVE, "user1")
        await limiter.acquire(SERVICE_DRIVE, "user2")
        await limiter.acquire(SERVICE_DRIVE_ACTIVITY, "user1")

    @pytest.mark.asyncio
    async def test_project_flag_blocks_every_user(self, kv_store):
        limiter = ProviderRateLimiter(kv_store, flag_ttl_seconds=10)

        await limiter.flag_project(SERVICE_DRIVE_ACTIVITY)

        for user_id in ("user1", "user2"):
            with pytest.raises(RateLimitedError):
                await limiter.acquire(SERVICE_DRIVE_ACTIVITY, user_id)
        await limiter.acquire(SERVICE_DRIVE, "user1")

    @pytest.mark.asyncio
    async def test_flags_carry_ttl(self, kv_store, backend):
        limiter = ProviderRateLimiter(kv_store, flag_ttl_seconds=10)
        await limiter.flag_user(SERVICE_DRIVE, "user1")
        _, expiry = backend._data["user-rate_limited-drive-user1"]
        assert expiry is not None

    @pytest.mark.asyncio
    async def test_bucket_exhaustion_times_out(self, kv_store):
        bucket = TokenBucket(rate_per_second=0.001, burst=1)
        limiter = ProviderRateLimiter(kv_store, buckets={SERVICE_DRIVE: bucket}, wait_timeout_seconds=0.05)

        await limiter.acquire(SERVICE_DRIVE, "user1")
        with pytest.raises(RateLimitedError):
            await limiter.acquire(SERVICE_DRIVE, "user1")

    @pytest.mark.asyncio
    async def test_use_bucket_false_skips_bucket(self, kv_store):
        """Cleanup calls bypass the bucket but still honour flags."""
        bucket = TokenBucket(rate_per_second=0.001, burst=1)
        limiter = ProviderRateLimiter(kv_store, buckets={SERVICE_DRIVE: bucket}, wait_timeout_seconds=0.05)
        await limiter.acquire(SERVICE_DRIVE, "user1")

        await limiter.acquire(SERVICE_DRIVE, "user1", use_bucket=False)

        await limiter.flag_user(SERVICE_DRIVE, "user1")
        with pytest.raises(RateLimitedError):
            await limiter.acquire(SERVICE_DRIVE, "user1", use_bucket=False)

    def test_from_settings_and_reconfigure(self, kv_store, mock_settings):
        limiter = ProviderRateLimiter.from_settings(kv_store, mock_settings)
        bucket = limiter.bucket(SERVICE_DRIVE)
        assert bucket.rate == pytest.approx(1.0)
        assert bucket.burst == 10

        limiter.reconfigure(600, 20)

        assert limiter.bucket(SERVICE_DRIVE) is bucket
        assert bucket.rate == pytest.approx(10.0)
        assert bucket.burst == 20
