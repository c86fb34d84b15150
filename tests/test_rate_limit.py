"""Tests for the per-user sliding-window rate limiter."""

from __future__ import annotations

import pytest
from conftest import FakeClock

from src.services.errors import RateLimitExceededError
from src.services.rate_limit import RateBucket, SlidingWindowRateLimiter


@pytest.fixture
def limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(limit=2, window_seconds=60, idle_seconds=120, shards=2, clock=clock)


class TestSlidingWindowRateLimiter:
    async def test_admits_up_to_limit(self, limiter: SlidingWindowRateLimiter) -> None:
        assert await limiter.admit("ana") is True
        assert await limiter.admit("ana") is True
        assert await limiter.admit("ana") is False, "third request inside the window should be rejected"

    async def test_users_are_independent(self, limiter: SlidingWindowRateLimiter) -> None:
        await limiter.admit("ana")
        await limiter.admit("ana")
        assert await limiter.admit("luis") is True, "another user's budget must be unaffected"

    async def test_window_slides(self, limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
        await limiter.admit("ana")
        clock.advance(10)
        await limiter.admit("ana")
        clock.advance(50)
        assert await limiter.admit("ana") is False, "the first admission is exactly at the window edge"
        clock.advance(1)
        assert await limiter.admit("ana") is True, "the first admission has left the window"

    async def test_rejection_is_not_recorded(self, limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
        await limiter.admit("ana")
        await limiter.admit("ana")
        for _ in range(5):
            await limiter.admit("ana")
        assert len(await limiter.snapshot("ana")) == 2, "rejected requests must not consume budget"

    async def test_bucket_pruned_and_sorted(self, limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
        await limiter.admit("ana", now=1_000.0)
        await limiter.admit("ana", now=1_030.0)
        clock.advance(65)
        await limiter.admit("ana")
        timestamps = await limiter.snapshot("ana")
        assert list(timestamps) == sorted(timestamps)
        assert all(ts >= clock.now - 60 for ts in timestamps), "nothing older than the window remains"

    async def test_explicit_now(self, limiter: SlidingWindowRateLimiter) -> None:
        assert await limiter.admit("ana", now=0.0)
        assert await limiter.admit("ana", now=1.0)
        assert not await limiter.admit("ana", now=2.0)
        assert await limiter.admit("ana", now=61.0)

    async def test_remaining(self, limiter: SlidingWindowRateLimiter) -> None:
        assert await limiter.remaining("ana") == 2
        await limiter.admit("ana")
        assert await limiter.remaining("ana") == 1

    async def test_retry_after(self, limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
        assert await limiter.retry_after("ana") == 0.0
        await limiter.admit("ana")
        clock.advance(10)
        await limiter.admit("ana")
        clock.advance(10)
        assert await limiter.retry_after("ana") == pytest.approx(40.0), (
            "the oldest admission leaves the window 60s after it was recorded"
        )

    async def test_acquire_raises_with_retry_after(self, limiter: SlidingWindowRateLimiter) -> None:
        await limiter.acquire("ana")
        await limiter.acquire("ana")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.acquire("ana")
        assert exc_info.value.retry_after_seconds == pytest.approx(60.0)
        assert exc_info.value.user_id == "ana"

    async def test_cleanup_drops_idle_buckets(self, limiter: SlidingWindowRateLimiter, clock: FakeClock) -> None:
        await limiter.admit("ana")
        clock.advance(60)
        await limiter.admit("luis")
        clock.advance(61)
        removed = await limiter.cleanup()
        assert removed == 1, "only the bucket idle for longer than idle_seconds goes"
        assert limiter.tracked_users == 1

    def test_invalid_configuration(self) -> None:
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(limit=0)
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(window_seconds=0)


class TestRateBucket:
    def test_out_of_order_record_stays_sorted(self) -> None:
        bucket = RateBucket()
        bucket.record(10.0)
        bucket.record(30.0)
        bucket.record(20.0)
        assert list(bucket.timestamps) == [10.0, 20.0, 30.0]

    def test_prune_keeps_boundary(self) -> None:
        bucket = RateBucket()
        for ts in (1.0, 2.0, 3.0):
            bucket.record(ts)
        bucket.prune(2.0)
        assert list(bucket.timestamps) == [2.0, 3.0]
