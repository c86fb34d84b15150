"""Per-user sliding-window rate limiter for generative calls.

Each user owns a :class:`RateBucket`: an ascending deque of admission
timestamps.  Before every check the bucket is pruned of timestamps that
fell out of the window; the request is admitted when fewer than
``limit`` remain.  Buckets not touched for ``idle_seconds`` are dropped
by a periodic sweep to keep memory bounded.

Buckets are spread over shards, each with its own :class:`asyncio.Lock`.
A rejection never denies service: the orchestrator only skips the
generative call and serves a knowledge-base answer instead.
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final

import structlog

from src.services.errors import RateLimitExceededError

logger = structlog.get_logger(__name__)

_CLEANUP_INTERVAL: Final[int] = 1_000  # admissions between idle sweeps


@dataclass(slots=True)
class RateBucket:
    """Admission timestamps for one user, oldest first."""

    timestamps: deque[float] = field(default_factory=deque)
    last_seen: float = 0.0

    def prune(self, window_start: float) -> None:
        window = self.timestamps
        while window and window[0] < window_start:
            window.popleft()

    def record(self, now: float) -> None:
        window = self.timestamps
        if not window or window[-1] <= now:
            window.append(now)
        else:
            # Out-of-order caller timestamp; keep the deque ascending.
            bisect.insort(window, now)


class _Shard:
    __slots__ = ("buckets", "lock")

    def __init__(self) -> None:
        self.buckets: dict[str, RateBucket] = {}
        self.lock = asyncio.Lock()


class SlidingWindowRateLimiter:
    """Sliding-window limiter keyed by user id.

    Parameters
    ----------
    limit:
        Maximum admissions per user inside any window.
    window_seconds:
        Length of the sliding window.
    idle_seconds:
        Buckets untouched for this long are discarded.  Never shorter
        than the window.
    shards:
        Number of independently locked bucket partitions.
    clock:
        Time source used when callers do not pass ``now``.
    """

    __slots__ = (
        "_cleanup_counter",
        "_clock",
        "_idle",
        "_limit",
        "_rejections",
        "_shards",
        "_window",
    )

    def __init__(
        self,
        *,
        limit: int = 20,
        window_seconds: float = 60.0,
        idle_seconds: float = 3_600.0,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._limit = limit
        self._window = window_seconds
        self._idle = max(idle_seconds, window_seconds)
        self._shards = tuple(_Shard() for _ in range(max(1, shards)))
        self._clock = clock
        self._cleanup_counter = 0
        self._rejections = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_seconds(self) -> float:
        return self._window

    def _shard_for(self, user_id: str) -> _Shard:
        digest = hashlib.sha256(user_id.encode()).hexdigest()[:8]
        return self._shards[int(digest, 16) % len(self._shards)]

    def _retry_after(self, bucket: RateBucket, now: float) -> float:
        if len(bucket.timestamps) < self._limit:
            return 0.0
        # The slot frees up when the oldest counted admission leaves the window.
        oldest = bucket.timestamps[len(bucket.timestamps) - self._limit]
        return max(0.0, self._window - (now - oldest))

    # -- Admission -------------------------------------------------------------

    async def admit(self, user_id: str, now: float | None = None) -> bool:
        """Record and allow the request if the user is under the limit."""
        now = self._clock() if now is None else now
        shard = self._shard_for(user_id)
        async with shard.lock:
            bucket = shard.buckets.get(user_id)
            if bucket is None:
                bucket = shard.buckets[user_id] = RateBucket()
            bucket.last_seen = max(bucket.last_seen, now)
            bucket.prune(now - self._window)
            if len(bucket.timestamps) >= self._limit:
                self._rejections += 1
                logger.warning(
                    "rate_limit.exceeded",
                    user_id=user_id,
                    requests_in_window=len(bucket.timestamps),
                    limit=self._limit,
                )
                return False
            bucket.record(now)

        self._cleanup_counter += 1
        if self._cleanup_counter >= _CLEANUP_INTERVAL:
            self._cleanup_counter = 0
            await self.cleanup(now)
        return True

    async def acquire(self, user_id: str, now: float | None = None) -> None:
        """Like :meth:`admit` but raises :class:`RateLimitExceededError`."""
        now = self._clock() if now is None else now
        if not await self.admit(user_id, now):
            raise RateLimitExceededError(user_id, await self.retry_after(user_id, now))

    # -- Introspection ---------------------------------------------------------

    async def remaining(self, user_id: str, now: float | None = None) -> int:
        """Admissions left for *user_id* in the current window."""
        now = self._clock() if now is None else now
        shard = self._shard_for(user_id)
        async with shard.lock:
            bucket = shard.buckets.get(user_id)
            if bucket is None:
                return self._limit
            bucket.prune(now - self._window)
            return max(0, self._limit - len(bucket.timestamps))

    async def retry_after(self, user_id: str, now: float | None = None) -> float:
        """Seconds until *user_id* is admitted again (0 when admitted now)."""
        now = self._clock() if now is None else now
        shard = self._shard_for(user_id)
        async with shard.lock:
            bucket = shard.buckets.get(user_id)
            if bucket is None:
                return 0.0
            bucket.prune(now - self._window)
            return self._retry_after(bucket, now)

    async def snapshot(self, user_id: str) -> tuple[float, ...]:
        """Copy of the user's admission timestamps, oldest first."""
        shard = self._shard_for(user_id)
        async with shard.lock:
            bucket = shard.buckets.get(user_id)
            return tuple(bucket.timestamps) if bucket is not None else ()

    @property
    def tracked_users(self) -> int:
        return sum(len(shard.buckets) for shard in self._shards)

    def stats(self) -> dict[str, Any]:
        return {
            "limit": self._limit,
            "window_seconds": self._window,
            "tracked_users": self.tracked_users,
            "rejections": self._rejections,
        }

    # -- Maintenance -----------------------------------------------------------

    async def cleanup(self, now: float | None = None) -> int:
        """Drop buckets idle for longer than ``idle_seconds``."""
        now = self._clock() if now is None else now
        idle_before = now - self._idle
        removed = 0
        for shard in self._shards:
            async with shard.lock:
                stale = [uid for uid, bucket in shard.buckets.items() if bucket.last_seen < idle_before]
                for uid in stale:
                    del shard.buckets[uid]
                removed += len(stale)
        if removed:
            logger.debug("rate_limit.cleanup", removed_users=removed)
        return removed
