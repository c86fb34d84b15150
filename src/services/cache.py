"""Sharded in-memory response cache with TTL, LRU eviction and KB versioning.

Keys are normalised query texts.  The keyspace is split over a fixed
number of shards chosen by a stable hash; each shard is an
``OrderedDict`` LRU guarded by its own :class:`asyncio.Lock`, so
concurrent sessions only contend when they hit the same shard.

An entry is a miss when it has expired *or* when it was produced from a
different knowledge base version than the caller's; either way it is
evicted on sight.  Escalated (emergency) answers are never stored here.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import structlog

from src.models.enums import Category, ResponseSource, UrgencyTier

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CacheEntry:
    """A cached answer.  Only ``hit_count`` changes after insertion."""

    key: str
    response: str
    category: Category
    urgency: UrgencyTier
    kb_version: int
    source: ResponseSource
    confidence: float = 0.0
    created_at: float = 0.0
    expires_at: float = 0.0
    hit_count: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


def _stable_hash(text: str) -> str:
    """Deterministic hash for shard selection (independent of PYTHONHASHSEED)."""
    return hashlib.sha256(text.encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Shard
# ---------------------------------------------------------------------------


class _Shard:
    __slots__ = ("data", "lock")

    def __init__(self) -> None:
        self.data: OrderedDict[str, CacheEntry] = OrderedDict()
        self.lock = asyncio.Lock()


# ---------------------------------------------------------------------------
# ResponseCache
# ---------------------------------------------------------------------------


class ResponseCache:
    """Async, sharded LRU cache for assistant answers.

    Parameters
    ----------
    max_entries:
        Total capacity, split evenly across shards (each shard holds at
        most ``ceil(max_entries / shards)`` entries).
    ttl_seconds:
        Default time-to-live for :meth:`put`.
    shards:
        Number of independently locked partitions.
    clock:
        Monotonic time source, injectable for tests.
    """

    __slots__ = ("_clock", "_evictions", "_hits", "_misses", "_per_shard", "_shards", "_ttl")

    def __init__(
        self,
        *,
        max_entries: int = 2_048,
        ttl_seconds: float = 600.0,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1 or shards < 1:
            raise ValueError("max_entries and shards must be >= 1")
        shards = min(shards, max_entries)
        self._shards = tuple(_Shard() for _ in range(shards))
        self._per_shard = math.ceil(max_entries / shards)
        self._ttl = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[int(_stable_hash(key), 16) % len(self._shards)]

    # -- Core operations -------------------------------------------------------

    async def get(self, key: str, kb_version: int) -> CacheEntry | None:
        """Return a snapshot of the live entry for *key*, or ``None``.

        Expired entries and entries from another KB version are removed
        and reported as misses.  A hit bumps the entry's ``hit_count``
        and its LRU position.
        """
        shard = self._shard_for(key)
        async with shard.lock:
            entry = shard.data.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del shard.data[key]
                self._misses += 1
                logger.debug("cache.expired", key_hash=_stable_hash(key))
                return None
            if entry.kb_version != kb_version:
                del shard.data[key]
                self._misses += 1
                logger.debug(
                    "cache.stale_version",
                    key_hash=_stable_hash(key),
                    entry_version=entry.kb_version,
                    current_version=kb_version,
                )
                return None
            shard.data.move_to_end(key)
            entry.hit_count += 1
            self._hits += 1
            return replace(entry)

    async def put(self, entry: CacheEntry, *, ttl_seconds: float | None = None) -> None:
        """Insert *entry* under ``entry.key``; the last writer wins.

        ``created_at``/``expires_at`` are stamped here and ``hit_count``
        starts at zero.
        """
        now = self._clock()
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        stored = replace(entry, created_at=now, expires_at=now + ttl, hit_count=0)
        shard = self._shard_for(entry.key)
        async with shard.lock:
            if entry.key in shard.data:
                del shard.data[entry.key]
            if len(shard.data) >= self._per_shard:
                self._evict(shard, now)
            shard.data[entry.key] = stored

    def _evict(self, shard: _Shard, now: float) -> None:
        expired = [key for key, value in shard.data.items() if value.expired(now)]
        for key in expired:
            del shard.data[key]
        while len(shard.data) >= self._per_shard:
            key, _ = shard.data.popitem(last=False)
            self._evictions += 1
            logger.debug("cache.evicted", key_hash=_stable_hash(key))

    async def peek(self, key: str) -> CacheEntry | None:
        """Entry for *key* regardless of expiry or version, without touching it."""
        shard = self._shard_for(key)
        async with shard.lock:
            entry = shard.data.get(key)
            return replace(entry) if entry is not None else None

    async def delete(self, key: str) -> None:
        shard = self._shard_for(key)
        async with shard.lock:
            shard.data.pop(key, None)

    async def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        removed = 0
        for shard in self._shards:
            async with shard.lock:
                removed += len(shard.data)
                shard.data.clear()
        logger.info("cache.cleared", removed=removed)
        return removed

    # -- Introspection ---------------------------------------------------------

    @property
    def size(self) -> int:
        """Current number of (possibly expired) entries."""
        return sum(len(shard.data) for shard in self._shards)

    @property
    def capacity(self) -> int:
        return self._per_shard * len(self._shards)

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "size": self.size,
            "capacity": self.capacity,
            "shards": len(self._shards),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "ttl_seconds": self._ttl,
        }
