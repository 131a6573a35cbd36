"""
SeenSet backends: the record of every canonical URL admitted to the frontier.

``try_admit`` is the only way to ask "is this URL known?": it inserts and
reports novelty in one step, so two workers discovering the same link cannot
both enqueue it.
"""

import logging
import time
from collections import OrderedDict
from typing import Dict, Optional

import redis.asyncio as redis


class SeenSet:
    """Interface for SeenSet backends."""

    async def try_admit(self, canonical_url: str) -> bool:
        """Insert the URL. Returns True if it was not known before."""
        raise NotImplementedError

    async def forget(self, canonical_url: str):
        """Remove an admission that could not be honored."""
        raise NotImplementedError

    async def contains(self, canonical_url: str) -> bool:
        """Check membership without touching recency."""
        raise NotImplementedError

    async def size(self) -> int:
        raise NotImplementedError

    def get_stats(self) -> Dict[str, int]:
        raise NotImplementedError


class MemorySeenSet(SeenSet):
    """
    In-process SeenSet with least-recently-seen eviction.

    Every rediscovery of a URL refreshes its recency, so URLs that keep
    appearing in links stay known while one-off URLs age out first once
    ``capacity`` is reached. ``capacity=None`` never evicts.

    ``try_admit`` contains no await point and is therefore atomic with respect
    to other coroutines on the same event loop.
    """

    def __init__(self, capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be positive or None")
        self.capacity = capacity
        self._urls: 'OrderedDict[str, None]' = OrderedDict()
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'admitted': 0,
            'rejected': 0,
            'evicted': 0,
            'forgotten': 0
        }

    async def try_admit(self, canonical_url: str) -> bool:
        return self.admit_now(canonical_url)

    def admit_now(self, canonical_url: str) -> bool:
        """Synchronous check-and-insert."""
        if canonical_url in self._urls:
            self._urls.move_to_end(canonical_url)
            self.stats['rejected'] += 1
            return False

        self._urls[canonical_url] = None
        self.stats['admitted'] += 1

        if self.capacity is not None and len(self._urls) > self.capacity:
            evicted, _ = self._urls.popitem(last=False)
            self.stats['evicted'] += 1
            self.logger.debug(f"Evicted least recently seen URL: {evicted}")

        return True

    async def forget(self, canonical_url: str):
        if canonical_url in self._urls:
            del self._urls[canonical_url]
            self.stats['forgotten'] += 1

    async def contains(self, canonical_url: str) -> bool:
        return canonical_url in self._urls

    async def size(self) -> int:
        return len(self._urls)

    def __len__(self) -> int:
        return len(self._urls)

    def get_stats(self) -> Dict[str, int]:
        return {**self.stats, 'size': len(self._urls)}


class RedisSeenSet(SeenSet):
    """
    SeenSet shared between crawler processes through a Redis sorted set.

    Members are scored with their last-seen time. ``ZADD`` without flags
    returns the number of *new* members, which gives an atomic server-side
    check-and-insert while also refreshing recency for known URLs. When a
    capacity is set, the oldest members are trimmed in the same transaction.
    """

    def __init__(self, redis_client: redis.Redis, key: str = "crawlfrontier:seen",
                 capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be positive or None")
        self.redis_client = redis_client
        self.key = key
        self.capacity = capacity
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'admitted': 0,
            'rejected': 0,
            'forgotten': 0
        }

    async def try_admit(self, canonical_url: str) -> bool:
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.zadd(self.key, {canonical_url: time.time()})
            if self.capacity is not None:
                pipe.zremrangebyrank(self.key, 0, -(self.capacity + 1))
            results = await pipe.execute()

        added = bool(results[0])
        if added:
            self.stats['admitted'] += 1
        else:
            self.stats['rejected'] += 1
        return added

    async def forget(self, canonical_url: str):
        removed = await self.redis_client.zrem(self.key, canonical_url)
        if removed:
            self.stats['forgotten'] += 1

    async def contains(self, canonical_url: str) -> bool:
        return await self.redis_client.zscore(self.key, canonical_url) is not None

    async def size(self) -> int:
        return await self.redis_client.zcard(self.key)

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
