"""
URL Frontier implementation for managing URLs to crawl.
Implements per-host fair queues, politeness checks at pop time and
bounded capacity.
"""

import heapq
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from ..exceptions import FrontierFull
from .normalizer import get_host
from .politeness import PolitenessRegistry


class TaskState(Enum):
    """Crawl task states."""
    PENDING = 'pending'
    DISPATCHED = 'dispatched'
    RETRYING = 'retrying'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass
class CrawlTask:
    """Represents one pending or in-flight fetch of a canonical URL."""
    url: str
    depth: int = 0
    priority: int = 0
    parent_url: Optional[str] = None
    discovered_time: float = field(default_factory=time.time)
    eligible_at: float = 0.0
    attempts: int = 0
    state: TaskState = TaskState.PENDING
    deadline: Optional[float] = None
    first_dispatched_time: Optional[float] = None
    host: str = ''

    def __post_init__(self):
        if not self.host:
            self.host = get_host(self.url)

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme


@dataclass
class PopResult:
    """
    Outcome of ``URLFrontier.pop_ready``.

    When ``task`` is None, ``wait`` is the minimum time until some queued task
    may become dispatchable, or None if nothing is blocked on time alone.
    """
    task: Optional[CrawlTask] = None
    wait: Optional[float] = None


class _HostQueue:
    """Pending tasks for one host: eligible tasks by priority, the rest by eligible time."""

    def __init__(self):
        self.ready: List[Tuple[int, float, int, CrawlTask]] = []
        self.delayed: List[Tuple[float, int, CrawlTask]] = []

    def push(self, task: CrawlTask, seq: int):
        heapq.heappush(self.delayed, (task.eligible_at, seq, task))

    def promote(self, now: float):
        while self.delayed and self.delayed[0][0] <= now:
            _, seq, task = heapq.heappop(self.delayed)
            heapq.heappush(self.ready, (-task.priority, task.discovered_time, seq, task))

    def pop(self) -> CrawlTask:
        return heapq.heappop(self.ready)[-1]

    def next_eligible(self) -> Optional[float]:
        return self.delayed[0][0] if self.delayed else None

    def __len__(self) -> int:
        return len(self.ready) + len(self.delayed)


class URLFrontier:
    """
    Bounded, per-host fair queue of crawl tasks.

    Within a host, eligible tasks pop by priority (highest first), then by
    discovery time. Across hosts, ``pop_ready`` walks a round-robin rotation
    and serves the first host whose best task is eligible and which the
    politeness registry admits; that host then moves to the back of the
    rotation. A task leaves the frontier inside ``pop_ready``, so exactly one
    caller ever owns it.

    ``push`` and ``pop_ready`` contain no await points and are safe to call
    from any number of coroutines on the same event loop.
    """

    def __init__(self, politeness: PolitenessRegistry, capacity: int = 100000):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.politeness = politeness
        self.capacity = capacity
        self.logger = logging.getLogger(__name__)

        self._hosts: Dict[str, _HostQueue] = {}
        self._rotation: Deque[str] = deque()
        self._members: Set[str] = set()
        self._size = 0
        self._seq = itertools.count()

        self.stats = {
            'pushed': 0,
            'popped': 0,
            'rejected_full': 0
        }

    def push(self, task: CrawlTask) -> bool:
        """
        Add a task to the frontier.

        Returns:
            True if queued, False if a task for the same URL is already queued

        Raises:
            FrontierFull: if the frontier holds ``capacity`` tasks
        """
        if task.url in self._members:
            return False

        if self._size >= self.capacity:
            self.stats['rejected_full'] += 1
            raise FrontierFull(self.capacity)

        queue = self._hosts.get(task.host)
        if queue is None:
            queue = _HostQueue()
            self._hosts[task.host] = queue
            self._rotation.append(task.host)
            self.politeness.register_host(task.host, task.scheme)

        queue.push(task, next(self._seq))
        self._members.add(task.url)
        self._size += 1
        self.stats['pushed'] += 1
        self.logger.debug(f"Added URL to frontier: {task.url}")
        return True

    def pop_ready(self, now: float) -> PopResult:
        """Remove and return the next dispatchable task, or how long to wait for one."""
        waits = []

        for _ in range(len(self._rotation)):
            host = self._rotation[0]
            self._rotation.rotate(-1)
            queue = self._hosts[host]
            queue.promote(now)

            if not queue.ready:
                next_eligible = queue.next_eligible()
                if next_eligible is not None:
                    waits.append(next_eligible - now)
                continue

            admission = self.politeness.admit(host, now)
            if not admission.allowed:
                if admission.wait is not None:
                    waits.append(admission.wait)
                continue

            task = queue.pop()
            self._members.discard(task.url)
            self._size -= 1
            self.stats['popped'] += 1

            if not len(queue):
                # Served host was rotated to the back
                self._rotation.pop()
                del self._hosts[host]

            self.logger.debug(f"Retrieved URL from frontier: {task.url}")
            return PopResult(task=task)

        return PopResult(wait=max(0.0, min(waits)) if waits else None)

    def peek_delay(self, now: float) -> Optional[float]:
        """Time until the next task could be dispatched, without side effects."""
        best = None
        for host, queue in self._hosts.items():
            has_ready = bool(queue.ready) or (
                queue.next_eligible() is not None and queue.next_eligible() <= now
            )
            if has_ready:
                wait = self.politeness.peek_wait(host, now)
            else:
                wait = queue.next_eligible() - now
            if wait is not None and (best is None or wait < best):
                best = wait
        return best

    def __len__(self) -> int:
        return self._size

    def __contains__(self, url: str) -> bool:
        return url in self._members

    def is_empty(self) -> bool:
        """Check if the frontier is empty."""
        return self._size == 0

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {
            **self.stats,
            'total_queued': self._size,
            'hosts_with_urls': len(self._hosts),
            'capacity': self.capacity
        }
