"""Shared fixtures and fake collaborators.

No test touches the network: fetches go through ``FakeFetcher`` and Redis is
replaced with ``unittest.mock`` objects.
"""

import asyncio
from collections import defaultdict
from typing import Dict, List, Optional

import pytest

from crawlfrontier.crawler.fetcher import FetchOutcome
from crawlfrontier.crawler.normalizer import get_host
from crawlfrontier.crawler.politeness import PolitenessRegistry
from crawlfrontier.utils.config import Config


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher:
    """
    Scripted fetch layer.

    ``pages`` maps a canonical URL to a FetchOutcome, or to a list of
    outcomes consumed one per attempt. Unknown URLs get a 404. ``delays``
    overrides the fetch delay for individual URLs.
    """

    def __init__(self, pages: Optional[Dict[str, object]] = None, delay: float = 0.0,
                 delays: Optional[Dict[str, float]] = None):
        self.pages = pages or {}
        self.delay = delay
        self.delays = delays or {}
        self.calls: List[str] = []
        self.dispatch_times: Dict[str, List[float]] = defaultdict(list)
        self.host_in_flight: Dict[str, int] = defaultdict(int)
        self.max_host_in_flight: Dict[str, int] = defaultdict(int)
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str, headers=None) -> FetchOutcome:
        loop = asyncio.get_running_loop()
        host = get_host(url)
        self.calls.append(url)
        self.dispatch_times[host].append(loop.time())

        self.in_flight += 1
        self.host_in_flight[host] += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.max_host_in_flight[host] = max(self.max_host_in_flight[host], self.host_in_flight[host])
        try:
            delay = self.delays.get(url, self.delay)
            if delay:
                await asyncio.sleep(delay)
            scripted = self.pages.get(url)
            if scripted is None:
                return FetchOutcome.permanent(url, "HTTP 404", status_code=404)
            if isinstance(scripted, list):
                return scripted.pop(0) if len(scripted) > 1 else scripted[0]
            return scripted
        finally:
            self.in_flight -= 1
            self.host_in_flight[host] -= 1

    def attempts(self, url: str) -> int:
        return self.calls.count(url)


def html_page(url: str, *hrefs: str) -> FetchOutcome:
    body = ''.join(f'<a href="{h}">link</a>' for h in hrefs)
    return FetchOutcome.success(
        url, 200, f'<html><body>{body}</body></html>'.encode('utf-8'),
        content_type='text/html; charset=utf-8'
    )


def make_config(**frontier_overrides) -> Config:
    """Small, fast configuration with in-memory storage."""
    frontier = {
        'seed_urls': [],
        'global_concurrency_cap': 4,
        'per_host_concurrency_cap': 1,
        'default_crawl_delay': 0.0,
        'max_crawl_delay': 5.0,
        'max_depth': 2,
        'base_backoff': 0.01,
        'backoff_multiplier': 2.0,
        'backoff_jitter': 0.5,
        'max_backoff': 1.0,
        'fetch_timeout': 1.0,
    }
    frontier.update(frontier_overrides)
    return Config.from_dict({
        'frontier': frontier,
        'storage': {'type': 'memory'},
        'monitoring': {'stats_interval': 60.0},
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def politeness(clock):
    return PolitenessRegistry(default_crawl_delay=2.0, per_host_concurrency_cap=1,
                              respect_robots_txt=False, clock=clock)
