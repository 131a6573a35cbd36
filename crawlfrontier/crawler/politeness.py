"""
Per-host politeness: crawl delays, concurrency caps and robots.txt rules.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Set
from urllib.robotparser import RobotFileParser

from ..exceptions import RobotsFetchFailure
from .normalizer import get_host


# Called with a robots.txt URL; returns its text, or None when the host has no
# robots.txt. Raises RobotsFetchFailure when the rules could not be retrieved.
RobotsLoader = Callable[[str], Awaitable[Optional[str]]]


class RobotsState(Enum):
    """Lifecycle of a host's robots.txt snapshot."""
    UNKNOWN = 'unknown'
    PENDING = 'pending'
    READY = 'ready'
    FAILED = 'failed'


@dataclass
class HostState:
    """Scheduling context for a single host."""
    host: str
    crawl_delay: float
    concurrency_cap: int
    scheme: str = 'http'
    last_dispatch: Optional[float] = None
    in_flight: int = 0
    robots: Optional[RobotFileParser] = None
    robots_fetched_at: Optional[float] = None
    robots_state: RobotsState = RobotsState.UNKNOWN
    robots_failures: int = 0

    @property
    def robots_url(self) -> str:
        return f"{self.scheme}://{self.host}/robots.txt"

    def next_dispatch_time(self) -> Optional[float]:
        if self.last_dispatch is None:
            return None
        return self.last_dispatch + self.crawl_delay


@dataclass
class Admission:
    """
    Result of a politeness check.

    ``wait`` is the time until the host may become admissible again, or None
    when that depends on an event (a slot freeing up, robots rules loading).
    """
    allowed: bool
    wait: Optional[float] = None


class PolitenessRegistry:
    """
    Owns every HostState and is the single decision point for dispatching.

    ``admit`` checks robots state, the concurrency cap and the crawl delay and,
    when all pass, takes the in-flight slot and reserves the dispatch time in
    the same call. None of the bookkeeping methods await, so under asyncio no
    other worker can interleave between the check and the mutation.

    robots.txt handling is fail-closed: a host is held while its rules are
    being fetched or refreshed. When the rules cannot be fetched after
    ``robots_max_attempts`` tries, the host falls back to
    ``robots_failure_delay`` and is crawled (policy ``allow``) or held until
    the next refresh (policy ``deny``).
    """

    def __init__(self, default_crawl_delay: float = 1.0,
                 per_host_concurrency_cap: int = 1,
                 max_crawl_delay: float = 60.0,
                 user_agent: str = '*',
                 respect_robots_txt: bool = True,
                 robots_loader: Optional[RobotsLoader] = None,
                 robots_refresh_interval: float = 3600.0,
                 robots_max_attempts: int = 3,
                 robots_retry_delay: float = 2.0,
                 robots_failure_delay: float = 10.0,
                 robots_failure_policy: str = 'allow',
                 robots_poll_interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 monitor=None):
        if robots_failure_policy not in ('allow', 'deny'):
            raise ValueError("robots_failure_policy must be 'allow' or 'deny'")
        self.default_crawl_delay = default_crawl_delay
        self.per_host_concurrency_cap = per_host_concurrency_cap
        self.max_crawl_delay = max_crawl_delay
        self.user_agent = user_agent
        self.respect_robots_txt = respect_robots_txt
        self.robots_loader = robots_loader
        self.robots_refresh_interval = robots_refresh_interval
        self.robots_max_attempts = robots_max_attempts
        self.robots_retry_delay = robots_retry_delay
        self.robots_failure_delay = robots_failure_delay
        self.robots_failure_policy = robots_failure_policy
        self.robots_poll_interval = robots_poll_interval
        self.clock = clock
        self.monitor = monitor

        self.logger = logging.getLogger(__name__)
        self.on_change: Optional[Callable[[], None]] = None

        self._hosts: Dict[str, HostState] = {}
        self._robots_tasks: Set[asyncio.Task] = set()
        self.stats = {
            'admitted': 0,
            'held_delay': 0,
            'held_cap': 0,
            'held_robots': 0,
            'robots_fetched': 0,
            'robots_failures': 0
        }

    @classmethod
    def from_config(cls, config, robots_loader: Optional[RobotsLoader] = None,
                    monitor=None, clock: Callable[[], float] = time.monotonic) -> 'PolitenessRegistry':
        return cls(
            default_crawl_delay=config.frontier.default_crawl_delay,
            per_host_concurrency_cap=config.frontier.per_host_concurrency_cap,
            max_crawl_delay=config.frontier.max_crawl_delay,
            user_agent=config.fetcher.user_agent,
            respect_robots_txt=config.robots.respect_robots_txt,
            robots_loader=robots_loader,
            robots_refresh_interval=config.robots.robots_refresh_interval,
            robots_max_attempts=config.robots.robots_max_attempts,
            robots_retry_delay=config.robots.robots_retry_delay,
            robots_failure_delay=config.robots.robots_failure_delay,
            robots_failure_policy=config.robots.robots_failure_policy,
            clock=clock,
            monitor=monitor
        )

    def register_host(self, host: str, scheme: str = 'http') -> HostState:
        """Get or create the HostState for ``host``."""
        state = self._hosts.get(host)
        if state is None:
            state = HostState(
                host=host,
                crawl_delay=self.default_crawl_delay,
                concurrency_cap=self.per_host_concurrency_cap,
                scheme=scheme
            )
            self._hosts[host] = state
        return state

    def get_host_state(self, host: str) -> Optional[HostState]:
        return self._hosts.get(host)

    def set_crawl_delay(self, host: str, delay: float):
        """Override the crawl delay for a host, clamped to the configured range."""
        state = self.register_host(host)
        state.crawl_delay = self._clamp_delay(delay)

    def admit(self, host: str, now: float) -> Admission:
        """
        Decide whether ``host`` may receive a dispatch at ``now``.

        On success the host's in-flight count is incremented and ``now`` is
        reserved as its last dispatch time.
        """
        state = self.register_host(host)

        if self.respect_robots_txt:
            hold = self._robots_gate(state, now)
            if hold is not None:
                self.stats['held_robots'] += 1
                return Admission(False, hold)

        if state.in_flight >= state.concurrency_cap:
            self.stats['held_cap'] += 1
            return Admission(False, None)

        ready_at = state.next_dispatch_time()
        if ready_at is not None and now < ready_at:
            self.stats['held_delay'] += 1
            return Admission(False, ready_at - now)

        state.in_flight += 1
        state.last_dispatch = now
        self.stats['admitted'] += 1
        return Admission(True, 0.0)

    def peek_wait(self, host: str, now: float) -> Optional[float]:
        """Non-mutating estimate of how long until ``host`` could be admitted."""
        state = self._hosts.get(host)
        if state is None:
            return 0.0
        if self.respect_robots_txt:
            if state.robots_state == RobotsState.PENDING:
                return None
            if (state.robots_state == RobotsState.FAILED
                    and self.robots_failure_policy == 'deny'):
                return max(0.0, self._refresh_due_at(state) - now)
        if state.in_flight >= state.concurrency_cap:
            return None
        ready_at = state.next_dispatch_time()
        if ready_at is None or now >= ready_at:
            return 0.0
        return ready_at - now

    def record_dispatch(self, host: str, now: float):
        """Record the actual dispatch time of a fetch to ``host``."""
        state = self.register_host(host)
        state.last_dispatch = now

    def record_completion(self, host: str):
        """Free one in-flight slot for ``host``."""
        state = self._hosts.get(host)
        if state is None:
            return
        if state.in_flight > 0:
            state.in_flight -= 1
        else:
            self.logger.warning(f"Completion recorded for {host} with no fetch in flight")
        self._notify()

    def robots_allows(self, url: str) -> bool:
        """Check a canonical URL against its host's robots rules."""
        if not self.respect_robots_txt:
            return True

        state = self._hosts.get(get_host(url))
        if state is None:
            return False

        if state.robots is not None:
            return state.robots.can_fetch(self.user_agent, url)

        if state.robots_state == RobotsState.FAILED:
            return self.robots_failure_policy == 'allow'

        # No snapshot yet
        return False

    def load_robots(self, host: str, robots_text: Optional[str], now: Optional[float] = None):
        """Install a robots.txt snapshot for ``host``. ``None`` means no rules."""
        state = self.register_host(host)
        parser = RobotFileParser()
        parser.set_url(state.robots_url)
        parser.parse((robots_text or '').splitlines())

        delay = self.default_crawl_delay
        robots_delay = parser.crawl_delay(self.user_agent)
        if robots_delay is not None:
            delay = max(delay, float(robots_delay))

        state.robots = parser
        state.robots_state = RobotsState.READY
        state.robots_fetched_at = self.clock() if now is None else now
        state.robots_failures = 0
        state.crawl_delay = self._clamp_delay(delay)
        self.stats['robots_fetched'] += 1

        self.logger.debug(f"Loaded robots.txt for {host} (crawl delay {state.crawl_delay}s)")
        self._notify()

    async def refresh_robots(self, host: str):
        """Fetch robots.txt for ``host`` with retries, then install or fail over."""
        state = self.register_host(host)
        state.robots_state = RobotsState.PENDING

        if self.robots_loader is None:
            self.load_robots(host, None)
            return

        last_error: Optional[RobotsFetchFailure] = None
        for attempt in range(1, self.robots_max_attempts + 1):
            try:
                robots_text = await self.robots_loader(state.robots_url)
                break
            except RobotsFetchFailure as e:
                last_error = e
            except Exception as e:
                last_error = RobotsFetchFailure(host, str(e))

            self.logger.debug(
                f"robots.txt attempt {attempt}/{self.robots_max_attempts} failed for {host}: {last_error}"
            )
            if attempt < self.robots_max_attempts:
                await asyncio.sleep(self.robots_retry_delay * attempt)
        else:
            self._robots_failed(state, last_error)
            return

        self.load_robots(host, robots_text)

    def _robots_failed(self, state: HostState, error: Optional[RobotsFetchFailure]):
        state.robots_state = RobotsState.FAILED
        state.robots_fetched_at = self.clock()
        state.robots_failures += 1
        state.crawl_delay = self._clamp_delay(max(self.default_crawl_delay, self.robots_failure_delay))
        self.stats['robots_failures'] += 1

        action = "crawling with conservative delay" if self.robots_failure_policy == 'allow' else "holding host"
        self.logger.warning(
            f"{error or RobotsFetchFailure(state.host, 'unknown error')}; "
            f"{action} ({state.crawl_delay}s) until next refresh"
        )
        if self.monitor:
            self.monitor.record_event('robots_failure', host=state.host,
                                      policy=self.robots_failure_policy)
        self._notify()

    def _robots_gate(self, state: HostState, now: float) -> Optional[float]:
        """Return a hold duration when robots state blocks the host, else None."""
        if state.robots_state == RobotsState.PENDING:
            return self.robots_poll_interval

        if state.robots_state == RobotsState.UNKNOWN or now >= self._refresh_due_at(state):
            self._start_robots_fetch(state)
            if state.robots_state == RobotsState.PENDING:
                return self.robots_poll_interval

        if state.robots_state == RobotsState.FAILED and self.robots_failure_policy == 'deny':
            return max(self.robots_poll_interval, self._refresh_due_at(state) - now)

        return None

    def _refresh_due_at(self, state: HostState) -> float:
        if state.robots_fetched_at is None:
            return float('-inf')
        return state.robots_fetched_at + self.robots_refresh_interval

    def _start_robots_fetch(self, state: HostState):
        if self.robots_loader is None:
            self.load_robots(state.host, None)
            return
        state.robots_state = RobotsState.PENDING
        task = asyncio.get_running_loop().create_task(self.refresh_robots(state.host))
        self._robots_tasks.add(task)
        task.add_done_callback(self._robots_tasks.discard)

    def _clamp_delay(self, delay: float) -> float:
        return min(max(0.0, delay), self.max_crawl_delay)

    def _notify(self):
        if self.on_change:
            self.on_change()

    def pending_robots(self) -> int:
        """Number of robots.txt fetches in progress."""
        return sum(1 for s in self._hosts.values() if s.robots_state == RobotsState.PENDING)

    async def close(self):
        """Cancel outstanding robots.txt fetches."""
        for task in list(self._robots_tasks):
            task.cancel()
        if self._robots_tasks:
            await asyncio.gather(*self._robots_tasks, return_exceptions=True)
        self._robots_tasks.clear()

    def get_stats(self) -> Dict[str, int]:
        return {
            **self.stats,
            'hosts': len(self._hosts),
            'in_flight': sum(s.in_flight for s in self._hosts.values()),
            'robots_pending': self.pending_robots()
        }
