"""
Crawler scheduler that pulls ready tasks from the frontier, dispatches them to
the fetch layer and routes every outcome through the retry controller.
"""

import asyncio
import logging
import random
import time
from typing import Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass
import redis.asyncio as redis

from .url_frontier import URLFrontier, CrawlTask, TaskState
from .fetcher import WebFetcher, FetchOutcome
from .parser import LinkExtractor
from .politeness import PolitenessRegistry
from .normalizer import URLNormalizer
from .retry import RetryController, RetryDecision, TerminalStatus
from ..exceptions import (
    FrontierFull, MalformedURL, PermanentFetchFailure,
    RetryExhausted, TransientFetchFailure
)
from ..storage.database import CrawlRecord, DatabaseManager
from ..storage.duplicate_detector import DuplicateDetector
from ..storage.seen_set import MemorySeenSet, RedisSeenSet
from ..utils.config import Config, validate_config
from ..utils.monitoring import CrawlerMonitor


# Upper bound on how long an idle worker sleeps before re-checking the frontier
MAX_IDLE_SLEEP = 1.0
MIN_SLEEP = 0.001


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0
    malformed: int = 0
    dropped: int = 0
    retried: int = 0
    timeouts: int = 0
    robots_disallowed: int = 0
    links_discovered: int = 0
    links_admitted: int = 0
    frontier_full: int = 0
    errors: int = 0
    max_in_flight: int = 0
    total_bytes_downloaded: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.succeeded / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Coordinates the frontier, politeness registry, deduplicator and retry
    controller around a pool of fetch workers.

    Each of the ``global_concurrency_cap`` workers loops: pop a ready task,
    dispatch it with a deadline, classify the outcome, then either finish the
    task, re-queue it with backoff, or enqueue its discovered links. Workers
    sleep until a push, a freed host slot, loaded robots rules, or the wait
    reported by the frontier.

    Collaborators (fetcher, parser, monitor) may be injected; anything not
    injected is built from ``config`` in ``initialize``.
    """

    def __init__(self, config: Config, fetcher=None, parser=None,
                 monitor: Optional[CrawlerMonitor] = None,
                 database: Optional[DatabaseManager] = None,
                 clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        validate_config(config)
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.clock = clock
        self.rng = rng

        # Components
        self.fetcher = fetcher
        self.parser = parser
        self.monitor = monitor or CrawlerMonitor()
        self.database = database
        self.redis_client: Optional[redis.Redis] = None
        self.politeness: Optional[PolitenessRegistry] = None
        self.url_frontier: Optional[URLFrontier] = None
        self.duplicate_detector: Optional[DuplicateDetector] = None
        self.retry_controller: Optional[RetryController] = None
        self._owns_fetcher = fetcher is None

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self.max_depth = config.frontier.max_depth
        self.fetch_timeout = config.frontier.fetch_timeout
        self.request_headers: Dict[str, str] = {}

        self._in_flight: Dict[str, CrawlTask] = {}
        self._wakeup: Optional[asyncio.Event] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._stopping = False
        self._finished = False

    async def initialize(self):
        """Initialize all crawler components."""
        cfg = self.config
        self._wakeup = asyncio.Event()
        self._semaphore = asyncio.Semaphore(cfg.frontier.global_concurrency_cap)

        if cfg.redis.enabled:
            self.redis_client = redis.Redis(
                host=cfg.redis.host,
                port=cfg.redis.port,
                db=cfg.redis.db,
                password=cfg.redis.password,
                decode_responses=True
            )
            await self.redis_client.ping()
            self.logger.info("Redis connection established")
            seen_set = RedisSeenSet(self.redis_client, cfg.redis.seen_set_key,
                                    cfg.frontier.seen_set_capacity)
        else:
            seen_set = MemorySeenSet(cfg.frontier.seen_set_capacity)

        if self.fetcher is None:
            self.fetcher = WebFetcher.from_config(cfg)
            await self.fetcher.start()

        if self.parser is None:
            self.parser = LinkExtractor()

        robots_loader = getattr(self.fetcher, 'fetch_robots', None)
        self.politeness = PolitenessRegistry.from_config(
            cfg, robots_loader=robots_loader, monitor=self.monitor, clock=self.clock
        )
        self.politeness.on_change = self._wake

        self.url_frontier = URLFrontier(self.politeness, cfg.frontier.frontier_capacity)

        normalizer = URLNormalizer(cfg.frontier.query_mode, cfg.frontier.tracking_params)
        self.duplicate_detector = DuplicateDetector(normalizer, seen_set)

        self.retry_controller = RetryController.from_config(cfg, rng=self.rng)

        if self.database is None:
            self.database = DatabaseManager.from_config(
                cfg.storage, self.redis_client, cfg.redis.outcome_stream_key
            )
        await self.database.initialize()

        self.logger.info("Crawler scheduler initialized successfully")

    async def submit_url(self, raw_url: str, base_url: Optional[str] = None, depth: int = 0,
                         parent_url: Optional[str] = None) -> Optional[CrawlTask]:
        """
        Normalize, deduplicate and enqueue a URL.

        Returns:
            The queued task, or None if the URL was already known or too deep

        Raises:
            MalformedURL: if the URL cannot be normalized
            FrontierFull: if the frontier has no room; the URL stays unknown
        """
        if depth > self.max_depth:
            return None

        canonical = await self.duplicate_detector.admit(raw_url, base_url)
        if canonical is None:
            return None
        if canonical in self._in_flight or canonical in self.url_frontier:
            # Re-admitted after seen-set eviction while still pending
            return None

        task = CrawlTask(
            url=canonical,
            depth=depth,
            priority=max(0, self.config.frontier.seed_priority - depth),
            parent_url=parent_url
        )
        try:
            queued = self.url_frontier.push(task)
        except FrontierFull:
            await self.duplicate_detector.rollback(canonical)
            self.stats.frontier_full += 1
            self.monitor.record_event('frontier_full', url=canonical,
                                      capacity=self.url_frontier.capacity)
            raise
        if not queued:
            return None

        self.monitor.record_event('task_admitted', url=canonical, host=task.host,
                                  depth=depth, priority=task.priority)
        self._wake()
        return task

    async def add_seed_urls(self, seed_urls: Optional[Iterable[str]] = None) -> int:
        """Add seed URLs to the frontier. Returns count of added URLs."""
        added_count = 0
        for url in (seed_urls if seed_urls is not None else self.config.frontier.seed_urls):
            try:
                if await self.submit_url(url):
                    added_count += 1
            except MalformedURL as e:
                self.logger.warning(f"Skipping seed: {e}")
                await self._record_malformed(url, e, depth=0, parent_url=None)
            except FrontierFull:
                self.logger.warning(f"Frontier full, {url} and remaining seeds not added")
                break

        self.logger.info(f"Added {added_count} seed URLs to frontier")
        return added_count

    async def start_crawling(self, max_pages: Optional[int] = None,
                             max_duration: Optional[float] = None):
        """
        Run the crawl until the frontier drains, a limit is hit, or
        ``stop_crawling`` is called.

        Args:
            max_pages: Maximum number of fetches to dispatch (None for unlimited)
            max_duration: Maximum duration in seconds (None for unlimited)
        """
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return

        self.is_running = True
        self._stopping = False
        self._finished = False
        self.stats = CrawlStats(start_time=time.time())

        try:
            if self.url_frontier.is_empty():
                await self.add_seed_urls()

            num_workers = self.config.frontier.global_concurrency_cap
            self.workers = [
                asyncio.create_task(self._worker(f"worker-{i}", max_pages, max_duration))
                for i in range(num_workers)
            ]
            stats_task = asyncio.create_task(self._stats_reporter())

            self.logger.info(f"Started crawling with {num_workers} workers")

            await asyncio.gather(*self.workers, return_exceptions=True)

            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)

            await self._log_final_stats()

        finally:
            self.is_running = False
            self.workers = []

    async def _worker(self, worker_id: str, max_pages: Optional[int] = None,
                      max_duration: Optional[float] = None):
        """Worker coroutine that processes tasks from the frontier."""
        self.logger.debug(f"Worker {worker_id} started")

        while not self._stopping and not self._finished:
            try:
                if max_pages and self.stats.dispatched >= max_pages:
                    self.logger.info(f"Reached max pages limit: {max_pages}")
                    self._request_stop()
                    break

                if max_duration and self.stats.elapsed_time >= max_duration:
                    self.logger.info(f"Reached max duration: {max_duration} seconds")
                    self._request_stop()
                    break

                self._wakeup.clear()
                result = self.url_frontier.pop_ready(self.clock())
                if result.task is None:
                    if self.url_frontier.is_empty() and not self._in_flight:
                        self._finished = True
                        self._wake()
                        break
                    await self._sleep(result.wait)
                    continue

                task = result.task
                self._claim(task)
                async with self._semaphore:
                    await self._process_task(task, worker_id)

            except asyncio.CancelledError:
                self.logger.debug(f"Worker {worker_id} cancelled")
                raise
            except Exception as e:
                self.logger.error(f"Worker {worker_id} error: {e}", exc_info=True)
                self.stats.errors += 1

        self.logger.debug(f"Worker {worker_id} finished")

    def _claim(self, task: CrawlTask):
        if task.url in self._in_flight:
            # submit_url refuses URLs that are queued or in flight
            self.logger.error(f"Task for {task.url} already in flight")
        self._in_flight[task.url] = task
        self.stats.max_in_flight = max(self.stats.max_in_flight, len(self._in_flight))

    async def _sleep(self, wait: Optional[float]):
        timeout = MAX_IDLE_SLEEP if wait is None else min(max(wait, MIN_SLEEP), MAX_IDLE_SLEEP)
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def _process_task(self, task: CrawlTask, worker_id: str):
        """Dispatch one task and handle its outcome."""
        try:
            now = self.clock()
            task.state = TaskState.DISPATCHED
            task.attempts += 1
            task.deadline = now + self.fetch_timeout
            if task.first_dispatched_time is None:
                task.first_dispatched_time = time.time()
            self.stats.dispatched += 1

            try:
                if not self.politeness.robots_allows(task.url):
                    self.stats.robots_disallowed += 1
                    outcome = FetchOutcome.permanent(task.url, "robots_disallowed")
                else:
                    self.politeness.record_dispatch(task.host, now)
                    self.monitor.record_event('task_dispatched', url=task.url, host=task.host,
                                              attempt=task.attempts, worker=worker_id)
                    outcome = await self._fetch_with_deadline(task)
            finally:
                self.politeness.record_completion(task.host)

            await self._handle_outcome(task, outcome)
        finally:
            self._in_flight.pop(task.url, None)
            self._wake()

    async def _fetch_with_deadline(self, task: CrawlTask) -> FetchOutcome:
        """Run the fetch collaborator, declaring a timeout at the task deadline."""
        started = self.clock()
        try:
            outcome = await asyncio.wait_for(
                self.fetcher.fetch(task.url, self.request_headers),
                timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError:
            self.stats.timeouts += 1
            self.logger.warning(f"No outcome for {task.url} within {self.fetch_timeout}s")
            outcome = FetchOutcome.timeout(task.url, self.fetch_timeout)
        except TransientFetchFailure as e:
            outcome = FetchOutcome.transient(task.url, str(e))
        except PermanentFetchFailure as e:
            outcome = FetchOutcome.permanent(task.url, e.reason, status_code=e.status_code)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Fetcher raised for {task.url}: {e}")
            outcome = FetchOutcome.transient(task.url, f"Fetch error: {e}")

        self.monitor.observe_fetch(self.clock() - started)
        return outcome

    async def _handle_outcome(self, task: CrawlTask, outcome: FetchOutcome):
        decision = self.retry_controller.classify(task, outcome)

        if decision.is_terminal:
            links_added = 0
            if decision.terminal == TerminalStatus.SUCCEEDED:
                task.state = TaskState.SUCCEEDED
                if outcome.content:
                    self.stats.total_bytes_downloaded += len(outcome.content)
                links_added = await self._queue_new_urls(task, outcome)
            else:
                task.state = TaskState.FAILED
            await self._finish(task, decision, outcome, links_added)
            return

        self.retry_controller.apply(task, decision, self.clock())
        try:
            self.url_frontier.push(task)
        except FrontierFull:
            self.stats.frontier_full += 1
            self.monitor.record_event('frontier_full', url=task.url,
                                      capacity=self.url_frontier.capacity)
            task.state = TaskState.FAILED
            await self._finish(task, RetryDecision.finish(TerminalStatus.DROPPED,
                                                          "frontier full on retry"), outcome)
            return

        self.stats.retried += 1
        self.monitor.record_event('task_retried', url=task.url, attempt=task.attempts,
                                  delay=round(decision.delay, 3), reason=decision.reason)
        self._wake()

    async def _finish(self, task: CrawlTask, decision: RetryDecision, outcome: FetchOutcome,
                      links_added: int = 0):
        """Record a terminal transition."""
        status = decision.terminal
        error = self._error_for(task, decision, outcome)

        if status == TerminalStatus.SUCCEEDED:
            self.stats.succeeded += 1
        elif status == TerminalStatus.FAILED:
            self.stats.failed += 1
        elif status == TerminalStatus.EXHAUSTED:
            self.stats.exhausted += 1
        elif status == TerminalStatus.MALFORMED:
            self.stats.malformed += 1
        elif status == TerminalStatus.DROPPED:
            self.stats.dropped += 1

        if error is not None:
            self.logger.warning(str(error))

        record = CrawlRecord.from_task(
            task, status, reason=decision.reason,
            http_status=outcome.status_code,
            error_type=type(error).__name__ if error is not None else None,
            links_discovered=links_added
        )
        await self.database.store_record(record)
        self.monitor.record_event('task_terminal', url=task.url, status=status.value,
                                  attempts=task.attempts, reason=decision.reason)

    def _error_for(self, task: CrawlTask, decision: RetryDecision, outcome: FetchOutcome):
        if decision.terminal == TerminalStatus.EXHAUSTED:
            return RetryExhausted(task.url, task.attempts)
        if decision.terminal in (TerminalStatus.FAILED, TerminalStatus.MALFORMED):
            return PermanentFetchFailure(task.url, decision.reason, outcome.status_code)
        if decision.terminal == TerminalStatus.DROPPED:
            return FrontierFull(self.url_frontier.capacity)
        return None

    async def _queue_new_urls(self, task: CrawlTask, outcome: FetchOutcome) -> int:
        """Queue links discovered on a successfully fetched page."""
        depth = task.depth + 1
        if depth > self.max_depth:
            return 0

        links = outcome.links
        if not links and outcome.content and self.parser is not None:
            try:
                links = self.parser.extract_links(task.url, outcome.content,
                                                  outcome.content_type, outcome.encoding)
            except Exception as e:
                self.logger.warning(f"Link extraction failed for {task.url}: {e}")
                links = []

        self.stats.links_discovered += len(links)
        added_count = 0
        for link in links:
            try:
                if await self.submit_url(link, base_url=task.url, depth=depth, parent_url=task.url):
                    added_count += 1
            except MalformedURL as e:
                await self._record_malformed(link, e, depth, task.url)
            except FrontierFull:
                self.logger.warning(f"Frontier full; dropping remaining links from {task.url}")
                break

        self.stats.links_admitted += added_count
        self.logger.debug(f"Queued {added_count} new URLs from {task.url}")
        return added_count

    async def _record_malformed(self, raw_url: str, error: MalformedURL, depth: int,
                                parent_url: Optional[str]):
        self.stats.malformed += 1
        self.monitor.record_event('url_malformed', url=raw_url, reason=error.reason)
        now = time.time()
        await self.database.store_record(CrawlRecord(
            url=raw_url,
            host='',
            status=TerminalStatus.MALFORMED.value,
            attempts=0,
            depth=depth,
            discovered_time=now,
            finished_time=now,
            reason=error.reason,
            error_type=type(error).__name__,
            parent_url=parent_url
        ))

    def _wake(self):
        if self._wakeup is not None:
            self._wakeup.set()

    def _request_stop(self):
        self._stopping = True
        self._wake()

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        interval = self.config.monitoring.stats_interval
        while True:
            await asyncio.sleep(interval)
            self._log_current_stats()

    def _log_current_stats(self):
        """Log current crawl statistics."""
        queued = len(self.url_frontier)
        self.monitor.update_queue_size(queued)
        self.monitor.update_in_flight(len(self._in_flight))

        self.logger.info(
            f"Crawl Progress: "
            f"Dispatched={self.stats.dispatched}, "
            f"Succeeded={self.stats.succeeded}, "
            f"Retried={self.stats.retried}, "
            f"Failed={self.stats.failed}, "
            f"Exhausted={self.stats.exhausted}, "
            f"Queued={queued}, "
            f"InFlight={len(self._in_flight)}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    async def _log_final_stats(self):
        """Log final crawl statistics."""
        db_stats = await self.database.get_stats()

        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Fetches dispatched: {self.stats.dispatched}")
        self.logger.info(f"Succeeded: {self.stats.succeeded}")
        self.logger.info(f"Failed: {self.stats.failed}, exhausted: {self.stats.exhausted}, "
                         f"malformed: {self.stats.malformed}, dropped: {self.stats.dropped}")
        self.logger.info(f"Retries: {self.stats.retried} (timeouts: {self.stats.timeouts})")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Data downloaded: {self.stats.total_bytes_downloaded / 1024 / 1024:.1f} MB")
        self.logger.info(f"URLs remaining in queue: {len(self.url_frontier)}")
        self.logger.info(f"Frontier stats: {self.url_frontier.get_stats()}")
        self.logger.info(f"Politeness stats: {self.politeness.get_stats()}")
        self.logger.info(f"Duplicate detection stats: {self.duplicate_detector.get_stats()}")
        self.logger.info(f"Storage stats: {db_stats}")

    async def stop_crawling(self, drain_timeout: Optional[float] = None):
        """
        Stop dispatching new tasks. In-flight fetches complete or hit their
        deadline; workers still running after ``drain_timeout`` are cancelled.
        """
        self.logger.info("Stopping crawler...")
        self._request_stop()

        pending = [w for w in self.workers if not w.done()]
        if not pending:
            return

        timeout = self.fetch_timeout + 1.0 if drain_timeout is None else drain_timeout
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for worker in still_running:
            worker.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    async def close(self):
        """Close all connections and cleanup resources."""
        if self.is_running:
            await self.stop_crawling()

        if self.politeness:
            await self.politeness.close()

        if self.fetcher and self._owns_fetcher:
            await self.fetcher.close()

        if self.database:
            await self.database.close()

        if self.redis_client:
            await self.redis_client.aclose()

        self.logger.info("Crawler scheduler closed")

    def in_flight(self) -> List[CrawlTask]:
        """Tasks currently dispatched."""
        return list(self._in_flight.values())

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'dispatched': self.stats.dispatched,
            'succeeded': self.stats.succeeded,
            'failed': self.stats.failed,
            'exhausted': self.stats.exhausted,
            'malformed': self.stats.malformed,
            'dropped': self.stats.dropped,
            'retried': self.stats.retried,
            'timeouts': self.stats.timeouts,
            'robots_disallowed': self.stats.robots_disallowed,
            'links_discovered': self.stats.links_discovered,
            'links_admitted': self.stats.links_admitted,
            'frontier_full': self.stats.frontier_full,
            'errors': self.stats.errors,
            'max_in_flight': self.stats.max_in_flight,
            'elapsed_time': self.stats.elapsed_time,
            'urls_in_queue': len(self.url_frontier) if self.url_frontier else 0,
            'in_flight': len(self._in_flight),
            'is_running': self.is_running
        }
