"""
Monitoring and structured crawl events for the crawl frontier.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry, generate_latest
from prometheus_client import start_http_server

from .logger import get_crawler_logger


EVENT_TYPES = (
    'task_admitted',
    'task_dispatched',
    'task_retried',
    'task_terminal',
    'frontier_full',
    'robots_failure',
    'url_malformed'
)


@dataclass
class CrawlEvent:
    """A structured event emitted by the frontier core."""
    event_type: str
    timestamp: float
    fields: Dict[str, Any] = field(default_factory=dict)


class MetricsCollector:
    """Prometheus counters and gauges for crawl events, on a private registry."""

    def __init__(self, enable_http: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_http = enable_http
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.events_total = Counter(
            'crawlfrontier_events_total',
            'Crawl events by type',
            ['event_type'],
            registry=self.registry
        )
        self.terminal_total = Counter(
            'crawlfrontier_terminal_total',
            'Terminal task outcomes by status',
            ['status'],
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'crawlfrontier_fetch_seconds',
            'Time from dispatch to outcome',
            registry=self.registry
        )
        self.queue_size = Gauge(
            'crawlfrontier_queue_size',
            'Number of tasks in the frontier',
            registry=self.registry
        )
        self.in_flight = Gauge(
            'crawlfrontier_in_flight',
            'Number of fetches in flight',
            registry=self.registry
        )

    def start_http_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_http:
            return
        start_http_server(self.prometheus_port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")

    def counter_value(self, event_type: str) -> float:
        """Current count for an event type."""
        value = self.registry.get_sample_value(
            'crawlfrontier_events_total', {'event_type': event_type}
        )
        return value or 0.0

    def export(self) -> bytes:
        """Metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)


class CrawlerMonitor:
    """
    Observability sink for the frontier core.

    Every event is logged through a ``CrawlerLogAdapter`` with its fields as
    structured ``extra`` data, counted in Prometheus, and kept in a short
    in-memory history for inspection.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None, history_size: int = 1000):
        self.metrics = metrics or MetricsCollector()
        self.logger = get_crawler_logger('crawlfrontier.events')
        self.history_size = history_size
        self.events: List[CrawlEvent] = []
        self.start_time = time.time()

    def record_event(self, event_type: str, **fields):
        """Emit a structured event."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        event = CrawlEvent(event_type=event_type, timestamp=time.time(), fields=fields)
        self.events.append(event)
        if len(self.events) > self.history_size:
            self.events = self.events[-self.history_size:]

        self.metrics.events_total.labels(event_type=event_type).inc()
        if event_type == 'task_terminal' and 'status' in fields:
            self.metrics.terminal_total.labels(status=fields['status']).inc()

        level = logging.WARNING if event_type in ('frontier_full', 'robots_failure') else logging.DEBUG
        self.logger.log_event(level, event_type, **fields)

    def observe_fetch(self, seconds: float):
        self.metrics.fetch_seconds.observe(seconds)

    def update_queue_size(self, size: int):
        """Update the queue size metric."""
        self.metrics.queue_size.set(size)

    def update_in_flight(self, count: int):
        """Update the in-flight fetch gauge."""
        self.metrics.in_flight.set(count)

    def events_of(self, event_type: str) -> List[CrawlEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of event counts."""
        runtime = time.time() - self.start_time
        counts = {name: int(self.metrics.counter_value(name)) for name in EVENT_TYPES}
        return {
            'runtime_seconds': runtime,
            'events': counts
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Build a monitor and, if enabled, expose its metrics over HTTP."""
    metrics = MetricsCollector(enable_prometheus, prometheus_port)
    metrics.start_http_server()
    return CrawlerMonitor(metrics)
