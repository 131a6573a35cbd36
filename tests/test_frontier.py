"""Tests for the URL frontier."""

import pytest

from crawlfrontier.crawler.politeness import PolitenessRegistry
from crawlfrontier.crawler.url_frontier import CrawlTask, TaskState, URLFrontier
from crawlfrontier.exceptions import FrontierFull


@pytest.fixture
def open_politeness(clock):
    return PolitenessRegistry(default_crawl_delay=0.0, per_host_concurrency_cap=100,
                              respect_robots_txt=False, clock=clock)


class TestCapacity:
    def test_full_frontier_rejects_until_pop(self, open_politeness, clock):
        frontier = URLFrontier(open_politeness, capacity=2)
        frontier.push(CrawlTask('http://a.test/'))
        frontier.push(CrawlTask('http://b.test/'))

        with pytest.raises(FrontierFull):
            frontier.push(CrawlTask('http://c.test/'))

        assert frontier.pop_ready(clock()).task is not None
        assert frontier.push(CrawlTask('http://c.test/'))
        assert len(frontier) == 2

    def test_duplicate_push_ignored(self, open_politeness):
        frontier = URLFrontier(open_politeness)
        assert frontier.push(CrawlTask('http://a.test/'))
        assert not frontier.push(CrawlTask('http://a.test/'))
        assert len(frontier) == 1
        assert 'http://a.test/' in frontier


class TestOrdering:
    def test_round_robin_across_hosts(self, open_politeness, clock):
        frontier = URLFrontier(open_politeness)
        for url in ('http://a.test/1', 'http://a.test/2', 'http://a.test/3', 'http://b.test/1'):
            frontier.push(CrawlTask(url))

        order = [frontier.pop_ready(clock()).task.url for _ in range(4)]
        assert order == ['http://a.test/1', 'http://b.test/1', 'http://a.test/2', 'http://a.test/3']
        assert frontier.is_empty()

    def test_priority_then_discovery_time(self, open_politeness, clock):
        frontier = URLFrontier(open_politeness)
        frontier.push(CrawlTask('http://a.test/low', priority=1, discovered_time=1.0))
        frontier.push(CrawlTask('http://a.test/late', priority=5, discovered_time=3.0))
        frontier.push(CrawlTask('http://a.test/early', priority=5, discovered_time=2.0))

        order = [frontier.pop_ready(clock()).task.url for _ in range(3)]
        assert order == ['http://a.test/early', 'http://a.test/late', 'http://a.test/low']


class TestWaits:
    def test_reports_crawl_delay_wait(self, politeness, clock):
        frontier = URLFrontier(politeness)
        frontier.push(CrawlTask('http://example.com/1'))
        frontier.push(CrawlTask('http://example.com/2'))

        first = frontier.pop_ready(clock())
        assert first.task.url == 'http://example.com/1'

        # Slot still held
        held = frontier.pop_ready(clock() + 5)
        assert held.task is None and held.wait is None

        politeness.record_completion('example.com')
        waiting = frontier.pop_ready(clock() + 0.5)
        assert waiting.task is None
        assert waiting.wait == pytest.approx(1.5)

        assert frontier.pop_ready(clock() + 2.0).task.url == 'http://example.com/2'

    def test_task_not_served_before_eligible(self, open_politeness, clock):
        frontier = URLFrontier(open_politeness)
        frontier.push(CrawlTask('http://a.test/', eligible_at=clock() + 5))

        result = frontier.pop_ready(clock())
        assert result.task is None
        assert result.wait == pytest.approx(5.0)
        assert frontier.peek_delay(clock()) == pytest.approx(5.0)

        clock.advance(5)
        assert frontier.pop_ready(clock()).task.url == 'http://a.test/'

    def test_empty_frontier_has_no_wait(self, open_politeness, clock):
        result = URLFrontier(open_politeness).pop_ready(clock())
        assert result.task is None and result.wait is None


def test_task_host_and_scheme():
    task = CrawlTask('https://user@example.com:8443/a', depth=2, priority=3)
    assert task.host == 'example.com:8443'
    assert task.scheme == 'https'
    assert task.state is TaskState.PENDING and task.attempts == 0
