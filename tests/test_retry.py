"""Tests for outcome classification and backoff."""

import random

import pytest

from crawlfrontier.crawler.fetcher import FetchOutcome
from crawlfrontier.crawler.retry import RetryController, TerminalStatus
from crawlfrontier.crawler.url_frontier import CrawlTask, TaskState


URL = 'http://example.com/page'


@pytest.fixture
def controller():
    return RetryController(max_retry_attempts=4, base_backoff=1.0, backoff_multiplier=2.0,
                           backoff_jitter=0.5, max_backoff=600.0, rng=random.Random(7))


def test_transient_failures_back_off_then_exhaust(controller):
    task = CrawlTask(URL, priority=5)
    delays = []
    now = 0.0

    for attempt in range(1, 4):
        task.attempts += 1
        decision = controller.classify(task, FetchOutcome.transient(URL, 'Client error'))
        assert not decision.is_terminal
        controller.apply(task, decision, now)
        assert task.state == TaskState.RETRYING
        assert task.eligible_at == pytest.approx(now + decision.delay)
        delays.append(decision.delay)

    assert delays[0] < delays[1] < delays[2]
    assert task.priority == 2

    task.attempts += 1
    decision = controller.classify(task, FetchOutcome.transient(URL, 'Client error'))
    assert decision.terminal == TerminalStatus.EXHAUSTED
    assert task.attempts == 4


def test_backoff_bounds(controller):
    for attempt in range(1, 6):
        low = 2.0 ** (attempt - 1)
        assert low <= controller.backoff(attempt) <= low * 1.5


def test_backoff_capped():
    controller = RetryController(base_backoff=1.0, max_backoff=10.0, rng=random.Random(1))
    assert controller.backoff(20) == 10.0


def test_retry_after_overrides_backoff(controller):
    task = CrawlTask(URL)
    task.attempts = 1
    outcome = FetchOutcome.from_status(URL, 429, {'Retry-After': '30'})

    decision = controller.classify(task, outcome)
    controller.apply(task, decision, now=100.0)

    assert decision.delay == 30.0
    assert task.eligible_at == 130.0


def test_retry_after_on_503_is_capped():
    controller = RetryController(max_retry_after=60.0)
    task = CrawlTask(URL)
    task.attempts = 1
    decision = controller.classify(task, FetchOutcome.from_status(URL, 503, {'retry-after': '7200'}))
    assert decision.delay == 60.0


@pytest.mark.parametrize('outcome, status', [
    (FetchOutcome.success(URL), TerminalStatus.SUCCEEDED),
    (FetchOutcome.from_status(URL, 404), TerminalStatus.FAILED),
    (FetchOutcome.from_status(URL, 301), TerminalStatus.FAILED),
    (FetchOutcome.protocol_violation(URL, 'Body exceeds limit'), TerminalStatus.MALFORMED),
])
def test_terminal_outcomes(controller, outcome, status):
    task = CrawlTask(URL)
    task.attempts = 1
    assert controller.classify(task, outcome).terminal == status


def test_apply_rejects_terminal_decision(controller):
    task = CrawlTask(URL)
    task.attempts = 1
    decision = controller.classify(task, FetchOutcome.success(URL))
    with pytest.raises(ValueError):
        controller.apply(task, decision, 0.0)


def test_priority_floor(controller):
    task = CrawlTask(URL, priority=0)
    task.attempts = 1
    decision = controller.classify(task, FetchOutcome.transient(URL, 'HTTP 500', status_code=500))
    controller.apply(task, decision, 0.0)
    assert task.priority == 0
