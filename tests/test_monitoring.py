"""Tests for structured events, metrics and log formatting."""

import json
import logging

import pytest

from crawlfrontier.utils.logger import CrawlerLogAdapter, JSONFormatter, PerformanceFilter
from crawlfrontier.utils.monitoring import CrawlerMonitor, MetricsCollector


def test_events_are_counted_and_kept():
    monitor = CrawlerMonitor()
    monitor.record_event('task_admitted', url='http://a.test/')
    monitor.record_event('task_terminal', url='http://a.test/', status='succeeded')

    assert monitor.metrics.counter_value('task_admitted') == 1
    assert monitor.metrics.registry.get_sample_value(
        'crawlfrontier_terminal_total', {'status': 'succeeded'}) == 1
    assert monitor.events_of('task_terminal')[0].fields['status'] == 'succeeded'
    assert monitor.get_summary()['events']['task_admitted'] == 1


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        CrawlerMonitor().record_event('page_parsed')


def test_monitors_do_not_share_registries():
    first, second = CrawlerMonitor(), CrawlerMonitor()
    first.record_event('frontier_full')
    assert second.metrics.counter_value('frontier_full') == 0


def test_history_is_bounded():
    monitor = CrawlerMonitor(history_size=3)
    for i in range(5):
        monitor.record_event('task_dispatched', n=i)
    assert [e.fields['n'] for e in monitor.events] == [2, 3, 4]


def test_export_text_format():
    metrics = MetricsCollector()
    metrics.queue_size.set(4)
    assert b'crawlfrontier_queue_size 4.0' in metrics.export()


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord('crawlfrontier.events', logging.INFO, __file__, 10,
                               'task_retried', None, None)
    record.extra_fields = {'event_type': 'task_retried', 'attempt': 2}
    payload = json.loads(JSONFormatter().format(record))
    assert payload['message'] == 'task_retried'
    assert payload['attempt'] == 2
    assert payload['level'] == 'INFO'


def test_log_adapter_merges_context(caplog):
    adapter = CrawlerLogAdapter(logging.getLogger('crawlfrontier.test'), {'worker': 'worker-1'})
    with caplog.at_level(logging.INFO, logger='crawlfrontier.test'):
        adapter.log_event(logging.INFO, 'task_dispatched', url='http://a.test/')

    record = caplog.records[-1]
    assert record.extra_fields == {
        'event_type': 'task_dispatched', 'url': 'http://a.test/', 'worker': 'worker-1'
    }


def test_performance_filter_drops_access_logs():
    noisy = logging.LogRecord('aiohttp.access', logging.INFO, __file__, 1, 'GET /', None, None)
    ours = logging.LogRecord('crawlfrontier', logging.INFO, __file__, 1, 'hello', None, None)
    assert not PerformanceFilter().filter(noisy)
    assert PerformanceFilter().filter(ours)
