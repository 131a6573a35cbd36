"""Tests for fetch outcome mapping."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from crawlfrontier.crawler.fetcher import FetchOutcome, OutcomeKind, WebFetcher, parse_retry_after
from crawlfrontier.exceptions import RobotsFetchFailure
from crawlfrontier.utils.config import Config


URL = 'http://example.com/'


class TestFromStatus:
    def test_success(self):
        outcome = FetchOutcome.from_status(URL, 200, {'Content-Type': 'text/html'}, b'<html></html>')
        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.is_success
        assert outcome.content == b'<html></html>'

    @pytest.mark.parametrize('status', [429, 500, 502, 503, 504])
    def test_transient(self, status):
        assert FetchOutcome.from_status(URL, status).kind == OutcomeKind.TRANSIENT

    @pytest.mark.parametrize('status', [301, 400, 403, 404, 410])
    def test_permanent(self, status):
        outcome = FetchOutcome.from_status(URL, status)
        assert outcome.kind == OutcomeKind.PERMANENT
        assert outcome.status_code == status

    def test_retry_after_header_is_case_insensitive(self):
        outcome = FetchOutcome.from_status(URL, 429, {'RETRY-AFTER': '12'})
        assert outcome.retry_after == 12.0

    def test_timeout_is_transient(self):
        outcome = FetchOutcome.timeout(URL, 30)
        assert outcome.kind == OutcomeKind.TRANSIENT
        assert '30.0s' in outcome.error


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after('30') == 30.0

    def test_http_date(self):
        now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)
        assert parse_retry_after('Wed, 21 Oct 2015 07:28:00 GMT', now=now) == 30.0

    def test_date_in_the_past(self):
        now = datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert parse_retry_after('Wed, 21 Oct 2015 07:28:00 GMT', now=now) == 0.0

    @pytest.mark.parametrize('value', [None, '', '  ', 'soon', '-5'])
    def test_invalid(self, value):
        assert parse_retry_after(value) is None


def test_fetcher_from_config():
    config = Config.from_dict({'frontier': {'fetch_timeout': 12}, 'fetcher': {'user_agent': 'bot/2'}})
    fetcher = WebFetcher.from_config(config)
    assert fetcher.user_agent == 'bot/2'
    assert fetcher.request_timeout == 12
    assert fetcher.session is None


async def test_robots_server_error_names_the_host():
    fetcher = WebFetcher.from_config(Config.from_dict({}))
    fetcher.session = MagicMock()
    fetcher.session.get.return_value.__aenter__ = AsyncMock(return_value=MagicMock(status=503))
    fetcher.session.get.return_value.__aexit__ = AsyncMock(return_value=False)

    with pytest.raises(RobotsFetchFailure) as exc_info:
        await fetcher.fetch_robots('http://a.test:8080/robots.txt')

    assert exc_info.value.host == 'a.test:8080'
    assert str(exc_info.value) == 'Could not fetch robots.txt for a.test:8080: HTTP 503'
