"""Tests for configuration loading and validation."""

import pytest

from crawlfrontier.exceptions import ConfigurationError
from crawlfrontier.utils.config import Config, ConfigManager, load_config, get_config, validate_config


def _write(tmp_path, text):
    path = tmp_path / 'config.yaml'
    path.write_text(text)
    return path


def test_defaults_for_missing_sections(tmp_path):
    config = load_config(str(_write(tmp_path, 'frontier:\n  seed_urls: ["http://a.test/"]\n')))
    assert config.frontier.seed_urls == ['http://a.test/']
    assert config.frontier.global_concurrency_cap == 10
    assert config.robots.robots_failure_policy == 'allow'
    assert config.storage.type == 'file'
    assert get_config() is config


def test_empty_file_uses_defaults(tmp_path):
    config = ConfigManager(str(_write(tmp_path, ''))).load_config()
    assert config.frontier.seen_set_capacity == 1000000


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / 'nope.yaml')).load_config()


@pytest.mark.parametrize('text', [
    'frontier: [1, 2]\n',
    'frontier:\n  not_an_option: 1\n',
    '- just\n- a list\n',
    'frontier: {seed_urls: [\n',
])
def test_malformed_files(tmp_path, text):
    with pytest.raises(ConfigurationError):
        ConfigManager(str(_write(tmp_path, text))).load_config()


@pytest.mark.parametrize('section, values', [
    ('frontier', {'global_concurrency_cap': 0}),
    ('frontier', {'per_host_concurrency_cap': -1}),
    ('frontier', {'frontier_capacity': 0}),
    ('frontier', {'max_retry_attempts': 0}),
    ('frontier', {'default_crawl_delay': -1.0}),
    ('frontier', {'backoff_multiplier': 1.0}),
    ('frontier', {'backoff_multiplier': 1.5, 'backoff_jitter': 0.5}),
    ('frontier', {'base_backoff': 10.0, 'max_backoff': 5.0}),
    ('frontier', {'fetch_timeout': 0}),
    ('frontier', {'query_mode': 'shuffle'}),
    ('frontier', {'seen_set_capacity': 0}),
    ('frontier', {'seen_set_capacity': 'lots'}),
    ('frontier', {'global_concurrency_cap': True}),
    ('frontier', {'default_crawl_delay': 'soon'}),
    ('frontier', {'max_depth': '3'}),
    ('frontier', {'fetch_timeout': None}),
    ('frontier', {'max_crawl_delay': 'forever'}),
    ('frontier', {'backoff_multiplier': '2'}),
    ('frontier', {'base_backoff': None}),
    ('robots', {'robots_refresh_interval': 'hourly'}),
    ('fetcher', {'max_content_bytes': 1.5}),
    ('robots', {'robots_failure_policy': 'ignore'}),
    ('storage', {'type': 'cassandra'}),
    ('storage', {'type': 'redis'}),
])
def test_validation_errors(section, values):
    config = Config.from_dict({section: values})
    with pytest.raises(ConfigurationError):
        validate_config(config)


def test_unbounded_seen_set_is_valid():
    validate_config(Config.from_dict({'frontier': {'seen_set_capacity': None}}))
