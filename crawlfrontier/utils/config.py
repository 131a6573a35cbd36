"""
Configuration management for the crawl frontier.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, fields

from ..exceptions import ConfigurationError


DEFAULT_TRACKING_PARAMS = [
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid'
]


@dataclass
class FrontierConfig:
    """Configuration for scheduling, retries and the frontier queue."""
    seed_urls: List[str] = field(default_factory=list)
    global_concurrency_cap: int = 10
    per_host_concurrency_cap: int = 1
    frontier_capacity: int = 100000
    default_crawl_delay: float = 1.0
    max_crawl_delay: float = 60.0
    max_depth: int = 3
    seed_priority: int = 10
    max_retry_attempts: int = 5
    base_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_jitter: float = 0.5
    max_backoff: float = 600.0
    max_retry_after: float = 3600.0
    retry_priority_demotion: int = 1
    fetch_timeout: float = 30.0
    seen_set_capacity: Optional[int] = 1000000
    query_mode: str = 'sort'
    tracking_params: List[str] = field(default_factory=lambda: list(DEFAULT_TRACKING_PARAMS))


@dataclass
class RobotsConfig:
    """Configuration for robots.txt handling."""
    respect_robots_txt: bool = True
    robots_refresh_interval: float = 3600.0
    robots_max_attempts: int = 3
    robots_retry_delay: float = 2.0
    robots_failure_delay: float = 10.0
    robots_failure_policy: str = 'allow'


@dataclass
class FetcherConfig:
    """Configuration for the HTTP fetch layer."""
    user_agent: str = 'crawlfrontier/1.0'
    max_content_bytes: int = 10 * 1024 * 1024
    robots_timeout: float = 10.0


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    enabled: bool = False
    host: str = 'localhost'
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    seen_set_key: str = 'crawlfrontier:seen'
    outcome_stream_key: str = 'crawlfrontier:outcomes'


@dataclass
class StorageConfig:
    """Configuration for terminal outcome records."""
    type: str = 'file'
    file: str = 'data/outcomes.jsonl'


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: str = 'logs/crawler.log'
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False
    stats_interval: float = 30.0


@dataclass
class Config:
    """Main configuration class."""
    frontier: FrontierConfig = field(default_factory=FrontierConfig)
    robots: RobotsConfig = field(default_factory=RobotsConfig)
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Config':
        """Build a Config from a parsed YAML mapping; missing sections use defaults."""
        data = data or {}
        sections = {}
        for section in fields(cls):
            section_type = section.default_factory
            raw = data.get(section.name) or {}
            if not isinstance(raw, dict):
                raise ConfigurationError(f"Section '{section.name}' must be a mapping")
            known = {f.name for f in fields(section_type)}
            unknown = set(raw) - known
            if unknown:
                raise ConfigurationError(
                    f"Unknown option(s) in '{section.name}': {', '.join(sorted(unknown))}"
                )
            sections[section.name] = section_type(**raw)
        return cls(**sections)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Config):
    """Validate configuration values. Raises ConfigurationError on the first problem."""
    f = config.frontier
    r = config.robots

    positive_ints = {
        'global_concurrency_cap': f.global_concurrency_cap,
        'per_host_concurrency_cap': f.per_host_concurrency_cap,
        'frontier_capacity': f.frontier_capacity,
        'max_retry_attempts': f.max_retry_attempts,
        'robots_max_attempts': r.robots_max_attempts,
        'max_content_bytes': config.fetcher.max_content_bytes,
    }
    for name, value in positive_ints.items():
        if not _is_int(value) or value < 1:
            raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

    if f.seen_set_capacity is not None and (not _is_int(f.seen_set_capacity) or f.seen_set_capacity < 1):
        raise ConfigurationError(
            f"seen_set_capacity must be a positive integer or null, got {f.seen_set_capacity!r}"
        )

    non_negative_ints = {
        'max_depth': f.max_depth,
        'seed_priority': f.seed_priority,
        'retry_priority_demotion': f.retry_priority_demotion,
    }
    for name, value in non_negative_ints.items():
        if not _is_int(value) or value < 0:
            raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

    non_negative = {
        'default_crawl_delay': f.default_crawl_delay,
        'max_crawl_delay': f.max_crawl_delay,
        'base_backoff': f.base_backoff,
        'backoff_jitter': f.backoff_jitter,
        'max_backoff': f.max_backoff,
        'max_retry_after': f.max_retry_after,
        'robots_retry_delay': r.robots_retry_delay,
        'robots_failure_delay': r.robots_failure_delay,
    }
    for name, value in non_negative.items():
        if not _is_number(value) or value < 0:
            raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")

    positive = {
        'fetch_timeout': f.fetch_timeout,
        'backoff_multiplier': f.backoff_multiplier,
        'robots_refresh_interval': r.robots_refresh_interval,
        'robots_timeout': config.fetcher.robots_timeout,
    }
    for name, value in positive.items():
        if not _is_number(value) or value <= 0:
            raise ConfigurationError(f"{name} must be a positive number, got {value!r}")

    if f.max_crawl_delay < f.default_crawl_delay:
        raise ConfigurationError("max_crawl_delay must be >= default_crawl_delay")

    if f.backoff_multiplier <= 1:
        raise ConfigurationError("backoff_multiplier must be greater than 1")

    # Jitter wider than the growth factor would let consecutive delays overlap
    if f.backoff_jitter >= f.backoff_multiplier - 1:
        raise ConfigurationError("backoff_jitter must be smaller than backoff_multiplier - 1")

    if f.max_backoff < f.base_backoff:
        raise ConfigurationError("max_backoff must be >= base_backoff")

    if f.query_mode not in ('sort', 'preserve'):
        raise ConfigurationError("query_mode must be 'sort' or 'preserve'")

    if config.robots.robots_failure_policy not in ('allow', 'deny'):
        raise ConfigurationError("robots_failure_policy must be 'allow' or 'deny'")

    if config.storage.type not in ('file', 'memory', 'redis'):
        raise ConfigurationError("storage type must be 'file', 'memory' or 'redis'")

    if config.storage.type == 'redis' and not config.redis.enabled:
        raise ConfigurationError("storage type 'redis' requires redis.enabled")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            try:
                config_data = yaml.safe_load(file)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}")

        if config_data is not None and not isinstance(config_data, dict):
            raise ConfigurationError("Top level of the configuration must be a mapping")

        try:
            self._config = Config.from_dict(config_data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        validate_config(self._config)
        logging.getLogger(__name__).info("Configuration validation passed")
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
