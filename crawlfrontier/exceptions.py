"""
Exception hierarchy for the crawl frontier.
"""

from typing import Optional


class CrawlFrontierError(Exception):
    """Base class for all crawl frontier errors."""
    pass


class ConfigurationError(CrawlFrontierError):
    """Invalid configuration detected at startup. The only fatal error."""
    pass


class MalformedURL(CrawlFrontierError):
    """URL could not be normalized into a canonical form."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Malformed URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class FrontierFull(CrawlFrontierError):
    """Frontier is at capacity; the caller should back off."""

    def __init__(self, capacity: int):
        super().__init__(f"Frontier is full (capacity={capacity})")
        self.capacity = capacity


class RobotsFetchFailure(CrawlFrontierError):
    """robots.txt could not be retrieved for a host."""

    def __init__(self, host: str, reason: str):
        super().__init__(f"Could not fetch robots.txt for {host}: {reason}")
        self.host = host
        self.reason = reason


class TransientFetchFailure(CrawlFrontierError):
    """Fetch failed in a way that may succeed on retry."""
    pass


class PermanentFetchFailure(CrawlFrontierError):
    """Fetch failed in a way that will not succeed on retry."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Permanent failure for {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code


class RetryExhausted(CrawlFrontierError):
    """Task kept failing transiently until it ran out of attempts."""

    def __init__(self, url: str, attempts: int):
        super().__init__(f"Retries exhausted for {url} after {attempts} attempts")
        self.url = url
        self.attempts = attempts
