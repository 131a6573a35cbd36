"""
Fetch layer: outcome types and an aiohttp-based fetcher with robots.txt
retrieval.
"""

import asyncio
import aiohttp
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional, Dict, List
from dataclasses import dataclass, field
from aiohttp import ClientSession, ClientTimeout, ClientError

from ..exceptions import RobotsFetchFailure
from .normalizer import get_host


class OutcomeKind(Enum):
    """Coarse classification of a fetch attempt."""
    SUCCESS = 'success'
    TRANSIENT = 'transient'
    PERMANENT = 'permanent'
    PROTOCOL_VIOLATION = 'protocol_violation'


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP-date. Returns None when absent or invalid.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


@dataclass
class FetchOutcome:
    """Result handed from the fetch layer to the scheduler."""
    url: str
    kind: OutcomeKind
    status_code: Optional[int] = None
    content: Optional[bytes] = None
    headers: Dict[str, str] = field(default_factory=dict)
    links: List[str] = field(default_factory=list)
    error: Optional[str] = None
    retry_after: Optional[float] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @classmethod
    def success(cls, url: str, status_code: int = 200, content: Optional[bytes] = None,
                links: Optional[List[str]] = None, **kwargs) -> 'FetchOutcome':
        return cls(url=url, kind=OutcomeKind.SUCCESS, status_code=status_code,
                   content=content, links=list(links or []), **kwargs)

    @classmethod
    def transient(cls, url: str, error: str, status_code: Optional[int] = None,
                  retry_after: Optional[float] = None, **kwargs) -> 'FetchOutcome':
        return cls(url=url, kind=OutcomeKind.TRANSIENT, status_code=status_code,
                   error=error, retry_after=retry_after, **kwargs)

    @classmethod
    def permanent(cls, url: str, error: str, status_code: Optional[int] = None,
                  **kwargs) -> 'FetchOutcome':
        return cls(url=url, kind=OutcomeKind.PERMANENT, status_code=status_code,
                   error=error, **kwargs)

    @classmethod
    def protocol_violation(cls, url: str, error: str, **kwargs) -> 'FetchOutcome':
        return cls(url=url, kind=OutcomeKind.PROTOCOL_VIOLATION, error=error, **kwargs)

    @classmethod
    def timeout(cls, url: str, deadline: float) -> 'FetchOutcome':
        return cls.transient(url, f"No outcome within {deadline:.1f}s deadline")

    @classmethod
    def from_status(cls, url: str, status_code: int, headers: Optional[Dict[str, str]] = None,
                    content: Optional[bytes] = None, **kwargs) -> 'FetchOutcome':
        """
        Map an HTTP response onto an outcome.

        2xx succeed; 429 and 5xx are transient (with any Retry-After hint);
        everything else, including unfollowed redirects, is permanent.
        """
        headers = headers or {}
        if 200 <= status_code < 300:
            return cls.success(url, status_code, content, headers=headers, **kwargs)

        if status_code == 429 or 500 <= status_code < 600:
            retry_after = parse_retry_after(_header(headers, 'retry-after'))
            return cls.transient(url, f"HTTP {status_code}", status_code=status_code,
                                 retry_after=retry_after, headers=headers, **kwargs)

        return cls.permanent(url, f"HTTP {status_code}", status_code=status_code,
                             headers=headers, **kwargs)


def _header(headers: Dict[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class WebFetcher:
    """
    Fetches pages over HTTP and reports a FetchOutcome for each attempt.

    The fetcher does not retry and does not consult robots.txt; the scheduler
    owns both decisions. ``fetch_robots`` is the robots loader used by the
    politeness registry.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_concurrent_requests: int = 10,
                 max_content_bytes: int = 10 * 1024 * 1024,
                 robots_timeout: float = 10.0):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_bytes = max_content_bytes
        self.robots_timeout = robots_timeout

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'robots_requests': 0,
            'total_bytes_downloaded': 0
        }

    @classmethod
    def from_config(cls, config) -> 'WebFetcher':
        return cls(
            user_agent=config.fetcher.user_agent,
            request_timeout=config.frontier.fetch_timeout,
            max_concurrent_requests=config.frontier.global_concurrency_cap,
            max_content_bytes=config.fetcher.max_content_bytes,
            robots_timeout=config.fetcher.robots_timeout
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None) -> FetchOutcome:
        """
        Fetch a single URL.

        Args:
            url: The canonical URL to fetch
            headers: Extra request headers

        Returns:
            FetchOutcome describing the attempt
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url, headers=headers) as response:
                response_headers = dict(response.headers)
                content_type = response.headers.get('content-type', '').lower()

                content = None
                if 200 <= response.status < 300:
                    content = await self._read_content_safely(response)
                    if content is None:
                        self.stats['failed_requests'] += 1
                        return FetchOutcome.protocol_violation(
                            url, f"Body exceeds {self.max_content_bytes} bytes",
                            headers=response_headers,
                            fetch_time=time.time() - start_time
                        )
                    self.stats['total_bytes_downloaded'] += len(content)
                    self.stats['successful_requests'] += 1
                else:
                    self.stats['failed_requests'] += 1

                self.logger.debug(f"Fetched {url}: {response.status} ({len(content) if content else 0} bytes)")
                return FetchOutcome.from_status(
                    url, response.status, response_headers, content,
                    content_type=content_type,
                    encoding=response.charset,
                    fetch_time=time.time() - start_time
                )

        except asyncio.TimeoutError:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Timeout fetching {url}")
            return FetchOutcome.transient(url, "Request timeout", fetch_time=time.time() - start_time)

        except (aiohttp.ClientPayloadError, aiohttp.ClientResponseError) as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Protocol error fetching {url}: {e}")
            return FetchOutcome.protocol_violation(url, f"Protocol error: {e}",
                                                   fetch_time=time.time() - start_time)

        except ClientError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Client error fetching {url}: {e}")
            return FetchOutcome.transient(url, f"Client error: {e}", fetch_time=time.time() - start_time)

    async def _read_content_safely(self, response) -> Optional[bytes]:
        """Read the response body, or None if it exceeds ``max_content_bytes``."""
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_bytes:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        chunks = []
        size = 0
        async for chunk in response.content.iter_chunked(8192):
            size += len(chunk)
            if size > self.max_content_bytes:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None
            chunks.append(chunk)
        return b''.join(chunks)

    async def fetch_robots(self, robots_url: str) -> Optional[str]:
        """
        Retrieve a robots.txt file.

        Returns the file text, or None when the server has no robots.txt
        (any 4xx). Raises RobotsFetchFailure on 5xx or network errors.
        """
        if self.session is None:
            await self.start()

        self.stats['robots_requests'] += 1
        host = get_host(robots_url)
        try:
            async with self.session.get(robots_url, timeout=ClientTimeout(total=self.robots_timeout)) as response:
                if response.status == 200:
                    return await response.text(errors='replace')
                if 400 <= response.status < 500:
                    return None
                raise RobotsFetchFailure(host, f"HTTP {response.status}")
        except asyncio.TimeoutError:
            raise RobotsFetchFailure(host, "timeout")
        except ClientError as e:
            raise RobotsFetchFailure(host, str(e))

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
