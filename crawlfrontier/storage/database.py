"""
Storage layer for terminal crawl outcomes.
Supports in-memory, JSON-lines file and Redis stream backends.
"""

import json
import logging
import time
from pathlib import Path
from typing import Optional, Dict, List, Any
from dataclasses import dataclass, asdict

import redis.asyncio as redis

from ..crawler.url_frontier import CrawlTask
from ..crawler.retry import TerminalStatus


class DatabaseError(Exception):
    """Custom exception for storage operations."""
    pass


@dataclass
class CrawlRecord:
    """Terminal outcome of a crawl task."""
    url: str
    host: str
    status: str
    attempts: int
    depth: int
    discovered_time: float
    finished_time: float
    http_status: Optional[int] = None
    reason: str = ''
    error_type: Optional[str] = None
    first_dispatched_time: Optional[float] = None
    parent_url: Optional[str] = None
    links_discovered: int = 0

    @classmethod
    def from_task(cls, task: CrawlTask, status: TerminalStatus, reason: str = '',
                  http_status: Optional[int] = None, error_type: Optional[str] = None,
                  links_discovered: int = 0) -> 'CrawlRecord':
        return cls(
            url=task.url,
            host=task.host,
            status=status.value,
            attempts=task.attempts,
            depth=task.depth,
            discovered_time=task.discovered_time,
            finished_time=time.time(),
            http_status=http_status,
            reason=reason,
            error_type=error_type,
            first_dispatched_time=task.first_dispatched_time,
            parent_url=task.parent_url,
            links_discovered=links_discovered
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class StorageBackend:
    """Abstract base class for outcome sinks."""

    async def initialize(self):
        """Initialize the storage backend."""
        raise NotImplementedError

    async def write(self, record: CrawlRecord):
        """Persist one terminal record."""
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        raise NotImplementedError

    async def close(self):
        """Close storage connections."""
        raise NotImplementedError


class MemoryStorageBackend(StorageBackend):
    """Keeps records in a list; used for tests and dry runs."""

    def __init__(self):
        self.records: List[CrawlRecord] = []

    async def initialize(self):
        pass

    async def write(self, record: CrawlRecord):
        self.records.append(record)

    def by_status(self, status: TerminalStatus) -> List[CrawlRecord]:
        return [r for r in self.records if r.status == status.value]

    async def get_stats(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for record in self.records:
            counts[record.status] = counts.get(record.status, 0) + 1
        return {'total_stored': len(self.records), 'by_status': counts}

    async def close(self):
        pass


class FileStorageBackend(StorageBackend):
    """Appends records to a JSON-lines file."""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self.logger = logging.getLogger(__name__)
        self._file = None
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0
        }

    async def initialize(self):
        """Create the parent directory and open the file for appending."""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.file_path, 'a', encoding='utf-8')
            self.logger.info(f"File storage initialized at {self.file_path}")
        except OSError as e:
            raise DatabaseError(f"Failed to initialize file storage: {e}")

    async def write(self, record: CrawlRecord):
        if self._file is None:
            raise DatabaseError("File storage not initialized")
        try:
            self._file.write(json.dumps(record.to_dict(), ensure_ascii=False) + '\n')
            self._file.flush()
            self.stats['total_stored'] += 1
        except OSError as e:
            self.stats['storage_errors'] += 1
            raise DatabaseError(f"Error writing record for {record.url}: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None


class RedisStreamStorageBackend(StorageBackend):
    """Publishes records to a Redis stream for downstream consumers."""

    def __init__(self, redis_client: redis.Redis, stream_key: str = 'crawlfrontier:outcomes',
                 max_length: Optional[int] = 1000000):
        self.redis_client = redis_client
        self.stream_key = stream_key
        self.max_length = max_length
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0
        }

    async def initialize(self):
        try:
            await self.redis_client.ping()
        except redis.RedisError as e:
            raise DatabaseError(f"Redis unavailable: {e}")
        self.logger.info(f"Redis stream storage initialized on {self.stream_key}")

    async def write(self, record: CrawlRecord):
        fields = {k: '' if v is None else str(v) for k, v in record.to_dict().items()}
        try:
            await self.redis_client.xadd(
                self.stream_key, fields,
                maxlen=self.max_length, approximate=True
            )
            self.stats['total_stored'] += 1
        except redis.RedisError as e:
            self.stats['storage_errors'] += 1
            raise DatabaseError(f"Error publishing record for {record.url}: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        pass


class DatabaseManager:
    """Fans terminal records out to the configured backend and never lets a storage error escape."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend
        self.logger = logging.getLogger(__name__)
        self.write_errors = 0

    @classmethod
    def from_config(cls, storage_config, redis_client: Optional[redis.Redis] = None,
                    stream_key: str = 'crawlfrontier:outcomes') -> 'DatabaseManager':
        if storage_config.type == 'memory':
            return cls(MemoryStorageBackend())
        if storage_config.type == 'redis':
            if redis_client is None:
                raise DatabaseError("Redis storage requires a Redis client")
            return cls(RedisStreamStorageBackend(redis_client, stream_key))
        return cls(FileStorageBackend(storage_config.file))

    async def initialize(self):
        await self.backend.initialize()

    async def store_record(self, record: CrawlRecord) -> bool:
        """Persist a record. Returns False (and logs) on failure."""
        try:
            await self.backend.write(record)
            return True
        except DatabaseError as e:
            self.write_errors += 1
            self.logger.error(str(e))
            return False

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.backend.get_stats()
        return {**stats, 'write_errors': self.write_errors}

    async def close(self):
        await self.backend.close()
