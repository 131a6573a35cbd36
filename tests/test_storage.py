"""Tests for terminal outcome storage."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from crawlfrontier.crawler.retry import TerminalStatus
from crawlfrontier.crawler.url_frontier import CrawlTask
from crawlfrontier.storage.database import (
    CrawlRecord, DatabaseError, DatabaseManager, FileStorageBackend,
    MemoryStorageBackend, RedisStreamStorageBackend
)
from crawlfrontier.utils.config import StorageConfig


def _record(status=TerminalStatus.SUCCEEDED):
    task = CrawlTask('http://example.com/a', depth=1, parent_url='http://example.com/')
    task.attempts = 2
    return CrawlRecord.from_task(task, status, reason='HTTP 200', http_status=200)


def test_record_from_task():
    record = _record()
    assert record.host == 'example.com'
    assert record.status == 'succeeded'
    assert record.attempts == 2
    assert record.to_dict()['parent_url'] == 'http://example.com/'


async def test_file_backend_appends_json_lines(tmp_path):
    path = tmp_path / 'out' / 'outcomes.jsonl'
    manager = DatabaseManager.from_config(StorageConfig(type='file', file=str(path)))
    await manager.initialize()
    assert await manager.store_record(_record())
    assert await manager.store_record(_record(TerminalStatus.EXHAUSTED))
    await manager.close()

    lines = path.read_text().splitlines()
    assert [json.loads(line)['status'] for line in lines] == ['succeeded', 'exhausted']


async def test_manager_swallows_storage_errors():
    backend = MemoryStorageBackend()
    backend.write = AsyncMock(side_effect=DatabaseError('disk full'))
    manager = DatabaseManager(backend)

    assert await manager.store_record(_record()) is False
    assert (await manager.get_stats())['write_errors'] == 1


async def test_memory_backend_by_status():
    backend = MemoryStorageBackend()
    await backend.write(_record())
    await backend.write(_record(TerminalStatus.FAILED))
    assert len(backend.by_status(TerminalStatus.FAILED)) == 1
    assert (await backend.get_stats())['by_status'] == {'succeeded': 1, 'failed': 1}


async def test_redis_stream_backend():
    client = MagicMock()
    client.xadd = AsyncMock(return_value='1-0')
    backend = RedisStreamStorageBackend(client, 'outcomes', max_length=10)

    await backend.write(_record())

    args, kwargs = client.xadd.call_args
    assert args[0] == 'outcomes'
    assert args[1]['url'] == 'http://example.com/a'
    assert args[1]['error_type'] == ''
    assert kwargs == {'maxlen': 10, 'approximate': True}


async def test_redis_stream_errors_become_database_errors():
    client = MagicMock()
    client.xadd = AsyncMock(side_effect=redis.ConnectionError('gone'))
    backend = RedisStreamStorageBackend(client, 'outcomes')
    with pytest.raises(DatabaseError):
        await backend.write(_record())


def test_redis_storage_needs_client():
    with pytest.raises(DatabaseError):
        DatabaseManager.from_config(StorageConfig(type='redis'))
