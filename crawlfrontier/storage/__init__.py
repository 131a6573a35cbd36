"""
Storage layer for the crawl frontier.
"""

from .database import DatabaseManager, DatabaseError, CrawlRecord
from .duplicate_detector import DuplicateDetector
from .seen_set import SeenSet, MemorySeenSet, RedisSeenSet

__all__ = [
    'DatabaseManager', 'DatabaseError', 'CrawlRecord',
    'DuplicateDetector',
    'SeenSet', 'MemorySeenSet', 'RedisSeenSet'
]
