"""
Crawl frontier core components.
"""

from .url_frontier import URLFrontier, CrawlTask, TaskState, PopResult
from .normalizer import URLNormalizer
from .politeness import PolitenessRegistry, HostState, Admission
from .fetcher import WebFetcher, FetchOutcome, OutcomeKind
from .parser import LinkExtractor
from .retry import RetryController, RetryDecision, TerminalStatus

__all__ = [
    'URLFrontier', 'CrawlTask', 'TaskState', 'PopResult',
    'URLNormalizer',
    'PolitenessRegistry', 'HostState', 'Admission',
    'WebFetcher', 'FetchOutcome', 'OutcomeKind',
    'LinkExtractor',
    'RetryController', 'RetryDecision', 'TerminalStatus'
]
