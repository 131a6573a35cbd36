"""
Crawl Frontier

Polite, fair and fault-tolerant URL scheduling for web crawlers.
"""

__version__ = "1.0.0"
__author__ = "Alex Nguyen"
__description__ = "A crawl frontier that schedules URL fetches under per-host politeness, deduplication and retry policies"
