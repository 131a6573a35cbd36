"""
Duplicate URL detection: normalization followed by SeenSet admission.
"""

import logging
from typing import Dict, Optional

from ..crawler.normalizer import URLNormalizer
from ..exceptions import MalformedURL
from .seen_set import SeenSet, MemorySeenSet


class DuplicateDetector:
    """
    Front door for every discovered link.

    ``admit`` normalizes a raw link and inserts its canonical form into the
    SeenSet in one call. The discovery path has no separate "exists" check;
    the SeenSet insert is the single source of truth.
    """

    def __init__(self, normalizer: Optional[URLNormalizer] = None,
                 seen_set: Optional[SeenSet] = None):
        self.normalizer = normalizer or URLNormalizer()
        self.seen_set = seen_set if seen_set is not None else MemorySeenSet()
        self.logger = logging.getLogger(__name__)

        self.stats = {
            'total_checks': 0,
            'url_duplicates': 0,
            'malformed': 0,
            'admitted': 0,
            'rolled_back': 0
        }

    def normalize(self, raw_url: str, base_url: Optional[str] = None) -> str:
        """Canonicalize a URL. Raises MalformedURL."""
        return self.normalizer.normalize(raw_url, base_url)

    async def try_admit(self, canonical_url: str) -> bool:
        """Atomic check-and-insert of an already canonical URL."""
        self.stats['total_checks'] += 1
        admitted = await self.seen_set.try_admit(canonical_url)
        if admitted:
            self.stats['admitted'] += 1
        else:
            self.stats['url_duplicates'] += 1
        return admitted

    async def admit(self, raw_url: str, base_url: Optional[str] = None) -> Optional[str]:
        """
        Normalize and admit a raw link.

        Returns:
            The canonical URL if it is new, None if it was already seen

        Raises:
            MalformedURL: if the link cannot be normalized
        """
        try:
            canonical = self.normalize(raw_url, base_url)
        except MalformedURL:
            self.stats['malformed'] += 1
            raise

        if await self.try_admit(canonical):
            return canonical
        return None

    async def rollback(self, canonical_url: str):
        """Undo an admission whose task never made it into the frontier."""
        await self.seen_set.forget(canonical_url)
        self.stats['rolled_back'] += 1
        self.logger.debug(f"Rolled back admission of {canonical_url}")

    def get_stats(self) -> Dict[str, int]:
        """Get duplicate detection statistics."""
        return {**self.stats, **{f'seen_{k}': v for k, v in self.seen_set.get_stats().items()}}
