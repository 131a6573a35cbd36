"""
Link extraction from fetched HTML.
"""

import logging
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


SKIPPED_PREFIXES = ('#', 'javascript:', 'mailto:', 'tel:', 'data:')

HTML_CONTENT_TYPES = (
    'text/html',
    'application/xhtml+xml'
)


class LinkExtractor:
    """
    Pulls raw link strings out of an HTML payload.

    Links are returned as written in the page (resolved against ``<base
    href>`` when present); canonicalization is left to the normalizer.
    """

    def __init__(self, follow_nofollow: bool = False, parser: str = 'lxml'):
        self.follow_nofollow = follow_nofollow
        self.parser = parser
        self.logger = logging.getLogger(__name__)

    def accepts(self, content_type: Optional[str]) -> bool:
        """Check whether a payload of this content type can contain links."""
        if not content_type:
            return True
        return any(t in content_type.lower() for t in HTML_CONTENT_TYPES)

    def extract_links(self, url: str, content: Optional[bytes],
                      content_type: Optional[str] = None,
                      encoding: Optional[str] = None) -> List[str]:
        """
        Extract links from a page.

        Args:
            url: The URL the payload was fetched from
            content: Raw response body
            content_type: Response content type, used to skip non-HTML payloads
            encoding: Declared charset, if any

        Returns:
            Raw link strings in document order, without duplicates
        """
        if not content or not self.accepts(content_type):
            return []

        soup = BeautifulSoup(content, self.parser, from_encoding=encoding)

        base_url = url
        base_tag = soup.find('base', href=True)
        if base_tag:
            base_url = urljoin(url, base_tag['href'].strip())

        links = []
        seen = set()
        for anchor in soup.find_all(['a', 'area'], href=True):
            href = anchor['href'].strip()
            if not href or href.lower().startswith(SKIPPED_PREFIXES):
                continue

            rel = anchor.get('rel') or []
            if not self.follow_nofollow and 'nofollow' in [r.lower() for r in rel]:
                continue

            link = urljoin(base_url, href) if base_url != url else href
            if link not in seen:
                seen.add(link)
                links.append(link)

        self.logger.debug(f"Extracted {len(links)} links from {url}")
        return links
