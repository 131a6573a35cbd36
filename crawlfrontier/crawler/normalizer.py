"""
URL canonicalization.

The canonical form defines deduplication equality, so every rule here must be
deterministic and idempotent: normalizing an already-canonical URL returns it
unchanged.
"""

import re
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit, parse_qsl, urlencode, quote

from ..exceptions import MalformedURL


DEFAULT_PORTS = {'http': 80, 'https': 443}

# RFC 3986 unreserved characters; escapes of these are decoded
_UNRESERVED = frozenset(
    'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~'
)
_PERCENT_ESCAPE = re.compile(r'%([0-9A-Fa-f]{2})')
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = "%&=+;/?:@!$'()*,-._~"


def _normalize_escape(match: 're.Match') -> str:
    char = chr(int(match.group(1), 16))
    if char in _UNRESERVED:
        return char
    return '%' + match.group(1).upper()


def _remove_dot_segments(path: str) -> str:
    """RFC 3986 section 5.2.4."""
    output: List[str] = []
    segments = path.split('/')
    for i, segment in enumerate(segments):
        last = i == len(segments) - 1
        if segment == '.':
            if last:
                output.append('')
            continue
        if segment == '..':
            if len(output) > 1:
                output.pop()
            if last:
                output.append('')
            continue
        output.append(segment)
    result = '/'.join(output)
    if not result.startswith('/'):
        result = '/' + result
    return result


def _normalize_path(path: str) -> str:
    if not path:
        return '/'
    # Decode escaped dots before removing dot segments
    path = _PERCENT_ESCAPE.sub(_normalize_escape, path)
    path = _remove_dot_segments(path)
    return quote(path, safe=_PATH_SAFE)


def _normalize_host(url: str, hostname: Optional[str]) -> str:
    if not hostname:
        raise MalformedURL(url, "missing host")
    host = hostname.rstrip('.').lower()
    if not host:
        raise MalformedURL(url, "missing host")
    if ':' in host:
        # IPv6 literal
        return f'[{host}]'
    try:
        return host.encode('idna').decode('ascii')
    except UnicodeError as e:
        raise MalformedURL(url, f"invalid host: {e}")


class URLNormalizer:
    """
    Canonicalizes raw links discovered during a crawl.

    Args:
        query_mode: 'sort' orders query parameters by key then value,
            'preserve' keeps their original order
        tracking_params: query parameter names dropped from every URL
        allowed_schemes: schemes accepted as crawlable
    """

    def __init__(self, query_mode: str = 'sort',
                 tracking_params: Optional[Iterable[str]] = None,
                 allowed_schemes: Iterable[str] = ('http', 'https')):
        if query_mode not in ('sort', 'preserve'):
            raise ValueError("query_mode must be 'sort' or 'preserve'")
        self.query_mode = query_mode
        self.tracking_params = frozenset(p.lower() for p in (tracking_params or ()))
        self.allowed_schemes = frozenset(allowed_schemes)

    def normalize(self, raw_url: str, base_url: Optional[str] = None) -> str:
        """
        Return the canonical form of ``raw_url`` resolved against ``base_url``.

        Raises:
            MalformedURL: if the URL cannot be canonicalized
        """
        if raw_url is None:
            raise MalformedURL(str(raw_url), "empty URL")
        url = raw_url.strip()
        if not url:
            raise MalformedURL(raw_url, "empty URL")

        try:
            if base_url:
                url = urljoin(base_url, url)
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise MalformedURL(raw_url, str(e))

        scheme = parts.scheme.lower()
        if scheme not in self.allowed_schemes:
            raise MalformedURL(raw_url, f"unsupported scheme '{scheme}'")

        host = _normalize_host(raw_url, parts.hostname)
        netloc = host
        if port is not None and port != DEFAULT_PORTS.get(scheme):
            netloc = f'{host}:{port}'
        if parts.username is not None:
            userinfo = parts.username
            if parts.password is not None:
                userinfo = f'{userinfo}:{parts.password}'
            netloc = f'{userinfo}@{netloc}'

        path = _normalize_path(parts.path)
        query = self._normalize_query(parts.query)

        return urlunsplit((scheme, netloc, path, query, ''))

    def _normalize_query(self, query: str) -> str:
        if not query:
            return ''
        # Percent-encode raw non-ASCII as UTF-8, then round-trip escapes
        # through latin-1 so every escaped byte survives unchanged
        query = quote(query, safe=_QUERY_SAFE)
        params: List[Tuple[str, str]] = [
            (k, v) for k, v in parse_qsl(query, keep_blank_values=True, encoding='latin-1')
            if k.lower() not in self.tracking_params
        ]
        if self.query_mode == 'sort':
            params.sort()
        return urlencode(params, encoding='latin-1')

    def is_canonical(self, url: str) -> bool:
        """Check whether ``url`` is already in canonical form."""
        try:
            return self.normalize(url) == url
        except MalformedURL:
            return False


def get_host(canonical_url: str) -> str:
    """Host key used for politeness bookkeeping (host plus non-default port)."""
    return urlsplit(canonical_url).netloc.rsplit('@', 1)[-1]
