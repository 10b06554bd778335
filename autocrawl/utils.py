"""
Utility Functions
URL normalization, same-site checks, and screen-name derivation.
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

logger = logging.getLogger(__name__)


class URLNormalizer:
    """
    Canonical form for URLs so the visited set and the queue agree.
    Drops tracking params and trailing slashes; keeps SPA route fragments
    (``#/path``, ``#!/path``) because they identify distinct screens.
    """

    # Common tracking parameters to remove
    TRACKING_PARAMS = {
        'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
        'fbclid', 'gclid', 'mc_cid', 'mc_eid', '_ga', '_gid', 'dclid',
    }

    # Non-HTML resources never become pages
    SKIP_EXTENSIONS = {
        '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',
        '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
        '.zip', '.rar', '.tar', '.gz', '.7z',
        '.mp3', '.mp4', '.avi', '.mov', '.webm',
        '.css', '.js', '.json', '.xml',
        '.woff', '.woff2', '.ttf', '.eot', '.otf',
    }

    def __init__(self, remove_tracking_params: bool = True, keep_route_fragments: bool = True):
        self.remove_tracking_params = remove_tracking_params
        self.keep_route_fragments = keep_route_fragments

    def normalize(self, url: str, base_url: Optional[str] = None) -> Optional[str]:
        """Normalized URL, or None for non-navigable / non-HTML targets."""
        if not url:
            return None
        url = url.strip()
        if url.lower().startswith(('javascript:', 'mailto:', 'tel:', 'data:')):
            return None
        if base_url:
            url = urljoin(base_url, url)

        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        path = re.sub(r'/+', '/', parsed.path or '/')
        if path != '/' and path.endswith('/'):
            path = path.rstrip('/')
        if any(path.lower().endswith(ext) for ext in self.SKIP_EXTENSIONS):
            return None

        query = parsed.query
        if query and self.remove_tracking_params:
            params = parse_qs(query, keep_blank_values=True)
            query = urlencode(
                {k: v for k, v in params.items() if k.lower() not in self.TRACKING_PARAMS},
                doseq=True,
            )

        fragment = ''
        if self.keep_route_fragments and parsed.fragment.startswith(('/', '!')):
            fragment = parsed.fragment

        return urlunparse((
            parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, query, fragment,
        ))

    @staticmethod
    def is_same_site(url: str, base_url: str) -> bool:
        """Same host, ignoring ``www.``."""
        def host(u: str) -> str:
            netloc = urlparse(u).netloc.lower()
            return netloc[4:] if netloc.startswith('www.') else netloc
        return bool(host(url)) and host(url) == host(base_url)


def generate_page_name(url: str, title: Optional[str] = None) -> str:
    """Human-readable screen name derived from a URL (and title as fallback).

    ``/``                    → ``Home Page``
    ``/settings/profile``    → ``Settings - Profile``
    ``/item?id=7``           → ``Item (id 7)``
    """
    parsed = urlparse(url)
    segments = [s for s in parsed.path.split('/') if s and not re.fullmatch(r'[0-9a-f-]{8,}|\d+', s, re.I)]
    if not segments and not parsed.query and not parsed.fragment.strip('/!'):
        return "Home Page"

    def pretty(segment: str) -> str:
        segment = re.sub(r'\.(html?|php|aspx?|jsp)$', '', segment, flags=re.I)
        return ' '.join(w.capitalize() for w in re.split(r'[-_.\s]+', segment) if w)

    if not segments and parsed.fragment.strip('/!'):
        segments = [s for s in parsed.fragment.strip('/!').split('/') if s]

    if segments:
        name = pretty(segments[-1]) if len(segments) == 1 else f"{pretty(segments[-2])} - {pretty(segments[-1])}"
        params = parse_qs(parsed.query)
        for key in ('page', 'id', 'view', 'tab'):
            if key in params:
                return f"{name} ({key} {params[key][0]})"
        return name

    if title and len(title) < 50:
        return title.strip()
    return f"{parsed.netloc} Page"
