"""URL extraction, normalization and path filtering for source discovery.

Sitemaps and feeds are read with a handful of regular expressions rather
than an XML parser: real-world feeds are often malformed, and only link
locations are needed.
"""

import html
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

LOC_RE = re.compile(r"<loc>\s*([^<\s]+)\s*</loc>", re.IGNORECASE)
LINK_RE = re.compile(r"<link>\s*([^<\s]+)\s*</link>", re.IGNORECASE)
# Atom uses <link href="..."/>
HREF_RE = re.compile(r"<link[^>]+href=[\"']([^\"']+)[\"'][^>]*/?>", re.IGNORECASE)
CDATA_RE = re.compile(r"<!\[CDATA\[\s*(.*?)\s*\]\]>", re.DOTALL)
SITEMAP_INDEX_RE = re.compile(r"<sitemapindex[\s>]", re.IGNORECASE)
SITEMAP_URL_RE = re.compile(r"sitemap[^/]*\.xml(\.gz)?$", re.IGNORECASE)


def _unique_http(candidates: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for url in candidates:
        if not url or not url.startswith("http"):
            continue
        if url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def extract_locations(xml: str) -> List[str]:
    """Extract link locations from sitemap, RSS or Atom XML.

    ``<loc>`` values come first, then ``<link>`` element text, then
    ``<link href>`` attributes, each in document order. Duplicates and
    non-http values are dropped.
    """
    # Unwrap CDATA so <loc><![CDATA[...]]></loc> matches like plain text.
    text = CDATA_RE.sub(lambda m: m.group(1), xml)

    candidates = []
    for pattern in (LOC_RE, LINK_RE, HREF_RE):
        candidates.extend(html.unescape(m.group(1).strip()) for m in pattern.finditer(text))
    return _unique_http(candidates)


def extract_html_links(page: str, base_url: str) -> List[str]:
    """Extract absolute http(s) links from an HTML list page."""
    soup = BeautifulSoup(page, "html.parser")
    candidates = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("mailto:", "javascript:", "#")):
            continue
        candidates.append(urljoin(base_url, href))
    return _unique_http(candidates)


def normalize_url(url: str) -> str:
    """Drop the fragment; keep the query string."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    return urlunparse(parsed._replace(fragment=""))


def is_sitemap_index(xml: str) -> bool:
    """True for a ``<sitemapindex>`` document."""
    return bool(SITEMAP_INDEX_RE.search(xml))


def looks_like_sitemap(url: str) -> bool:
    """True for URLs such as ``/sitemap-2.xml`` or ``/news-sitemap.xml.gz``."""
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return bool(SITEMAP_URL_RE.search(path))


@dataclass
class PathFilter:
    """Include/exclude path prefixes taken from an endpoint's parser hint."""
    include_prefixes: List[str] = field(default_factory=list)
    exclude_prefixes: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.include_prefixes and not self.exclude_prefixes

    def allows(self, url: str) -> bool:
        return passes_path_filters(url, self)

    def to_hint(self) -> str:
        hint = {}
        if self.include_prefixes:
            hint["includePathPrefixes"] = self.include_prefixes
        if self.exclude_prefixes:
            hint["excludePathPrefixes"] = self.exclude_prefixes
        return json.dumps(hint)


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item]


def parse_parser_hint(parser_hint: Optional[str]) -> PathFilter:
    """Parse an endpoint parser hint; malformed hints mean no filtering."""
    if not parser_hint:
        return PathFilter()
    try:
        data = json.loads(parser_hint)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed parser hint: {parser_hint[:200]}")
        return PathFilter()
    if not isinstance(data, dict):
        return PathFilter()
    return PathFilter(
        include_prefixes=_string_list(data.get("includePathPrefixes")),
        exclude_prefixes=_string_list(data.get("excludePathPrefixes")),
    )


def passes_path_filters(url: str, path_filter: PathFilter) -> bool:
    """Check a URL path against include and exclude prefixes.

    With include prefixes set, the path must start with one of them. The
    path must not start with any exclude prefix. Unparseable URLs fail.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.scheme or not parsed.netloc:
        return False
    path = parsed.path or "/"

    if path_filter.include_prefixes and not any(path.startswith(p) for p in path_filter.include_prefixes):
        return False
    if any(path.startswith(p) for p in path_filter.exclude_prefixes):
        return False
    return True
