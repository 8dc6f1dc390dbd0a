"""Sitemap crawler for source discovery.

Walks a sitemap (or sitemap index) breadth first, following nested
sitemaps up to a depth bound, and returns the document URLs it finds.
The walk is single-threaded and sleeps between requests to the same host.
"""

import gzip
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import requests

from config.settings import Settings, get_settings
from observability.prometheus_metrics import record_sitemap_fetch
from services.shared.errors import DiscoveryError
from .security import SSRFError, check_url_ssrf
from .urls import (
    PathFilter, extract_locations, is_sitemap_index, looks_like_sitemap, normalize_url,
    passes_path_filters,
)

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


class FetchError(Exception):
    """A single sitemap or feed could not be fetched."""

    def __init__(self, url: str, message: str, status_code: int = 0):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


@dataclass
class CrawlStats:
    """Statistics for one discovery crawl."""
    sitemaps_fetched: int = 0
    sitemaps_failed: int = 0
    locations_seen: int = 0
    documents_seen: int = 0
    duplicates: int = 0
    filtered: int = 0
    depth_limited: int = 0
    truncated: bool = False
    errors: List[str] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.utcnow()

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.utcnow()


@dataclass
class CrawlResult:
    """Document URLs found by a crawl, in discovery order."""
    urls: List[str]
    stats: CrawlStats


def decode_body(body: bytes) -> str:
    """Decode a fetched sitemap, gunzipping ``.xml.gz`` payloads."""
    if body[:2] == GZIP_MAGIC:
        try:
            body = gzip.decompress(body)
        except OSError as e:
            logger.warning(f"Failed to gunzip sitemap body: {e}")
    return body.decode("utf-8", errors="replace")


class SitemapCrawler:
    """Depth- and count-bounded breadth-first sitemap walker."""

    def __init__(self,
                 session: Optional[requests.Session] = None,
                 user_agent: str = None,
                 request_timeout: float = None,
                 max_depth: int = None,
                 max_fetches: int = None,
                 max_urls: int = None,
                 block_private_urls: bool = None,
                 settings: Optional[Settings] = None):
        """Initialize crawler.

        Args:
            session: HTTP session to use (a new one is created if omitted)
            user_agent: User agent header for every request
            request_timeout: Per-request timeout in seconds
            max_depth: Deepest nested sitemap level that is fetched
            max_fetches: Maximum number of sitemap/feed fetches per crawl
            max_urls: Maximum number of document URLs returned
            block_private_urls: Refuse URLs pointing at private networks
            settings: Source of defaults for the options above
        """
        settings = settings or get_settings()
        self.session = session or requests.Session()
        self.user_agent = user_agent or settings.discovery_user_agent
        self.request_timeout = request_timeout if request_timeout is not None else settings.request_timeout
        self.max_depth = max_depth if max_depth is not None else settings.sitemap_max_depth
        self.max_fetches = max_fetches if max_fetches is not None else settings.sitemap_max_fetches
        self.max_urls = max_urls if max_urls is not None else settings.sitemap_max_urls
        self.block_private_urls = (
            block_private_urls if block_private_urls is not None else settings.block_private_urls
        )

        # Rate limiting
        self.last_request_time: Dict[str, float] = {}

    def _get_domain(self, url: str) -> str:
        return urlparse(url).netloc

    def _respect_rate_limit(self, url: str, rate_limit_ms: int):
        """Sleep until ``rate_limit_ms`` has passed since the last request to the host."""
        domain = self._get_domain(url)
        rate_limit = max(rate_limit_ms, 0) / 1000.0

        if domain in self.last_request_time and rate_limit > 0:
            elapsed = time.monotonic() - self.last_request_time[domain]
            if elapsed < rate_limit:
                sleep_time = rate_limit - elapsed
                logger.debug(f"Rate limiting {domain}: sleeping {sleep_time:.2f}s")
                time.sleep(sleep_time)

        self.last_request_time[domain] = time.monotonic()

    def fetch_text(self, url: str, rate_limit_ms: int = 0) -> str:
        """Fetch one sitemap, feed or list page and return its text.

        Raises:
            FetchError: On blocked URLs, network errors and non-2xx responses
        """
        if self.block_private_urls:
            try:
                check_url_ssrf(url)
            except SSRFError as e:
                raise FetchError(url, str(e))

        self._respect_rate_limit(url, rate_limit_ms)

        try:
            response = self.session.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.request_timeout,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            record_sitemap_fetch("error")
            raise FetchError(url, f"Request failed: {e}")

        try:
            if self.block_private_urls and response.url != url:
                try:
                    check_url_ssrf(response.url)
                except SSRFError as e:
                    record_sitemap_fetch("error")
                    raise FetchError(url, f"Redirect to {response.url} refused: {e}")
            if not response.ok:
                record_sitemap_fetch("error")
                raise FetchError(
                    url,
                    f"Failed to fetch endpoint: {response.status_code} {response.reason}",
                    status_code=response.status_code,
                )
            body = response.content
        finally:
            response.close()

        record_sitemap_fetch("success")
        return decode_body(body)

    def crawl(self, entry_url: str, path_filter: Optional[PathFilter] = None,
              rate_limit_ms: int = 0) -> CrawlResult:
        """Walk a sitemap tree starting at ``entry_url``.

        Args:
            entry_url: Sitemap or sitemap index URL (depth 0)
            path_filter: Include/exclude prefixes for document URLs
            rate_limit_ms: Minimum delay between requests to one host

        Returns:
            CrawlResult with the document URLs in discovery order

        Raises:
            DiscoveryError: If the entry sitemap cannot be fetched
        """
        path_filter = path_filter or PathFilter()
        stats = CrawlStats()
        urls: List[str] = []
        seen_documents: Set[str] = set()
        visited_sitemaps: Set[str] = set()

        entry_url = normalize_url(entry_url)
        queue: Deque[Tuple[str, int]] = deque([(entry_url, 0)])

        logger.info(f"Starting sitemap crawl of {entry_url} "
                    f"(max_depth={self.max_depth}, max_fetches={self.max_fetches}, max_urls={self.max_urls})")

        while queue:
            sitemap_url, depth = queue.popleft()
            if sitemap_url in visited_sitemaps:
                continue
            if stats.sitemaps_fetched + stats.sitemaps_failed >= self.max_fetches:
                logger.info(f"Fetch budget of {self.max_fetches} exhausted; {len(queue) + 1} sitemaps left")
                stats.truncated = True
                break
            visited_sitemaps.add(sitemap_url)

            try:
                xml = self.fetch_text(sitemap_url, rate_limit_ms)
            except FetchError as e:
                if depth == 0:
                    raise DiscoveryError(str(e)) from e
                logger.warning(f"Skipping nested sitemap {sitemap_url}: {e}")
                stats.sitemaps_failed += 1
                stats.errors.append(f"{sitemap_url}: {e}")
                continue

            stats.sitemaps_fetched += 1
            index = is_sitemap_index(xml)
            locations = [normalize_url(loc) for loc in extract_locations(xml)]
            stats.locations_seen += len(locations)
            logger.debug(f"Found {len(locations)} locations at depth {depth} in {sitemap_url}")

            for loc in locations:
                if index or looks_like_sitemap(loc):
                    if depth >= self.max_depth:
                        stats.depth_limited += 1
                        stats.truncated = True
                    elif loc not in visited_sitemaps:
                        queue.append((loc, depth + 1))
                    continue

                if loc in seen_documents:
                    stats.duplicates += 1
                    continue
                seen_documents.add(loc)
                stats.documents_seen += 1

                if not passes_path_filters(loc, path_filter):
                    stats.filtered += 1
                    continue

                if len(urls) >= self.max_urls:
                    stats.truncated = True
                    break
                urls.append(loc)

            if len(urls) >= self.max_urls and stats.truncated:
                logger.info(f"URL budget of {self.max_urls} reached")
                break

        stats.finish()
        logger.info(f"Sitemap crawl completed: {len(urls)} documents from {stats.sitemaps_fetched} sitemaps, "
                    f"{stats.sitemaps_failed} failed, {stats.filtered} filtered, "
                    f"{stats.depth_limited} depth-limited, truncated={stats.truncated}")

        return CrawlResult(urls=urls, stats=stats)
