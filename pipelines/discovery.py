"""Endpoint discovery: turn a source endpoint into stored document URLs."""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from observability.prometheus_metrics import record_discovery_metrics
from services.shared import repository
from services.shared.errors import DiscoveryError, EndpointDisabledError, NotFoundError
from services.shared.models import EndpointType
from .crawler import FetchError, SitemapCrawler
from .urls import extract_html_links, extract_locations, normalize_url, parse_parser_hint

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    """Counts for one endpoint discovery.

    ``discovered`` counts every distinct document URL the endpoint listed,
    before path filtering. Of the URLs that pass the filter, ``kept`` are
    stored as new documents and ``skipped`` were already known.
    """
    discovered: int = 0
    kept: int = 0
    skipped: int = 0
    filtered: int = 0
    sitemaps_fetched: int = 0
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _filter_urls(urls: List[str], path_filter, result: DiscoveryResult, max_urls: int) -> List[str]:
    """Normalize and dedupe ``urls``, then apply the path filter and URL cap."""
    kept = []
    seen = set()
    for url in urls:
        url = normalize_url(url)
        if url in seen:
            continue
        seen.add(url)
        result.discovered += 1
        if not path_filter.allows(url):
            result.filtered += 1
            continue
        if len(kept) >= max_urls:
            result.truncated = True
            continue
        kept.append(url)
    return kept


def discover_documents_from_endpoint(db: Session, endpoint_id: int,
                                     crawler: Optional[SitemapCrawler] = None) -> DiscoveryResult:
    """Discover document URLs from one endpoint and store the new ones.

    Args:
        db: Database session
        endpoint_id: Endpoint to crawl
        crawler: Crawler to fetch with (one with default settings if omitted)

    Returns:
        DiscoveryResult with discovery counts

    Raises:
        NotFoundError: If the endpoint or its source is missing
        DiscoveryError: If the endpoint is disabled, unsupported or unreachable
    """
    endpoint = repository.get_source_endpoint(db, endpoint_id)
    if endpoint is None:
        raise NotFoundError(f"Endpoint not found: {endpoint_id}")
    source = repository.get_source(db, endpoint.source_id)
    if source is None:
        raise NotFoundError(f"Source not found: {endpoint.source_id}")
    if not endpoint.enabled:
        raise EndpointDisabledError(f"Endpoint {endpoint_id} is disabled")

    crawler = crawler or SitemapCrawler()
    path_filter = parse_parser_hint(endpoint.parser_hint)
    rate_limit_ms = source.rate_limit_ms or 0
    endpoint_type = endpoint.endpoint_type
    result = DiscoveryResult()
    started = time.time()

    logger.info(f"Discovering documents from endpoint {endpoint_id} ({endpoint_type}) {endpoint.endpoint_url}")

    try:
        if endpoint_type == EndpointType.SITEMAP.value:
            crawl = crawler.crawl(endpoint.endpoint_url, path_filter, rate_limit_ms=rate_limit_ms)
            urls = crawl.urls
            result.discovered = crawl.stats.documents_seen
            result.filtered = crawl.stats.filtered
            result.sitemaps_fetched = crawl.stats.sitemaps_fetched
            result.truncated = crawl.stats.truncated
        elif endpoint_type in (EndpointType.RSS.value, EndpointType.HTML_LIST.value):
            try:
                body = crawler.fetch_text(endpoint.endpoint_url, rate_limit_ms)
            except FetchError as e:
                raise DiscoveryError(str(e)) from e
            result.sitemaps_fetched = 1
            if endpoint_type == EndpointType.RSS.value:
                candidates = extract_locations(body)
            else:
                candidates = extract_html_links(body, endpoint.endpoint_url)
            urls = _filter_urls(candidates, path_filter, result, crawler.max_urls)
        elif endpoint_type == EndpointType.MANUAL_SEED.value:
            urls = [normalize_url(endpoint.endpoint_url)]
            result.discovered = 1
        else:
            raise DiscoveryError(f"Unsupported endpoint type: {endpoint_type}")
    except DiscoveryError as e:
        record_discovery_metrics(endpoint_type, time.time() - started, 0, 0, 0, error=str(e))
        logger.error(f"Discovery failed for endpoint {endpoint_id}: {e}")
        raise

    for url in urls:
        if repository.insert_discovered_document(db, url, source_id=source.id, source_endpoint_id=endpoint.id):
            result.kept += 1
        else:
            result.skipped += 1

    repository.mark_endpoint_crawled(db, endpoint)
    record_discovery_metrics(endpoint_type, time.time() - started, result.kept, result.skipped, result.filtered)

    logger.info(f"Endpoint {endpoint_id}: {result.discovered} discovered, {result.kept} new, "
                f"{result.skipped} already known, {result.filtered} filtered, truncated={result.truncated}")
    return result
