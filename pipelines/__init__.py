"""Pipelines package for SDG Discovery.

Provides endpoint discovery, sitemap crawling, document download and text
extraction.
"""

from .crawler import SitemapCrawler, CrawlResult, CrawlStats, FetchError
from .discovery import DiscoveryResult, discover_documents_from_endpoint
from .ingest import IngestResult, download_and_extract_document, ingest_pending_documents
from .security import SSRFError, check_url_ssrf, validate_url_security
from .urls import (
    PathFilter,
    extract_html_links,
    extract_locations,
    normalize_url,
    parse_parser_hint,
    passes_path_filters
)

__all__ = [
    # Crawler
    'SitemapCrawler',
    'CrawlResult',
    'CrawlStats',
    'FetchError',

    # Discovery
    'DiscoveryResult',
    'discover_documents_from_endpoint',

    # Ingestion
    'IngestResult',
    'download_and_extract_document',
    'ingest_pending_documents',

    # Security
    'SSRFError',
    'check_url_ssrf',
    'validate_url_security',

    # URLs
    'PathFilter',
    'extract_html_links',
    'extract_locations',
    'normalize_url',
    'parse_parser_hint',
    'passes_path_filters'
]
