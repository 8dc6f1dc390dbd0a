"""Tests for endpoint discovery against the database."""

import pytest

from conftest import FakeResponse, FakeSession
from pipelines.crawler import SitemapCrawler
from pipelines.discovery import discover_documents_from_endpoint
from services.shared import repository
from services.shared.errors import DiscoveryError, EndpointDisabledError, NotFoundError
from services.shared.models import DocumentStatus

SITEMAP = "https://example.org/sitemap.xml"


def add_endpoint(db, source, url, endpoint_type, **fields):
    return repository.upsert_source_endpoint(db, url, source_id=source.id, endpoint_type=endpoint_type, **fields)


def crawler_for(routes, settings):
    return SitemapCrawler(session=FakeSession(routes), settings=settings)


def test_sitemap_discovery_stores_new_documents(db, source, settings):
    endpoint = add_endpoint(db, source, SITEMAP, "sitemap",
                            parser_hint='{"excludePathPrefixes": ["/jobs"]}')
    routes = {SITEMAP: FakeResponse(
        "<urlset><url><loc>https://example.org/r/1</loc></url>"
        "<url><loc>https://example.org/r/2#top</loc></url>"
        "<url><loc>https://example.org/jobs/9</loc></url></urlset>"
    )}
    repository.insert_discovered_document(db, "https://example.org/r/1")

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for(routes, settings))

    assert result.discovered == 3
    assert result.kept == 1
    assert result.skipped == 1
    assert result.filtered == 1
    assert result.sitemaps_fetched == 1

    document = repository.get_document_by_url(db, "https://example.org/r/2")
    assert document.status == DocumentStatus.DISCOVERED.value
    assert document.source_id == source.id
    assert document.source_endpoint_id == endpoint.id
    assert repository.get_source_endpoint(db, endpoint.id).last_crawled_at is not None


def test_rss_discovery(db, source, settings):
    feed_url = "https://example.org/feed.xml"
    endpoint = add_endpoint(db, source, feed_url, "rss")
    routes = {feed_url: FakeResponse(
        "<rss><channel><item><link>https://example.org/news/a</link></item>"
        "<item><link>https://example.org/news/b</link></item></channel></rss>"
    )}

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for(routes, settings))

    assert result.discovered == 2
    assert result.kept == 2
    assert [d.url for d in repository.list_documents(db, source_id=source.id)] == [
        "https://example.org/news/b", "https://example.org/news/a",
    ]


def test_html_list_discovery(db, source, settings):
    list_url = "https://example.org/publications"
    endpoint = add_endpoint(db, source, list_url, "html_list",
                            parser_hint='{"includePathPrefixes": ["/publications/"]}')
    routes = {list_url: FakeResponse(
        '<a href="/publications/2024-report.pdf">Report</a><a href="/contact">Contact</a>'
    )}

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for(routes, settings))

    assert result.kept == 1
    assert result.filtered == 1
    assert repository.get_document_by_url(db, "https://example.org/publications/2024-report.pdf")


def test_manual_seed_stores_endpoint_url(db, source, settings):
    seed_url = "https://example.org/reports/annual.pdf"
    endpoint = add_endpoint(db, source, seed_url, "manual_seed")
    session = FakeSession()

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=SitemapCrawler(session=session,
                                                                                     settings=settings))

    assert result.discovered == 1
    assert result.kept == 1
    assert session.calls == []


def test_disabled_endpoint_is_refused(db, source, settings):
    endpoint = add_endpoint(db, source, SITEMAP, "sitemap", enabled=False)
    with pytest.raises(EndpointDisabledError):
        discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for({}, settings))


def test_unsupported_endpoint_type(db, source, settings):
    endpoint = add_endpoint(db, source, "https://example.org/api/v1", "api")
    with pytest.raises(DiscoveryError, match="Unsupported endpoint type"):
        discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for({}, settings))


def test_unreachable_feed_raises_discovery_error(db, source, settings):
    endpoint = add_endpoint(db, source, "https://example.org/feed.xml", "rss")
    with pytest.raises(DiscoveryError, match="404"):
        discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for({}, settings))
    assert repository.get_source_endpoint(db, endpoint.id).last_crawled_at is None


def test_unknown_endpoint(db):
    with pytest.raises(NotFoundError):
        discover_documents_from_endpoint(db, 999)


def test_filtered_feed_items_still_count_as_discovered(db, source, settings):
    feed_url = "https://example.org/feed.xml"
    endpoint = add_endpoint(db, source, feed_url, "rss", parser_hint='{"includePathPrefixes": ["/en/"]}')
    routes = {feed_url: FakeResponse(
        "<rss><channel><item><link>https://example.org/en/a</link></item>"
        "<item><link>https://example.org/fr/b</link></item></channel></rss>"
    )}

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for(routes, settings))

    assert (result.discovered, result.filtered, result.kept) == (2, 1, 1)


def test_feed_links_differing_by_fragment_are_one_document(db, source, settings):
    feed_url = "https://example.org/feed.xml"
    endpoint = add_endpoint(db, source, feed_url, "rss")
    routes = {feed_url: FakeResponse(
        "<rss><channel><item><link>https://example.org/a#x</link></item>"
        "<item><link>https://example.org/a#y</link></item></channel></rss>"
    )}

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler_for(routes, settings))

    assert (result.discovered, result.kept, result.skipped) == (1, 1, 0)
    assert [d.url for d in repository.list_documents(db, source_id=source.id)] == ["https://example.org/a"]


def test_sitemap_discovery_reports_depth_truncation(db, source, settings):
    endpoint = add_endpoint(db, source, SITEMAP, "sitemap")
    routes = {SITEMAP: FakeResponse(
        "<sitemapindex><sitemap><loc>https://example.org/more.xml</loc></sitemap></sitemapindex>"
    )}
    crawler = SitemapCrawler(session=FakeSession(routes), settings=settings, max_depth=0)

    result = discover_documents_from_endpoint(db, endpoint.id, crawler=crawler)

    assert result.truncated
    assert result.discovered == 0
