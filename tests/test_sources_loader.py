"""Tests for seed source loading and syncing."""

import json

import pytest

from services.shared import repository
from services.shared.errors import SourceConfigError
from sources.loader import EndpointConfig, SourceConfig, SourceLoader, sync_organizations_to_db, sync_sources_to_db

VALID_SOURCE = """
name: Test Agency
org_type: gov
trust_level: high
base_url: https://agency.example.org
region_focus: [Europe]
tags: [water]
crawl_enabled: true
rate_limit_ms: 500
endpoints:
  - endpoint_url: https://agency.example.org/sitemap.xml
    endpoint_type: sitemap
    priority: 10
    parser_hint:
      includePathPrefixes: [/reports/]
  - endpoint_url: https://agency.example.org/feed
    endpoint_type: rss
    enabled: false
"""

ORGANIZATIONS = """
organizations:
  - org_name: UN
    org_type: UN
    org_website: https://sdgs.un.org
  - org_name: Missing type
"""


@pytest.fixture
def sources_dir(tmp_path):
    (tmp_path / "agency.yaml").write_text(VALID_SOURCE, encoding="utf-8")
    (tmp_path / "broken.yaml").write_text("name: Broken\norg_type: spaceship\nbase_url: https://b.org\n",
                                          encoding="utf-8")
    (tmp_path / "organizations.yaml").write_text(ORGANIZATIONS, encoding="utf-8")
    return tmp_path


def test_bundled_sources_are_valid():
    loader = SourceLoader()
    configs = loader.load_all_sources()
    assert len(configs) == len([p for p in loader.sources_dir.glob("*.yaml") if p.name != "organizations.yaml"])
    assert all(config.endpoints for config in configs)
    assert loader.load_organizations()


def test_load_all_sources_skips_invalid_files(sources_dir):
    configs = SourceLoader(sources_dir).load_all_sources()

    assert [c.name for c in configs] == ["Test Agency"]
    config = configs[0]
    assert config.rate_limit_ms == 500
    assert json.loads(config.endpoints[0].parser_hint) == {"includePathPrefixes": ["/reports/"]}
    assert config.endpoints[1].enabled is False


@pytest.mark.parametrize("overrides, message", [
    ({'org_type': "spaceship"}, "Invalid org type"),
    ({'trust_level': "absolute"}, "Invalid trust level"),
    ({'base_url': "ftp://x.org"}, "invalid base URL"),
    ({'rate_limit_ms': 60001}, "rate_limit_ms"),
    ({'name': ""}, "name cannot be empty"),
])
def test_source_validation(overrides, message):
    data = {'name': "X", 'org_type': "ngo", 'base_url': "https://x.org", **overrides}
    with pytest.raises(SourceConfigError, match=message):
        SourceConfig.from_dict(data)


def test_endpoint_validation():
    with pytest.raises(SourceConfigError, match="Invalid endpoint type"):
        EndpointConfig.from_dict({'endpoint_url': "https://x.org/s.xml", 'endpoint_type': "ftp"})
    with pytest.raises(SourceConfigError, match="Invalid endpoint URL"):
        EndpointConfig.from_dict({'endpoint_url': "x.org/s.xml", 'endpoint_type': "sitemap"})


def test_sync_sources_is_idempotent(db, sources_dir):
    loader = SourceLoader(sources_dir)
    assert sync_sources_to_db(db, loader) == 1
    assert sync_sources_to_db(db, loader) == 1

    sources = repository.list_sources(db)
    assert len(sources) == 1
    assert sources[0].tags == ["water"]
    endpoints = repository.list_source_endpoints(db, sources[0].id)
    assert [(e.endpoint_type, e.priority, e.enabled) for e in endpoints] == [
        ("sitemap", 10, True), ("rss", 100, False),
    ]


def test_sync_organizations_inserts_missing_only(db, sources_dir):
    loader = SourceLoader(sources_dir)
    assert sync_organizations_to_db(db, loader) == 1
    assert sync_organizations_to_db(db, loader) == 0
    assert [o.org_name for o in repository.list_organizations(db)] == ["UN"]
