"""API tests: access tiers, persistence of agent runs and error mapping."""

import logging
from unittest.mock import patch

import pytest

from conftest import FakeLLM, FakeResponse, FakeSession, login, make_app_client
from prompts.registry import PromptRegistry
from services.shared import repository
from services.shared.errors import LLMError
from services.shared.models import ChallengeExtractionRun, DocumentStatus, TechDiscoveryRun

EXTRACTION = {'challenges': [
    {
        'title': "Groundwater depletion",
        'statement': "Smallholder farms over-pump aquifers during droughts.",
        'sdg_goals': "6,2",
        'geography': "Sahel",
        'target_groups': "Smallholder farmers",
        'sectors': "Water, Agriculture",
        'confidence': 78.6,
    },
    {
        'title': "Vague",
        'statement': "Things could be better.",
        'sdg_goals': None,
        'geography': None,
        'target_groups': None,
        'sectors': None,
        'confidence': 20,
    },
]}

DISCOVERY = {
    'challenge_summary': "Aquifers are over-pumped.",
    'core_functions': ["measure soil moisture", "schedule irrigation"],
    'underlying_principles': ["capacitance sensing"],
    'technology_paths': [
        {
            'path_name': "Low-cost soil moisture sensing",
            'principles_used': ["capacitance sensing"],
            'technology_classes': ["IoT sensors"],
            'why_plausible': "Cheap components",
            'estimated_cost_band_eur': "€500-€2,000",
            'risks_and_unknowns': ["calibration"],
        },
        {
            'path_name': "Satellite evapotranspiration",
            'principles_used': ["remote sensing"],
            'technology_classes': ["earth observation"],
            'why_plausible': "Public data",
            'estimated_cost_band_eur': "€20k-€50k",
            'risks_and_unknowns': ["resolution"],
        },
    ],
    'confidence': 0.65,
}


@pytest.fixture
def admin_settings(settings):
    settings.owner_open_id = "simple-auth-user"
    return settings


def add_challenge(db, **fields):
    data = {'title': "Cold chain", 'statement': "Vaccines spoil during outages.", 'confidence': 80}
    data.update(fields)
    return repository.insert_challenge(db, **data)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"

    def test_metrics_endpoint(self, client):
        client.get("/health")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "sdg_http_requests_total" in response.text

    def test_startup_survives_unreadable_prompt_registry(self, settings, session_factory, tmp_path, caplog):
        client = make_app_client(settings, session_factory)
        registry = PromptRegistry(tmp_path / "missing.yaml")

        with patch("server.api.get_registry", return_value=registry), \
                patch("server.api.setup_logging_from_settings"), \
                caplog.at_level(logging.WARNING, logger="server.api"):
            with client:
                assert client.get("/health").status_code == 200

        assert any("Prompt registry sync failed" in r.getMessage() for r in caplog.records)


class TestAuth:

    def test_me_is_null_when_anonymous(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 200
        assert response.json() is None

    def test_login_logout_cycle(self, client):
        user = login(client)
        assert user["open_id"] == "simple-auth-user"
        assert user["role"] == "user"
        assert "sdg_session" in client.cookies

        assert client.get("/api/auth/me").json()["name"] == "SDG User"

        assert client.post("/api/auth/logout").json() == {"success": True}
        assert client.get("/api/auth/me").json() is None

    def test_wrong_password(self, client):
        response = client.post("/api/auth/login", json={"password": "wrong"})
        assert response.status_code == 401

    def test_login_refused_without_configured_password(self, settings, session_factory):
        settings.simple_auth_password = ""
        client = make_app_client(settings, session_factory)
        response = client.post("/api/auth/login", json={"password": ""})
        assert response.status_code == 503

    def test_owner_becomes_admin(self, admin_settings, session_factory):
        client = make_app_client(admin_settings, session_factory)
        assert login(client)["role"] == "admin"

    @pytest.mark.parametrize("method, path", [
        ("get", "/api/sources"),
        ("get", "/api/documents"),
        ("get", "/api/prompts/templates"),
        ("post", "/api/documents/ingest-pending"),
    ])
    def test_protected_routes_require_login(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json()["detail"] == "Please login"


class TestChallenges:

    def test_list_and_get_are_public(self, client, db):
        challenge = add_challenge(db)
        assert [c["id"] for c in client.get("/api/challenges").json()] == [challenge.id]
        assert client.get(f"/api/challenges/{challenge.id}").json()["title"] == "Cold chain"

    def test_missing_challenge_is_404(self, client):
        response = client.get("/api/challenges/999")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_extract_persists_run_and_challenges(self, settings, session_factory, db):
        llm = FakeLLM(EXTRACTION)
        client = make_app_client(settings, session_factory, llm=llm)
        login(client)

        response = client.post("/api/challenges/extract", json={
            'text': "Long report text", 'source_org': "FAO", 'source_url': "https://example.org/r.pdf",
        })

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        assert body["dropped_low_confidence"] == 1
        assert len(body["challenges"]) == 1
        stored = body["challenges"][0]
        assert stored["confidence"] == 79
        assert stored["source_org"] == "FAO"
        assert stored["extraction_run_id"] == body["run_id"]

        run = db.get(ChallengeExtractionRun, body["run_id"])
        assert run.status == "completed"
        assert run.prompt_key == "challenge_extractor.extract_challenges"
        assert run.raw_prompt.startswith("SYSTEM:")

        # Logged-in listing only shows the user's own challenges
        add_challenge(db, title="Someone else's")
        assert [c["title"] for c in client.get("/api/challenges").json()] == ["Groundwater depletion"]

    def test_extract_requires_login(self, client):
        response = client.post("/api/challenges/extract", json={'text': "x"})
        assert response.status_code == 401

    def test_blank_text_is_422(self, client):
        login(client)
        response = client.post("/api/challenges/extract", json={'text': "   "})
        assert response.status_code == 422

    def test_llm_failure_is_502_and_recorded(self, settings, session_factory, db):
        client = make_app_client(settings, session_factory, llm=FakeLLM(LLMError("upstream timeout")))
        login(client)

        response = client.post("/api/challenges/extract", json={'text': "Report"})

        assert response.status_code == 502
        assert "upstream timeout" in response.json()["detail"]
        run = db.query(ChallengeExtractionRun).one()
        assert run.status == "failed"
        assert run.error_message == "upstream timeout"

    def test_extract_from_document(self, settings, session_factory, db, source):
        repository.insert_discovered_document(db, "https://example.org/doc", source_id=source.id)
        document = repository.get_document_by_url(db, "https://example.org/doc")
        client = make_app_client(settings, session_factory, llm=FakeLLM(EXTRACTION, EXTRACTION))
        login(client)

        response = client.post(f"/api/documents/{document.id}/extract-challenges")
        assert response.status_code == 409

        repository.update_document(db, document, status=DocumentStatus.EXTRACTED.value,
                                   extracted_text="Aquifers are failing.")
        response = client.post(f"/api/documents/{document.id}/extract-challenges")
        assert response.status_code == 200, response.text
        stored = response.json()["challenges"][0]
        assert stored["document_id"] == document.id
        assert stored["source_org"] == "Example Org"
        assert stored["source_url"] == "https://example.org/doc"


class TestTechPaths:

    def test_discover_persists_run_and_ordered_paths(self, settings, session_factory, db):
        challenge = add_challenge(db)
        client = make_app_client(settings, session_factory, llm=FakeLLM(DISCOVERY))
        login(client)

        response = client.post("/api/tech-paths/discover", json={'challenge_id': challenge.id,
                                                                 'budget_constraint_eur': 15000})

        assert response.status_code == 200, response.text
        body = response.json()
        assert [p["path_order"] for p in body["paths"]] == [1, 2]
        assert [p["within_budget"] for p in body["paths"]] == [True, False]
        assert body["paths"][1]["estimated_max_cost_eur"] == 50000
        assert body["result"]["budget_constraint_eur"] == 15000

        run = db.get(TechDiscoveryRun, body["run_id"])
        assert run.status == "completed"
        assert run.budget_constraint_eur == 15000
        assert run.prompt_key == "tech_discovery.discover_paths"
        assert run.full_response

        assert len(client.get(f"/api/challenges/{challenge.id}/tech-paths").json()) == 2
        runs = client.get(f"/api/challenges/{challenge.id}/discovery-runs").json()
        assert [r["status"] for r in runs] == ["completed"]

    def test_discover_failure_marks_run_failed(self, settings, session_factory, db):
        challenge = add_challenge(db)
        client = make_app_client(settings, session_factory, llm=FakeLLM("The model rambled without JSON"))
        login(client)

        response = client.post("/api/tech-paths/discover", json={'challenge_id': challenge.id})

        assert response.status_code == 502
        run = db.query(TechDiscoveryRun).one()
        assert run.status == "failed"
        assert run.error_message
        assert run.budget_constraint_eur == settings.default_budget_eur

    def test_discover_unknown_challenge(self, client):
        login(client)
        response = client.post("/api/tech-paths/discover", json={'challenge_id': 404})
        assert response.status_code == 404


class TestPrompts:

    def test_templates_and_usage(self, admin_settings, session_factory, db):
        PromptRegistry().sync_to_db(db)
        client = make_app_client(admin_settings, session_factory)
        login(client)

        templates = client.get("/api/prompts/templates").json()
        assert {t["key"] for t in templates} == {
            "challenge_extractor.extract_challenges", "tech_discovery.discover_paths",
        }
        assert all("content" not in t for t in templates)

        content = client.get("/api/prompts/templates/tech_discovery.discover_paths/1").json()
        assert content["content"].startswith("KEY:tech_discovery.discover_paths")

        assert client.get("/api/prompts/usage?limit=5").json() == []
        assert client.get("/api/prompts/usage?limit=0").status_code == 422

    def test_template_content_is_admin_only(self, client, db):
        PromptRegistry().sync_to_db(db)
        login(client)
        response = client.get("/api/prompts/templates/tech_discovery.discover_paths/1")
        assert response.status_code == 403


class TestSourcesAndDocuments:

    def test_upsert_source_and_endpoint(self, client):
        login(client)
        response = client.post("/api/sources", json={
            'name': "FAO", 'org_type': "un", 'base_url': "https://www.fao.org", 'rate_limit_ms': 0,
        })
        assert response.status_code == 200, response.text
        source = response.json()
        assert source["base_url"].startswith("https://www.fao.org")

        response = client.post("/api/sources/endpoints", json={
            'source_id': source["id"], 'endpoint_url': "https://www.fao.org/sitemap.xml", 'endpoint_type': "sitemap",
        })
        assert response.status_code == 200, response.text
        endpoints = client.get(f"/api/sources/{source['id']}/endpoints").json()
        assert [e["endpoint_type"] for e in endpoints] == ["sitemap"]

    def test_invalid_source_is_422(self, client):
        login(client)
        response = client.post("/api/sources", json={'name': "X", 'org_type': "pirate", 'base_url': "https://x.org"})
        assert response.status_code == 422

    def test_endpoint_for_unknown_source_is_404(self, client):
        login(client)
        response = client.post("/api/sources/endpoints", json={
            'source_id': 99, 'endpoint_url': "https://x.org/sitemap.xml", 'endpoint_type': "sitemap",
        })
        assert response.status_code == 404

    def test_discover_endpoint(self, settings, session_factory, db, source):
        sitemap = "https://example.org/sitemap.xml"
        endpoint = repository.upsert_source_endpoint(db, sitemap, source_id=source.id, endpoint_type="sitemap")
        disabled = repository.upsert_source_endpoint(db, "https://example.org/feed", source_id=source.id,
                                                     endpoint_type="rss", enabled=False)
        http = FakeSession({sitemap: FakeResponse("<urlset><url><loc>https://example.org/a</loc></url></urlset>")})
        client = make_app_client(settings, session_factory, http=http)
        login(client)

        response = client.post(f"/api/sources/endpoints/{endpoint.id}/discover")
        assert response.status_code == 200, response.text
        assert response.json()["kept"] == 1

        assert client.post(f"/api/sources/endpoints/{disabled.id}/discover").status_code == 409

        documents = client.get("/api/documents", params={'source_id': source.id}).json()
        assert [d["url"] for d in documents] == ["https://example.org/a"]
        assert client.get("/api/documents", params={'limit': 1001}).status_code == 422

    def test_unreachable_endpoint_is_502(self, client, db, source):
        endpoint = repository.upsert_source_endpoint(db, "https://example.org/gone.xml", source_id=source.id,
                                                     endpoint_type="sitemap")
        login(client)
        assert client.post(f"/api/sources/endpoints/{endpoint.id}/discover").status_code == 502

    def test_suggest_stores_new_urls(self, settings, session_factory, db):
        repository.insert_discovered_document(db, "https://example.org/known.pdf")
        xai = FakeLLM({'urls': ["https://example.org/known.pdf", "https://example.org/new.pdf", "not-a-url"]})
        client = make_app_client(settings, session_factory, xai=xai)
        login(client)

        response = client.post("/api/sources/suggest", json={'query': "water reports", 'store': True})

        assert response.status_code == 200, response.text
        assert response.json() == {
            'urls': ["https://example.org/known.pdf", "https://example.org/new.pdf"],
            'stored': 1,
            'skipped': 1,
        }

    def test_suggest_without_key_is_502(self, settings, session_factory):
        client = make_app_client(settings, session_factory, xai=FakeLLM(api_key=""))
        login(client)
        response = client.post("/api/sources/suggest", json={'query': "water reports"})
        assert response.status_code == 502
        assert "XAI_API_KEY" in response.json()["detail"]

    def test_download_and_read_text(self, admin_settings, session_factory, db, source):
        url = "https://example.org/brief.txt"
        repository.insert_discovered_document(db, url, source_id=source.id)
        document = repository.get_document_by_url(db, url)
        http = FakeSession({url: FakeResponse("x" * 1500, headers={"Content-Type": "text/plain"})})
        client = make_app_client(admin_settings, session_factory, http=http)
        login(client)

        response = client.post(f"/api/documents/{document.id}/download")
        assert response.status_code == 200, response.text
        assert response.json()["content_kind"] == "text"

        assert client.get(f"/api/documents/{document.id}").json()["status"] == "extracted"

        text = client.get(f"/api/documents/{document.id}/text", params={'max_chars': 1000}).json()
        assert text == {'id': document.id, 'chars': 1500, 'text': "x" * 1000, 'truncated': True}
        assert client.get(f"/api/documents/{document.id}/text", params={'max_chars': 10}).status_code == 422

    def test_text_is_admin_only(self, client, db, source):
        repository.insert_discovered_document(db, "https://example.org/a", source_id=source.id)
        document = repository.get_document_by_url(db, "https://example.org/a")
        login(client)
        assert client.get(f"/api/documents/{document.id}/text").status_code == 403

    def test_failed_download_is_502(self, client, db, source):
        repository.insert_discovered_document(db, "https://example.org/missing", source_id=source.id)
        document = repository.get_document_by_url(db, "https://example.org/missing")
        login(client)
        assert client.post(f"/api/documents/{document.id}/download").status_code == 502

    def test_ingest_pending(self, settings, session_factory, db, source):
        url = "https://example.org/one.txt"
        repository.insert_discovered_document(db, url, source_id=source.id)
        http = FakeSession({url: FakeResponse("content", headers={"Content-Type": "text/plain"})})
        client = make_app_client(settings, session_factory, http=http)
        login(client)

        response = client.post("/api/documents/ingest-pending", json={'source_id': source.id, 'limit': 5})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["processed"] == 1
        assert body["results"][0]["ok"] is True
