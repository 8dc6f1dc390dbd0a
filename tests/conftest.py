"""Shared fixtures: in-memory database, fake HTTP session and fake LLM."""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
import requests
from fastapi.testclient import TestClient
from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config.database import get_session
from config.settings import Settings
from services.shared import repository
from services.shared.llm_client import LLMResponse
from services.shared.models import Base


class FakeResponse:
    """Just enough of ``requests.Response`` for the crawler and downloader."""

    def __init__(self, body=b"", status_code=200, headers=None, reason="OK", url=None):
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.status_code = status_code
        self.reason = reason if status_code < 400 else "Not Found"
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses by URL; unknown URLs return 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            route = FakeResponse(b"", status_code=404)
        if route.url is None:
            route.url = url
        return route

    def close(self):
        pass


class FakeLLM:
    """Returns queued contents (or raises queued exceptions) in order."""

    def __init__(self, *contents, model="test-model", api_key="test-key"):
        self.contents = list(contents)
        self.model = model
        self.api_key = api_key
        self.calls = []

    def _next(self, messages, **kwargs):
        self.calls.append({'messages': messages, **kwargs})
        content = self.contents.pop(0)
        if isinstance(content, Exception):
            raise content
        if not isinstance(content, str):
            content = json.dumps(content)
        return LLMResponse(content=content, model=self.model, raw_response={'choices': [{'content': content}]})

    def complete(self, messages, operation="chat", response_format=None, temperature=None):
        return self._next(messages, operation=operation, temperature=temperature)

    def complete_json(self, messages, schema_name, schema, operation=None):
        return self._next(messages, operation=operation or schema_name, schema_name=schema_name)


@pytest.fixture
def settings():
    return Settings(
        simple_auth_password="sesame",
        session_secret="test-secret",
        block_private_urls=False,
        default_rate_limit_ms=0,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_http():
    return FakeSession()


@pytest.fixture
def source(db):
    return repository.upsert_source(
        db,
        "https://example.org",
        name="Example Org",
        org_type="un",
        trust_level="high",
        rate_limit_ms=0,
    )


def make_app_client(settings, session_factory, http=None, llm=None, xai=None):
    """Test client for a fresh app wired to the test database and fakes."""
    from server.api import create_app
    from server.dependencies import get_http_session, get_llm_client, get_xai_client
    from server.security import limiter

    limiter.enabled = False
    app = create_app(settings)

    def override_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_http_session] = lambda: http or FakeSession()
    app.dependency_overrides[get_llm_client] = lambda: llm or FakeLLM()
    app.dependency_overrides[get_xai_client] = lambda: xai or FakeLLM()
    return TestClient(app)


@pytest.fixture
def client(settings, session_factory):
    return make_app_client(settings, session_factory)


def login(client, password="sesame"):
    response = client.post("/api/auth/login", json={"password": password})
    assert response.status_code == 200, response.text
    return response.json()["user"]
