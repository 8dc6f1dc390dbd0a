from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware
from typing import List, Optional
import logging
import requests

from agents.challenge_extractor import ChallengeExtractorAgent
from agents.tech_discovery import TechDiscoveryAgent
from config.database import db_factory, get_session, initialize_database, close_database
from config.settings import Settings, get_settings
from observability.logging import setup_logging_from_settings
from observability.prometheus_metrics import get_metrics_summary, setup_prometheus_metrics
from pipelines.crawler import SitemapCrawler
from pipelines.discovery import discover_documents_from_endpoint
from pipelines.ingest import download_and_extract_document, ingest_pending_documents
from pipelines.urls import normalize_url
from prompts.registry import PromptRegistry
from services.shared import repository
from services.shared.errors import (
    AgentError, DiscoveryError, EndpointDisabledError, IngestError, LLMError, NotFoundError,
    SDGDiscoveryError,
)
from services.shared.llm_client import LLMClient, suggest_urls
from services.shared.models import RunStatus, User
from .auth import (
    ONE_YEAR_SECONDS, SESSION_COOKIE, check_password, get_current_user, login_user, logout_user,
    require_admin, require_user,
)
from .dependencies import get_http_session, get_llm_client, get_registry, get_xai_client
from .schemas import (
    ChallengeOut, DiscoverOut, DiscoverRequest, DiscoveryOut, DiscoveryRunOut, DocumentOut,
    DocumentTextOut, EndpointIn, EndpointOut, ExtractOut, ExtractRequest, IngestOut,
    IngestPendingRequest, LoginRequest, OrganizationOut, PromptTemplateContent, PromptTemplateMeta,
    PromptUsageOut, SourceIn, SourceOut, SuggestOut, SuggestRequest, TechPathOut, UserOut,
)
from .security import llm_rate_limit, login_rate_limit, setup_api_security, setup_rate_limiting

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


# Error mapping

def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(404, exc)


async def conflict_handler(request: Request, exc: EndpointDisabledError):
    return _error_response(409, exc)


async def upstream_error_handler(request: Request, exc: SDGDiscoveryError):
    logger.warning(f"Upstream failure on {request.url.path}: {exc}")
    return _error_response(502, exc)


async def app_error_handler(request: Request, exc: SDGDiscoveryError):
    logger.error(f"Unhandled application error on {request.url.path}: {exc}")
    return _error_response(500, exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(EndpointDisabledError, conflict_handler)
    for exc_class in (DiscoveryError, IngestError, LLMError, AgentError):
        app.add_exception_handler(exc_class, upstream_error_handler)
    app.add_exception_handler(SDGDiscoveryError, app_error_handler)


def _get_or_404(obj, what: str, obj_id):
    if obj is None:
        raise NotFoundError(f"{what} not found: {obj_id}")
    return obj


# Shared flows

def run_challenge_extraction(db: Session, user: User, llm: LLMClient, registry: PromptRegistry,
                             settings: Settings, text_input: str, source_org: Optional[str],
                             source_url: Optional[str], document_id: Optional[int] = None) -> ExtractOut:
    """Extract challenges and persist the run plus every kept challenge."""
    agent = ChallengeExtractorAgent(llm, registry, settings=settings)
    try:
        output = agent.extract(text_input, source_org=source_org, source_url=source_url, user_id=user.id)
    except (LLMError, AgentError) as e:
        repository.insert_challenge_extraction_run(
            db,
            user_id=user.id,
            document_id=document_id,
            model_used=llm.model,
            source_org=source_org,
            source_url=source_url,
            status=RunStatus.FAILED.value,
            error_message=str(e),
        )
        raise

    run_id = repository.insert_challenge_extraction_run(
        db,
        user_id=user.id,
        document_id=document_id,
        model_used=output.model,
        source_org=source_org,
        source_url=source_url,
        raw_prompt=output.raw_prompt,
        raw_response=output.raw_response,
        status=RunStatus.COMPLETED.value,
        **output.prompt_identity(),
    )

    stored = []
    for challenge in output.result.challenges:
        stored.append(repository.insert_challenge(
            db,
            user_id=user.id,
            extraction_run_id=run_id,
            document_id=document_id,
            title=challenge.title,
            statement=challenge.statement,
            sdg_goals=challenge.sdg_goals,
            geography=challenge.geography,
            target_groups=challenge.target_groups,
            sectors=challenge.sectors,
            source_url=source_url,
            source_org=source_org,
            confidence=int(round(challenge.confidence)),
        ))

    logger.info(f"Extraction run {run_id} stored {len(stored)} challenges")
    return ExtractOut(
        run_id=run_id,
        challenges=[ChallengeOut.model_validate(c) for c in stored],
        dropped_invalid=output.result.dropped_invalid,
        dropped_low_confidence=output.result.dropped_low_confidence,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(title="SDG Discovery API", version=APP_VERSION)

    setup_api_security(app, settings)
    setup_rate_limiting(app)
    setup_prometheus_metrics(app)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE,
        max_age=ONE_YEAR_SECONDS,
        same_site="lax",
        https_only=settings.environment == "production",
    )
    register_error_handlers(app)

    @app.on_event("startup")
    def startup_event():
        """Initialize logging, the database and the prompt table on startup."""
        setup_logging_from_settings(settings)
        if db_factory._engine is None:
            initialize_database()
        if settings.session_secret == "change-me":
            logger.warning("SESSION_SECRET is not set; session cookies use the development secret")
        try:
            with db_factory.session() as db:
                get_registry().sync_to_db(db)
        except SDGDiscoveryError as e:
            logger.warning(f"Prompt registry sync failed: {e}")

    @app.on_event("shutdown")
    def shutdown_event():
        close_database()

    # Health

    @app.get("/health")
    def health(db: Session = Depends(get_session)):
        """Liveness with a database round trip."""
        try:
            db.execute(text("SELECT 1"))
            database = "ok"
        except Exception as e:
            logger.error(f"Health check database error: {e}")
            database = "error"
        return {
            "status": "ok" if database == "ok" else "degraded",
            "version": APP_VERSION,
            "database": database,
            "metrics": get_metrics_summary(),
        }

    # Auth

    @app.post("/api/auth/login")
    @login_rate_limit()
    def login(request: Request, body: LoginRequest, db: Session = Depends(get_session)):
        if not settings.simple_auth_password:
            logger.warning("Login attempted but SIMPLE_AUTH_PASSWORD is not configured")
            raise HTTPException(status_code=503, detail="Password login is not configured")
        if not check_password(body.password, settings):
            raise HTTPException(status_code=401, detail="Invalid password")
        user = login_user(request, db, settings)
        return {"success": True, "user": UserOut.model_validate(user)}

    @app.post("/api/auth/logout")
    def logout(request: Request):
        logout_user(request)
        return {"success": True}

    @app.get("/api/auth/me", response_model=Optional[UserOut])
    def me(user: Optional[User] = Depends(get_current_user)):
        return user

    # Organizations

    @app.get("/api/organizations", response_model=List[OrganizationOut])
    def list_organizations(db: Session = Depends(get_session)):
        return repository.list_organizations(db)

    # Challenges

    @app.get("/api/challenges", response_model=List[ChallengeOut])
    def list_challenges(user: Optional[User] = Depends(get_current_user), db: Session = Depends(get_session)):
        return repository.list_challenges(db, user.id if user else None)

    @app.get("/api/challenges/{challenge_id}", response_model=ChallengeOut)
    def get_challenge(challenge_id: int, db: Session = Depends(get_session)):
        return _get_or_404(repository.get_challenge(db, challenge_id), "Challenge", challenge_id)

    @app.post("/api/challenges/extract", response_model=ExtractOut)
    @llm_rate_limit()
    def extract_challenges(request: Request,
                           body: ExtractRequest,
                           user: User = Depends(require_user),
                           db: Session = Depends(get_session),
                           llm: LLMClient = Depends(get_llm_client),
                           registry: PromptRegistry = Depends(get_registry)):
        return run_challenge_extraction(db, user, llm, registry, settings,
                                        body.text, body.source_org, body.source_url)

    @app.post("/api/documents/{document_id}/extract-challenges", response_model=ExtractOut)
    @llm_rate_limit()
    def extract_document_challenges(request: Request,
                                    document_id: int,
                                    user: User = Depends(require_user),
                                    db: Session = Depends(get_session),
                                    llm: LLMClient = Depends(get_llm_client),
                                    registry: PromptRegistry = Depends(get_registry)):
        document = _get_or_404(repository.get_document(db, document_id), "Document", document_id)
        if not document.extracted_text:
            raise HTTPException(status_code=409, detail="Document has no extracted text; download it first")
        source = repository.get_source(db, document.source_id) if document.source_id else None
        return run_challenge_extraction(db, user, llm, registry, settings,
                                        document.extracted_text,
                                        source.name if source else None,
                                        document.url,
                                        document_id=document.id)

    # Technology paths

    @app.post("/api/tech-paths/discover", response_model=DiscoverOut)
    @llm_rate_limit()
    def discover_tech_paths(request: Request,
                            body: DiscoverRequest,
                            user: User = Depends(require_user),
                            db: Session = Depends(get_session),
                            llm: LLMClient = Depends(get_llm_client),
                            registry: PromptRegistry = Depends(get_registry)):
        challenge = _get_or_404(repository.get_challenge(db, body.challenge_id), "Challenge", body.challenge_id)
        budget = body.budget_constraint_eur or settings.default_budget_eur

        run_id = repository.insert_tech_discovery_run(
            db,
            challenge_id=challenge.id,
            user_id=user.id,
            model_used=llm.model,
            budget_constraint_eur=budget,
            status=RunStatus.IN_PROGRESS.value,
        )

        agent = TechDiscoveryAgent(llm, registry, settings=settings)
        try:
            output = agent.discover(challenge, budget_eur=budget, user_id=user.id, challenge_id=challenge.id)
        except (LLMError, AgentError) as e:
            repository.update_tech_discovery_run_status(db, run_id, RunStatus.FAILED, str(e))
            raise

        result = output.result
        repository.update_tech_discovery_run_result(
            db,
            run_id,
            model_used=output.model,
            challenge_summary=result.challenge_summary,
            core_functions=result.core_functions,
            underlying_principles=result.underlying_principles,
            confidence=result.confidence,
            raw_prompt=output.raw_prompt,
            full_response=output.raw_response,
            status=RunStatus.COMPLETED.value,
            **output.prompt_identity(),
        )
        for order, path in enumerate(result.technology_paths, start=1):
            repository.insert_tech_path(
                db,
                run_id=run_id,
                challenge_id=challenge.id,
                path_name=path.path_name,
                path_order=order,
                principles_used=path.principles_used,
                technology_classes=path.technology_classes,
                why_plausible=path.why_plausible,
                estimated_cost_band_eur=path.estimated_cost_band_eur,
                estimated_max_cost_eur=path.estimated_max_cost_eur,
                within_budget=path.within_budget,
                risks_and_unknowns=path.risks_and_unknowns,
            )

        paths = repository.get_tech_paths_by_run(db, run_id)
        return DiscoverOut(
            run_id=run_id,
            result=result.model_dump(),
            paths=[TechPathOut.model_validate(p) for p in paths],
        )

    @app.get("/api/challenges/{challenge_id}/tech-paths", response_model=List[TechPathOut])
    def list_tech_paths(challenge_id: int, db: Session = Depends(get_session)):
        return repository.get_tech_paths_by_challenge(db, challenge_id)

    @app.get("/api/challenges/{challenge_id}/discovery-runs", response_model=List[DiscoveryRunOut])
    def list_discovery_runs(challenge_id: int, db: Session = Depends(get_session)):
        return repository.get_tech_discovery_runs_by_challenge(db, challenge_id)

    # Prompts

    @app.get("/api/prompts/templates", response_model=List[PromptTemplateMeta])
    def list_prompt_templates(user: User = Depends(require_user), db: Session = Depends(get_session)):
        return [template.to_metadata() for template in repository.list_prompt_templates(db)]

    @app.get("/api/prompts/usage", response_model=List[PromptUsageOut])
    def list_prompt_usage(limit: int = Query(100, ge=1, le=500),
                          user: User = Depends(require_user),
                          db: Session = Depends(get_session)):
        return repository.list_prompt_usage(db, limit)

    @app.get("/api/prompts/templates/{key}/{version}", response_model=PromptTemplateContent)
    def get_prompt_template(key: str, version: int,
                            user: User = Depends(require_admin),
                            db: Session = Depends(get_session)):
        template = _get_or_404(repository.get_prompt_template(db, key, version), "Prompt template",
                               f"{key} v{version}")
        return PromptTemplateContent(key=template.key, version=template.version,
                                     sha256=template.sha256, content=template.content)

    # Sources

    @app.get("/api/sources", response_model=List[SourceOut])
    def list_sources(user: User = Depends(require_user), db: Session = Depends(get_session)):
        return repository.list_sources(db)

    @app.post("/api/sources", response_model=SourceOut)
    def upsert_source(body: SourceIn, user: User = Depends(require_user), db: Session = Depends(get_session)):
        fields = body.model_dump(exclude={"base_url"})
        return repository.upsert_source(db, str(body.base_url), **fields)

    @app.get("/api/sources/{source_id}/endpoints", response_model=List[EndpointOut])
    def list_endpoints(source_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
        _get_or_404(repository.get_source(db, source_id), "Source", source_id)
        return repository.list_source_endpoints(db, source_id)

    @app.post("/api/sources/endpoints", response_model=EndpointOut)
    def upsert_endpoint(body: EndpointIn, user: User = Depends(require_user), db: Session = Depends(get_session)):
        _get_or_404(repository.get_source(db, body.source_id), "Source", body.source_id)
        fields = body.model_dump(exclude={"endpoint_url"})
        return repository.upsert_source_endpoint(db, str(body.endpoint_url), **fields)

    @app.post("/api/sources/endpoints/{endpoint_id}/discover", response_model=DiscoveryOut)
    def discover_endpoint(endpoint_id: int,
                          user: User = Depends(require_user),
                          db: Session = Depends(get_session),
                          http: requests.Session = Depends(get_http_session)):
        crawler = SitemapCrawler(session=http, settings=settings)
        return discover_documents_from_endpoint(db, endpoint_id, crawler=crawler).to_dict()

    @app.post("/api/sources/suggest", response_model=SuggestOut)
    @llm_rate_limit()
    def suggest_sources(request: Request,
                        body: SuggestRequest,
                        user: User = Depends(require_user),
                        db: Session = Depends(get_session),
                        xai: LLMClient = Depends(get_xai_client)):
        if body.source_id is not None:
            _get_or_404(repository.get_source(db, body.source_id), "Source", body.source_id)
        if not xai.api_key:
            raise LLMError("XAI_API_KEY is not set (needed for Grok discovery)")

        urls = suggest_urls(body.query, body.max_urls, client=xai)
        out = SuggestOut(urls=urls)
        if body.store:
            for url in urls:
                if repository.insert_discovered_document(db, normalize_url(url), source_id=body.source_id):
                    out.stored += 1
                else:
                    out.skipped += 1
        return out

    # Documents

    @app.get("/api/documents", response_model=List[DocumentOut])
    def list_documents(source_id: Optional[int] = None,
                       status: Optional[str] = None,
                       limit: int = Query(200, ge=1, le=1000),
                       user: User = Depends(require_user),
                       db: Session = Depends(get_session)):
        return repository.list_documents(db, source_id=source_id, status=status, limit=limit)

    @app.post("/api/documents/ingest-pending")
    def ingest_pending(body: Optional[IngestPendingRequest] = None,
                       user: User = Depends(require_user),
                       db: Session = Depends(get_session),
                       http: requests.Session = Depends(get_http_session)):
        body = body or IngestPendingRequest()
        outcomes = ingest_pending_documents(db, source_id=body.source_id, limit=body.limit,
                                            session=http, settings=settings)
        return {"processed": len(outcomes), "results": outcomes}

    @app.get("/api/documents/{document_id}", response_model=DocumentOut)
    def get_document(document_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
        return _get_or_404(repository.get_document(db, document_id), "Document", document_id)

    @app.post("/api/documents/{document_id}/download", response_model=IngestOut)
    def download_document(document_id: int,
                          user: User = Depends(require_user),
                          db: Session = Depends(get_session),
                          http: requests.Session = Depends(get_http_session)):
        return download_and_extract_document(db, document_id, session=http, settings=settings).to_dict()

    @app.get("/api/documents/{document_id}/text", response_model=DocumentTextOut)
    def get_document_text(document_id: int,
                          max_chars: int = Query(50000, ge=1000, le=200000),
                          user: User = Depends(require_admin),
                          db: Session = Depends(get_session)):
        document = _get_or_404(repository.get_document(db, document_id), "Document", document_id)
        full_text = document.extracted_text or ""
        return DocumentTextOut(
            id=document.id,
            chars=len(full_text),
            text=full_text[:max_chars],
            truncated=len(full_text) > max_chars,
        )

    logger.info("SDG Discovery API configured")
    return app


app = create_app()
