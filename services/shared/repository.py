"""Data access functions over the shared models.

Functions take an open ``Session`` and commit their own writes so request
handlers and scripts can call them directly.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import (
    Challenge, ChallengeExtractionRun, Document, DocumentStatus, Organization, PromptTemplate,
    RunStatus, Source, SourceEndpoint, TechDiscoveryRun, TechPath, User, UserRole,
)

logger = logging.getLogger(__name__)


# Users

def get_user_by_open_id(db: Session, open_id: str) -> Optional[User]:
    return db.execute(select(User).where(User.open_id == open_id)).scalar_one_or_none()


def upsert_user(db: Session, open_id: str, owner_open_id: str = "", **fields) -> User:
    """Create or update a user by open id.

    The owner open id is promoted to admin unless a role is given explicitly.
    """
    if not open_id:
        raise ValueError("User open_id is required for upsert")

    user = get_user_by_open_id(db, open_id)
    if user is None:
        user = User(open_id=open_id)
        db.add(user)

    for name in ("name", "email", "login_method"):
        if name in fields:
            setattr(user, name, fields[name])

    if fields.get("role"):
        user.role = fields["role"]
    elif owner_open_id and open_id == owner_open_id:
        user.role = UserRole.ADMIN.value
    elif user.role is None:
        user.role = UserRole.USER.value

    user.last_signed_in = fields.get("last_signed_in") or datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user


# Organizations

def list_organizations(db: Session) -> List[Organization]:
    return list(db.execute(select(Organization).order_by(Organization.org_name)).scalars())


def insert_organization(db: Session, **fields) -> Organization:
    org = Organization(**fields)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def get_organization_by_name(db: Session, org_name: str) -> Optional[Organization]:
    return db.execute(select(Organization).where(Organization.org_name == org_name)).scalar_one_or_none()


# Sources and endpoints

def list_sources(db: Session) -> List[Source]:
    return list(db.execute(select(Source).order_by(Source.name)).scalars())


def get_source(db: Session, source_id: int) -> Optional[Source]:
    return db.get(Source, source_id)


def upsert_source(db: Session, base_url: str, **fields) -> Source:
    """Insert or update a source identified by its base URL."""
    source = db.execute(select(Source).where(Source.base_url == base_url)).scalar_one_or_none()
    if source is None:
        source = Source(base_url=base_url)
        db.add(source)
    for name, value in fields.items():
        setattr(source, name, value)
    source.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(source)
    return source


def list_source_endpoints(db: Session, source_id: int) -> List[SourceEndpoint]:
    stmt = (
        select(SourceEndpoint)
        .where(SourceEndpoint.source_id == source_id)
        .order_by(SourceEndpoint.priority, SourceEndpoint.id)
    )
    return list(db.execute(stmt).scalars())


def get_source_endpoint(db: Session, endpoint_id: int) -> Optional[SourceEndpoint]:
    return db.get(SourceEndpoint, endpoint_id)


def upsert_source_endpoint(db: Session, endpoint_url: str, **fields) -> SourceEndpoint:
    """Insert or update an endpoint identified by its URL."""
    endpoint = db.execute(
        select(SourceEndpoint).where(SourceEndpoint.endpoint_url == endpoint_url)
    ).scalar_one_or_none()
    if endpoint is None:
        endpoint = SourceEndpoint(endpoint_url=endpoint_url)
        db.add(endpoint)
    for name, value in fields.items():
        setattr(endpoint, name, value)
    endpoint.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(endpoint)
    return endpoint


def mark_endpoint_crawled(db: Session, endpoint: SourceEndpoint) -> None:
    endpoint.last_crawled_at = datetime.utcnow()
    db.commit()


# Documents

def list_documents(db: Session, source_id: Optional[int] = None, status: Optional[str] = None,
                   limit: int = 200) -> List[Document]:
    stmt = select(Document)
    if source_id is not None:
        stmt = stmt.where(Document.source_id == source_id)
    if status:
        stmt = stmt.where(Document.status == status)
    stmt = stmt.order_by(Document.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars())


def get_document(db: Session, document_id: int) -> Optional[Document]:
    return db.get(Document, document_id)


def get_document_by_url(db: Session, url: str) -> Optional[Document]:
    return db.execute(select(Document).where(Document.url == url)).scalar_one_or_none()


def insert_discovered_document(db: Session, url: str, source_id: Optional[int] = None,
                               source_endpoint_id: Optional[int] = None) -> bool:
    """Store a newly discovered URL.

    Returns:
        True if a row was inserted, False if the URL was already known
    """
    if get_document_by_url(db, url) is not None:
        return False

    db.add(Document(
        url=url,
        canonical_url=url,
        source_id=source_id,
        source_endpoint_id=source_endpoint_id,
        status=DocumentStatus.DISCOVERED.value,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(f"Document already stored: {url}")
        return False
    return True


def update_document(db: Session, document: Document, **fields) -> Document:
    for name, value in fields.items():
        setattr(document, name, value)
    document.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(document)
    return document


def find_document_by_sha256(db: Session, sha256_bytes: str, exclude_id: Optional[int] = None) -> Optional[Document]:
    stmt = select(Document).where(Document.sha256_bytes == sha256_bytes)
    if exclude_id is not None:
        stmt = stmt.where(Document.id != exclude_id)
    return db.execute(stmt.order_by(Document.id).limit(1)).scalar_one_or_none()


def list_pending_documents(db: Session, source_id: Optional[int] = None, limit: int = 10) -> List[Document]:
    stmt = select(Document).where(Document.status == DocumentStatus.DISCOVERED.value)
    if source_id is not None:
        stmt = stmt.where(Document.source_id == source_id)
    return list(db.execute(stmt.order_by(Document.id).limit(limit)).scalars())


# Challenges

def list_challenges(db: Session, user_id: Optional[int] = None) -> List[Challenge]:
    stmt = select(Challenge)
    if user_id:
        stmt = stmt.where(Challenge.user_id == user_id)
    return list(db.execute(stmt.order_by(Challenge.id)).scalars())


def get_challenge(db: Session, challenge_id: int) -> Optional[Challenge]:
    return db.get(Challenge, challenge_id)


def insert_challenge(db: Session, **fields) -> Challenge:
    challenge = Challenge(**fields)
    db.add(challenge)
    db.commit()
    db.refresh(challenge)
    return challenge


def insert_challenge_extraction_run(db: Session, **fields) -> int:
    run = ChallengeExtractionRun(**fields)
    db.add(run)
    db.commit()
    return run.id


# Technology discovery

def insert_tech_discovery_run(db: Session, **fields) -> int:
    run = TechDiscoveryRun(**fields)
    db.add(run)
    db.commit()
    return run.id


def update_tech_discovery_run_status(db: Session, run_id: int, status: RunStatus,
                                     error_message: Optional[str] = None) -> None:
    run = db.get(TechDiscoveryRun, run_id)
    if run is None:
        raise ValueError(f"Unknown discovery run: {run_id}")
    run.status = status.value
    run.error_message = error_message
    db.commit()


def update_tech_discovery_run_result(db: Session, run_id: int, **fields) -> None:
    run = db.get(TechDiscoveryRun, run_id)
    if run is None:
        raise ValueError(f"Unknown discovery run: {run_id}")
    for name, value in fields.items():
        setattr(run, name, value)
    db.commit()


def get_tech_discovery_runs_by_challenge(db: Session, challenge_id: int) -> List[TechDiscoveryRun]:
    stmt = select(TechDiscoveryRun).where(TechDiscoveryRun.challenge_id == challenge_id)
    return list(db.execute(stmt.order_by(TechDiscoveryRun.id)).scalars())


def insert_tech_path(db: Session, **fields) -> TechPath:
    path = TechPath(**fields)
    db.add(path)
    db.commit()
    return path


def get_tech_paths_by_challenge(db: Session, challenge_id: int) -> List[TechPath]:
    stmt = select(TechPath).where(TechPath.challenge_id == challenge_id)
    return list(db.execute(stmt.order_by(TechPath.run_id, TechPath.path_order)).scalars())


def get_tech_paths_by_run(db: Session, run_id: int) -> List[TechPath]:
    stmt = select(TechPath).where(TechPath.run_id == run_id)
    return list(db.execute(stmt.order_by(TechPath.path_order)).scalars())


# Prompts

def list_prompt_templates(db: Session) -> List[PromptTemplate]:
    stmt = select(PromptTemplate).order_by(PromptTemplate.key, PromptTemplate.version.desc())
    return list(db.execute(stmt).scalars())


def get_prompt_template(db: Session, key: str, version: int) -> Optional[PromptTemplate]:
    stmt = select(PromptTemplate).where(PromptTemplate.key == key, PromptTemplate.version == version)
    return db.execute(stmt).scalar_one_or_none()


def upsert_prompt_template(db: Session, key: str, version: int, **fields) -> PromptTemplate:
    template = get_prompt_template(db, key, version)
    if template is None:
        template = PromptTemplate(key=key, version=version)
        db.add(template)
    for name, value in fields.items():
        setattr(template, name, value)
    db.commit()
    return template


def list_prompt_usage(db: Session, limit: int = 100) -> List[Dict[str, Any]]:
    """Most recent agent runs that recorded a prompt identity, newest first."""
    extraction_runs = db.execute(
        select(ChallengeExtractionRun)
        .where(ChallengeExtractionRun.prompt_key.is_not(None))
        .order_by(ChallengeExtractionRun.created_at.desc())
        .limit(limit)
    ).scalars()
    discovery_runs = db.execute(
        select(TechDiscoveryRun)
        .where(TechDiscoveryRun.prompt_key.is_not(None))
        .order_by(TechDiscoveryRun.created_at.desc())
        .limit(limit)
    ).scalars()

    usage = []
    for run in extraction_runs:
        usage.append({
            'run_type': 'challenge_extraction',
            'run_id': run.id,
            'challenge_id': None,
            'prompt_key': run.prompt_key,
            'prompt_version': run.prompt_version,
            'prompt_sha256': run.prompt_sha256,
            'model_used': run.model_used,
            'status': run.status,
            'created_at': run.created_at,
        })
    for run in discovery_runs:
        usage.append({
            'run_type': 'tech_discovery',
            'run_id': run.id,
            'challenge_id': run.challenge_id,
            'prompt_key': run.prompt_key,
            'prompt_version': run.prompt_version,
            'prompt_sha256': run.prompt_sha256,
            'model_used': run.model_used,
            'status': run.status,
            'created_at': run.created_at,
        })

    usage.sort(key=lambda item: (item['created_at'], item['run_id']), reverse=True)
    return usage[:limit]
