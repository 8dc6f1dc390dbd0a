"""Shared database models for sources, documents, challenges and agent runs."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrgType(str, Enum):
    UN = "un"
    EU = "eu"
    GOV = "gov"
    MINISTRY = "ministry"
    FOUNDATION = "foundation"
    CORPORATE = "corporate"
    NGO = "ngo"
    BANK = "bank"
    ACADEMIC = "academic"


class TrustLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EndpointType(str, Enum):
    RSS = "rss"
    SITEMAP = "sitemap"
    HTML_LIST = "html_list"
    API = "api"
    MANUAL_SEED = "manual_seed"


class DocumentStatus(str, Enum):
    DISCOVERED = "discovered"
    DOWNLOADED = "downloaded"
    EXTRACTED = "extracted"
    FAILED = "failed"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


def _utcnow() -> datetime:
    return datetime.utcnow()


class User(Base):
    """Login identity. The shared-password login maps to a single row."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    open_id = Column(String(64), nullable=False, unique=True)
    name = Column(Text, nullable=True)
    email = Column(String(320), nullable=True)
    login_method = Column(String(64), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    last_signed_in = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class Organization(Base):
    """Reference list of SDG-related organizations."""
    __tablename__ = 'organizations'

    id = Column(Integer, primary_key=True)
    org_name = Column(String(255), nullable=False, unique=True)
    org_type = Column(String(100), nullable=False)
    org_country = Column(String(100), nullable=True)
    org_website = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Source(Base):
    """A crawlable organization."""
    __tablename__ = 'sources'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    org_type = Column(String(20), nullable=False)
    trust_level = Column(String(10), nullable=False, default=TrustLevel.MEDIUM.value)
    base_url = Column(String(1000), nullable=False, unique=True)
    region_focus = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    crawl_enabled = Column(Boolean, nullable=False, default=False)
    rate_limit_ms = Column(Integer, nullable=False, default=1500)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    endpoints = relationship("SourceEndpoint", back_populates="source", cascade="all, delete-orphan")


class SourceEndpoint(Base):
    """A discovery entrypoint (sitemap, feed, list page) of a source."""
    __tablename__ = 'source_endpoints'

    id = Column(Integer, primary_key=True)
    source_id = Column(Integer, ForeignKey('sources.id'), nullable=False)
    endpoint_url = Column(String(2048), nullable=False, unique=True)
    endpoint_type = Column(String(20), nullable=False)
    parser_hint = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=100)
    last_crawled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    source = relationship("Source", back_populates="endpoints")

    __table_args__ = (
        Index('idx_source_endpoints_source_id', 'source_id'),
    )


class Document(Base):
    """A discovered URL and its download/extraction state."""
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True)
    source_id = Column(Integer, ForeignKey('sources.id'), nullable=True)
    source_endpoint_id = Column(Integer, ForeignKey('source_endpoints.id'), nullable=True)
    url = Column(String(2048), nullable=False, unique=True)
    canonical_url = Column(String(2048), nullable=True)
    title = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=DocumentStatus.DISCOVERED.value)
    content_type = Column(String(255), nullable=True)
    byte_size = Column(Integer, nullable=True)
    sha256_bytes = Column(String(64), nullable=True)
    fetched_at = Column(DateTime(timezone=True), nullable=True)
    extracted_text = Column(Text, nullable=True)
    extracted_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index('idx_documents_source_id', 'source_id'),
        Index('idx_documents_status', 'status'),
        Index('idx_documents_sha256_bytes', 'sha256_bytes'),
    )


class Challenge(Base):
    """A solution-free sustainability problem statement."""
    __tablename__ = 'challenges'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    extraction_run_id = Column(Integer, ForeignKey('challenge_extraction_runs.id'), nullable=True)
    document_id = Column(Integer, ForeignKey('documents.id'), nullable=True)
    title = Column(String(500), nullable=False)
    statement = Column(Text, nullable=False)
    sdg_goals = Column(Text, nullable=True)
    geography = Column(String(255), nullable=True)
    target_groups = Column(Text, nullable=True)
    sectors = Column(Text, nullable=True)
    source_url = Column(String(1000), nullable=True)
    source_org = Column(String(255), nullable=True)
    confidence = Column(Integer, nullable=True)
    extracted_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index('idx_challenges_user_id', 'user_id'),
    )


class ChallengeExtractionRun(Base):
    """Audit record of one challenge extraction call."""
    __tablename__ = 'challenge_extraction_runs'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    document_id = Column(Integer, ForeignKey('documents.id'), nullable=True)
    model_used = Column(String(100), nullable=False)
    source_org = Column(String(255), nullable=True)
    source_url = Column(String(1000), nullable=True)
    prompt_key = Column(String(200), nullable=True)
    prompt_version = Column(Integer, nullable=True)
    prompt_sha256 = Column(String(64), nullable=True)
    raw_prompt = Column(Text, nullable=True)
    raw_response = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=RunStatus.IN_PROGRESS.value)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TechDiscoveryRun(Base):
    """Metadata and raw exchange of one technology discovery run."""
    __tablename__ = 'tech_discovery_runs'

    id = Column(Integer, primary_key=True)
    challenge_id = Column(Integer, ForeignKey('challenges.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    model_used = Column(String(100), nullable=False)
    budget_constraint_eur = Column(Integer, nullable=False, default=10000)
    challenge_summary = Column(Text, nullable=True)
    core_functions = Column(JSON, nullable=True)
    underlying_principles = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=True)
    prompt_key = Column(String(200), nullable=True)
    prompt_version = Column(Integer, nullable=True)
    prompt_sha256 = Column(String(64), nullable=True)
    full_response = Column(Text, nullable=True)
    raw_prompt = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=RunStatus.IN_PROGRESS.value)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    paths = relationship("TechPath", back_populates="run", order_by="TechPath.path_order")

    __table_args__ = (
        Index('idx_tech_discovery_runs_challenge_id', 'challenge_id'),
    )


class TechPath(Base):
    """One proposed technology path of a discovery run."""
    __tablename__ = 'tech_paths'

    id = Column(Integer, primary_key=True)
    run_id = Column(Integer, ForeignKey('tech_discovery_runs.id'), nullable=False)
    challenge_id = Column(Integer, ForeignKey('challenges.id'), nullable=False)
    path_name = Column(String(500), nullable=False)
    path_order = Column(Integer, nullable=False)
    principles_used = Column(JSON, nullable=True)
    technology_classes = Column(JSON, nullable=True)
    why_plausible = Column(Text, nullable=True)
    estimated_cost_band_eur = Column(String(100), nullable=True)
    estimated_max_cost_eur = Column(Integer, nullable=True)
    within_budget = Column(Boolean, nullable=True)
    risks_and_unknowns = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    run = relationship("TechDiscoveryRun", back_populates="paths")

    __table_args__ = (
        Index('idx_tech_paths_challenge_id', 'challenge_id'),
    )


class PromptTemplate(Base):
    """Stored copy of a registry prompt, identified by key and version."""
    __tablename__ = 'prompt_templates'

    id = Column(Integer, primary_key=True)
    key = Column(String(200), nullable=False)
    version = Column(Integer, nullable=False)
    agent = Column(String(100), nullable=False)
    operation = Column(String(100), nullable=False)
    public_title = Column(String(255), nullable=True)
    public_description = Column(Text, nullable=True)
    content = Column(Text, nullable=False)
    sha256 = Column(String(64), nullable=False)
    source = Column(String(20), nullable=False, default="git")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint('key', 'version', name='uq_prompt_templates_key_version'),
    )

    def to_metadata(self) -> Dict[str, Any]:
        """Public fields, without the prompt body."""
        return {
            'id': self.id,
            'key': self.key,
            'version': self.version,
            'agent': self.agent,
            'operation': self.operation,
            'public_title': self.public_title,
            'public_description': self.public_description,
            'sha256': self.sha256,
            'source': self.source,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
