"""Request and response models for the HTTP API."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

OrgTypeName = Literal["un", "eu", "gov", "ministry", "foundation", "corporate", "ngo", "bank", "academic"]
TrustLevelName = Literal["high", "medium", "low"]
EndpointTypeName = Literal["rss", "sitemap", "html_list", "api", "manual_seed"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Auth

class LoginRequest(BaseModel):
    password: str


class UserOut(ORMModel):
    id: int
    open_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    login_method: Optional[str] = None
    role: str
    last_signed_in: Optional[datetime] = None


# Organizations and sources

class OrganizationOut(ORMModel):
    id: int
    org_name: str
    org_type: str
    org_country: Optional[str] = None
    org_website: Optional[str] = None


class SourceIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    org_type: OrgTypeName
    trust_level: TrustLevelName = "medium"
    base_url: HttpUrl
    region_focus: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    crawl_enabled: bool = False
    rate_limit_ms: int = Field(default=1500, ge=0, le=60000)
    notes: Optional[str] = None


class SourceOut(ORMModel):
    id: int
    name: str
    org_type: str
    trust_level: str
    base_url: str
    region_focus: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    crawl_enabled: bool
    rate_limit_ms: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EndpointIn(BaseModel):
    source_id: int
    endpoint_url: HttpUrl
    endpoint_type: EndpointTypeName
    parser_hint: Optional[str] = None
    enabled: bool = True
    priority: int = Field(default=100, ge=0, le=10000)


class EndpointOut(ORMModel):
    id: int
    source_id: int
    endpoint_url: str
    endpoint_type: str
    parser_hint: Optional[str] = None
    enabled: bool
    priority: int
    last_crawled_at: Optional[datetime] = None


class DiscoveryOut(BaseModel):
    discovered: int
    kept: int
    skipped: int
    filtered: int
    sitemaps_fetched: int
    truncated: bool


class SuggestRequest(BaseModel):
    query: str = Field(min_length=3, max_length=2000)
    max_urls: int = Field(default=25, ge=1, le=200)
    store: bool = False
    source_id: Optional[int] = None


class SuggestOut(BaseModel):
    urls: List[str]
    stored: int = 0
    skipped: int = 0


# Documents

class DocumentOut(ORMModel):
    id: int
    source_id: Optional[int] = None
    source_endpoint_id: Optional[int] = None
    url: str
    canonical_url: Optional[str] = None
    title: Optional[str] = None
    status: str
    content_type: Optional[str] = None
    byte_size: Optional[int] = None
    sha256_bytes: Optional[str] = None
    fetched_at: Optional[datetime] = None
    extracted_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class IngestOut(BaseModel):
    content_type: Optional[str] = None
    byte_size: int
    sha256_bytes: str
    extracted_chars: int
    content_kind: str
    duplicate_of: Optional[int] = None


class IngestPendingRequest(BaseModel):
    source_id: Optional[int] = None
    limit: int = Field(default=10, ge=1, le=100)


class DocumentTextOut(BaseModel):
    id: int
    chars: int
    text: str
    truncated: bool


# Challenges

class ExtractRequest(BaseModel):
    text: str = Field(min_length=1)
    source_org: Optional[str] = None
    source_url: Optional[str] = None

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value


class ChallengeOut(ORMModel):
    id: int
    user_id: Optional[int] = None
    extraction_run_id: Optional[int] = None
    document_id: Optional[int] = None
    title: str
    statement: str
    sdg_goals: Optional[str] = None
    geography: Optional[str] = None
    target_groups: Optional[str] = None
    sectors: Optional[str] = None
    source_url: Optional[str] = None
    source_org: Optional[str] = None
    confidence: Optional[int] = None
    extracted_at: Optional[datetime] = None


class ExtractOut(BaseModel):
    success: bool = True
    run_id: int
    challenges: List[ChallengeOut]
    dropped_invalid: int = 0
    dropped_low_confidence: int = 0


class DiscoverRequest(BaseModel):
    challenge_id: int
    budget_constraint_eur: Optional[int] = Field(default=None, ge=1, le=10000000)


class TechPathOut(ORMModel):
    id: int
    run_id: int
    challenge_id: int
    path_name: str
    path_order: int
    principles_used: Optional[List[str]] = None
    technology_classes: Optional[List[str]] = None
    why_plausible: Optional[str] = None
    estimated_cost_band_eur: Optional[str] = None
    estimated_max_cost_eur: Optional[int] = None
    within_budget: Optional[bool] = None
    risks_and_unknowns: Optional[List[str]] = None


class DiscoveryRunOut(ORMModel):
    id: int
    challenge_id: int
    user_id: Optional[int] = None
    model_used: str
    budget_constraint_eur: int
    challenge_summary: Optional[str] = None
    core_functions: Optional[List[str]] = None
    underlying_principles: Optional[List[str]] = None
    confidence: Optional[float] = None
    prompt_key: Optional[str] = None
    prompt_version: Optional[int] = None
    prompt_sha256: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class DiscoverOut(BaseModel):
    success: bool = True
    run_id: int
    result: Dict[str, Any]
    paths: List[TechPathOut]


# Prompts

class PromptTemplateMeta(BaseModel):
    id: int
    key: str
    version: int
    agent: str
    operation: str
    public_title: Optional[str] = None
    public_description: Optional[str] = None
    sha256: str
    source: str
    created_at: Optional[str] = None


class PromptTemplateContent(BaseModel):
    key: str
    version: int
    sha256: str
    content: str


class PromptUsageOut(BaseModel):
    run_type: str
    run_id: int
    challenge_id: Optional[int] = None
    prompt_key: Optional[str] = None
    prompt_version: Optional[int] = None
    prompt_sha256: Optional[str] = None
    model_used: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
