"""Application settings for SDG Discovery.

All values come from environment variables with development defaults.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

BASE_DIR = Path(__file__).resolve().parents[1]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseModel):
    """Runtime configuration."""
    environment: str = Field(default="development", description="Deployment environment")

    # Database
    database_url: str = Field(default="sqlite:///sdg_discovery.db", description="SQLAlchemy database URL")

    # Language models
    openai_api_key: str = Field(default="", description="API key for the extraction/discovery model")
    openai_base_url: Optional[str] = Field(default=None, description="Override for OpenAI-compatible endpoints")
    llm_model: str = Field(default="gpt-4o-mini", description="Model used by the agents")
    llm_timeout: float = Field(default=120.0, description="Model request timeout in seconds")
    xai_api_key: str = Field(default="", description="xAI key used for Grok URL suggestions")
    xai_model: str = Field(default="grok-2-latest", description="Grok model name")
    xai_base_url: str = Field(default="https://api.x.ai/v1", description="xAI API base URL")

    # Auth
    simple_auth_password: str = Field(default="", description="Shared login password; empty disables login")
    session_secret: str = Field(default="change-me", description="Secret used to sign session cookies")
    owner_open_id: str = Field(default="", description="Open id that is promoted to admin")

    # Crawling and ingestion
    discovery_user_agent: str = "sdg-discovery-app/1.0 (+source-discovery)"
    download_user_agent: str = "sdg-discovery-app/1.0 (+document-downloader)"
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    sitemap_max_depth: int = Field(default=3, ge=0, le=10)
    sitemap_max_fetches: int = Field(default=50, ge=1)
    sitemap_max_urls: int = Field(default=5000, ge=1)
    default_rate_limit_ms: int = Field(default=1500, ge=0, le=60000)
    max_download_bytes: int = Field(default=25 * 1024 * 1024, ge=1024)
    block_private_urls: bool = Field(default=True, description="Reject URLs that resolve to private networks")

    # Agents
    challenge_min_confidence: float = Field(default=60.0, ge=0, le=100)
    default_budget_eur: int = Field(default=10000, ge=1)
    extraction_max_chars: int = Field(default=60000, ge=1000)

    # Files
    prompt_registry_path: str = str(BASE_DIR / "prompts" / "registry.yaml")
    sources_dir: str = str(BASE_DIR / "sources")

    # API
    allowed_origins: List[str] = Field(default_factory=list)
    login_rate_limit: str = "10/minute"
    llm_rate_limit: str = "30/minute"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create settings from environment variables."""
        defaults = cls()
        return cls(
            environment=os.getenv('ENVIRONMENT', defaults.environment),
            database_url=os.getenv('DATABASE_URL', defaults.database_url),
            openai_api_key=os.getenv('OPENAI_API_KEY', ''),
            openai_base_url=os.getenv('OPENAI_BASE_URL') or None,
            llm_model=os.getenv('LLM_MODEL', defaults.llm_model),
            llm_timeout=float(os.getenv('LLM_TIMEOUT', str(defaults.llm_timeout))),
            xai_api_key=os.getenv('XAI_API_KEY', ''),
            xai_model=os.getenv('XAI_MODEL', defaults.xai_model),
            xai_base_url=os.getenv('XAI_BASE_URL', defaults.xai_base_url),
            simple_auth_password=os.getenv('SIMPLE_AUTH_PASSWORD', ''),
            session_secret=os.getenv('SESSION_SECRET', defaults.session_secret),
            owner_open_id=os.getenv('OWNER_OPEN_ID', ''),
            request_timeout=float(os.getenv('CRAWL_TIMEOUT', str(defaults.request_timeout))),
            sitemap_max_depth=int(os.getenv('SITEMAP_MAX_DEPTH', str(defaults.sitemap_max_depth))),
            sitemap_max_fetches=int(os.getenv('SITEMAP_MAX_FETCHES', str(defaults.sitemap_max_fetches))),
            sitemap_max_urls=int(os.getenv('SITEMAP_MAX_URLS', str(defaults.sitemap_max_urls))),
            default_rate_limit_ms=int(os.getenv('DEFAULT_RATE_LIMIT_MS', str(defaults.default_rate_limit_ms))),
            max_download_bytes=int(os.getenv('MAX_DOWNLOAD_BYTES', str(defaults.max_download_bytes))),
            block_private_urls=_env_bool('BLOCK_PRIVATE_URLS', defaults.block_private_urls),
            challenge_min_confidence=float(os.getenv('CHALLENGE_MIN_CONFIDENCE', str(defaults.challenge_min_confidence))),
            default_budget_eur=int(os.getenv('DEFAULT_BUDGET_EUR', str(defaults.default_budget_eur))),
            extraction_max_chars=int(os.getenv('EXTRACTION_MAX_CHARS', str(defaults.extraction_max_chars))),
            prompt_registry_path=os.getenv('PROMPT_REGISTRY_PATH', defaults.prompt_registry_path),
            sources_dir=os.getenv('SOURCES_DIR', defaults.sources_dir),
            allowed_origins=_env_list('ALLOWED_ORIGINS'),
            login_rate_limit=os.getenv('LOGIN_RATE_LIMIT', defaults.login_rate_limit),
            llm_rate_limit=os.getenv('LLM_RATE_LIMIT', defaults.llm_rate_limit),
            log_level=os.getenv('LOG_LEVEL', defaults.log_level),
            log_json=_env_bool('LOG_JSON', defaults.log_json),
            log_file=os.getenv('LOG_FILE') or None,
        )


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings.from_env()
