"""Seed source loader for SDG Discovery.

Loads and validates source configurations from YAML files (one per
organization) and syncs them into the ``sources`` and ``source_endpoints``
tables.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from services.shared import repository
from services.shared.errors import SourceConfigError
from services.shared.models import EndpointType, OrgType, TrustLevel

logger = logging.getLogger(__name__)

ORGANIZATIONS_FILE = "organizations.yaml"

ORG_TYPES = {t.value for t in OrgType}
TRUST_LEVELS = {t.value for t in TrustLevel}
ENDPOINT_TYPES = {t.value for t in EndpointType}
MAX_RATE_LIMIT_MS = 60000


@dataclass
class EndpointConfig:
    """A discovery entrypoint declared in a seed file."""
    endpoint_url: str
    endpoint_type: str
    priority: int = 100
    parser_hint: Optional[str] = None
    enabled: bool = True

    def __post_init__(self):
        if not self.endpoint_url or not self.endpoint_url.startswith(("http://", "https://")):
            raise SourceConfigError(f"Invalid endpoint URL: {self.endpoint_url!r}")
        if self.endpoint_type not in ENDPOINT_TYPES:
            raise SourceConfigError(f"Invalid endpoint type: {self.endpoint_type}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EndpointConfig':
        hint = data.get('parser_hint')
        # Hints may be written as YAML mappings; they are stored as JSON text
        if isinstance(hint, dict):
            hint = json.dumps(hint)
        return cls(
            endpoint_url=data.get('endpoint_url', ''),
            endpoint_type=data.get('endpoint_type', ''),
            priority=int(data.get('priority', 100)),
            parser_hint=hint,
            enabled=data.get('enabled', True),
        )


@dataclass
class SourceConfig:
    """Configuration for one crawlable organization."""
    name: str
    org_type: str
    base_url: str
    trust_level: str = TrustLevel.MEDIUM.value
    region_focus: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    crawl_enabled: bool = False
    rate_limit_ms: int = 1500
    notes: Optional[str] = None
    endpoints: List[EndpointConfig] = field(default_factory=list)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.name:
            raise SourceConfigError("Source name cannot be empty")

        if not self.base_url or not self.base_url.startswith(("http://", "https://")):
            raise SourceConfigError(f"Source {self.name} has an invalid base URL: {self.base_url!r}")

        if self.org_type not in ORG_TYPES:
            raise SourceConfigError(f"Invalid org type for {self.name}: {self.org_type}")

        if self.trust_level not in TRUST_LEVELS:
            raise SourceConfigError(f"Invalid trust level for {self.name}: {self.trust_level}")

        if not 0 <= self.rate_limit_ms <= MAX_RATE_LIMIT_MS:
            raise SourceConfigError(f"rate_limit_ms must be between 0 and {MAX_RATE_LIMIT_MS}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SourceConfig':
        """Create SourceConfig from dictionary."""
        try:
            endpoints = [EndpointConfig.from_dict(ep) for ep in data.get('endpoints') or []]
            return cls(
                name=data.get('name', ''),
                org_type=data.get('org_type', ''),
                base_url=data.get('base_url', ''),
                trust_level=data.get('trust_level', TrustLevel.MEDIUM.value),
                region_focus=list(data.get('region_focus') or []),
                tags=list(data.get('tags') or []),
                crawl_enabled=bool(data.get('crawl_enabled', False)),
                rate_limit_ms=int(data.get('rate_limit_ms', 1500)),
                notes=data.get('notes'),
                endpoints=endpoints,
            )
        except (TypeError, ValueError) as e:
            raise SourceConfigError(f"Invalid source configuration: {e}")

    def to_db_fields(self) -> Dict[str, Any]:
        """Column values for ``upsert_source`` (everything but the key)."""
        return {
            'name': self.name,
            'org_type': self.org_type,
            'trust_level': self.trust_level,
            'region_focus': self.region_focus or None,
            'tags': self.tags or None,
            'crawl_enabled': self.crawl_enabled,
            'rate_limit_ms': self.rate_limit_ms,
            'notes': self.notes,
        }


class SourceLoader:
    """Loads seed source configurations from YAML files."""

    def __init__(self, sources_dir: Optional[Path] = None):
        """Initialize source loader.

        Args:
            sources_dir: Directory containing source YAML files.
                        Defaults to the directory of this module.
        """
        if sources_dir is None:
            sources_dir = Path(__file__).parent
        self.sources_dir = Path(sources_dir)

    def _read_yaml(self, yaml_file: Path) -> Any:
        try:
            with open(yaml_file, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise SourceConfigError(f"Failed to parse YAML file {yaml_file}: {e}")

    def load_source_config(self, yaml_file: Path) -> SourceConfig:
        """Load one source file.

        Raises:
            SourceConfigError: If the file is empty or invalid
        """
        data = self._read_yaml(yaml_file)
        if not isinstance(data, dict):
            raise SourceConfigError(f"Empty or invalid YAML file: {yaml_file}")
        return SourceConfig.from_dict(data)

    def load_all_sources(self) -> List[SourceConfig]:
        """Load every valid source file; invalid files are logged and skipped."""
        sources = []

        if not self.sources_dir.exists():
            logger.warning(f"Sources directory not found: {self.sources_dir}")
            return sources

        for yaml_file in sorted(self.sources_dir.glob("*.yaml")):
            if yaml_file.name == ORGANIZATIONS_FILE:
                continue
            try:
                sources.append(self.load_source_config(yaml_file))
            except SourceConfigError as e:
                logger.error(f"Invalid source configuration in {yaml_file}: {e}")

        logger.info(f"Loaded {len(sources)} source configurations")
        return sources

    def load_organizations(self) -> List[Dict[str, Any]]:
        """Reference organizations from ``organizations.yaml``."""
        yaml_file = self.sources_dir / ORGANIZATIONS_FILE
        if not yaml_file.exists():
            logger.warning(f"Organizations file not found: {yaml_file}")
            return []

        data = self._read_yaml(yaml_file) or {}
        organizations = []
        for entry in data.get('organizations') or []:
            if not isinstance(entry, dict) or not entry.get('org_name') or not entry.get('org_type'):
                logger.error(f"Skipping invalid organization entry: {entry!r}")
                continue
            organizations.append({
                'org_name': entry['org_name'],
                'org_type': entry['org_type'],
                'org_country': entry.get('org_country'),
                'org_website': entry.get('org_website'),
            })
        return organizations


def sync_sources_to_db(db: Session, loader: Optional[SourceLoader] = None) -> int:
    """Upsert seed sources by base URL and their endpoints by endpoint URL.

    Returns:
        Number of sources synced
    """
    loader = loader or SourceLoader()
    configs = loader.load_all_sources()

    for config in configs:
        source = repository.upsert_source(db, config.base_url, **config.to_db_fields())
        for endpoint in config.endpoints:
            repository.upsert_source_endpoint(
                db,
                endpoint.endpoint_url,
                source_id=source.id,
                endpoint_type=endpoint.endpoint_type,
                parser_hint=endpoint.parser_hint,
                priority=endpoint.priority,
                enabled=endpoint.enabled,
            )
        logger.debug(f"Synced source {config.name} with {len(config.endpoints)} endpoints")

    logger.info(f"Synced {len(configs)} seed sources")
    return len(configs)


def sync_organizations_to_db(db: Session, loader: Optional[SourceLoader] = None) -> int:
    """Insert reference organizations that are not stored yet.

    Returns:
        Number of organizations inserted
    """
    loader = loader or SourceLoader()
    inserted = 0
    for org in loader.load_organizations():
        if repository.get_organization_by_name(db, org['org_name']) is not None:
            continue
        repository.insert_organization(db, **org)
        inserted += 1

    logger.info(f"Inserted {inserted} organizations")
    return inserted
