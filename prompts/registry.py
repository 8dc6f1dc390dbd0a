"""Versioned prompt registry.

Prompts live in ``registry.yaml`` next to this module so that every change
goes through version control. Each entry is identified by ``(key, version)``
and a SHA-256 of its canonical content; agent runs store all three.
"""

import hashlib
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.orm import Session

from config.settings import get_settings
from services.shared import repository
from services.shared.errors import PromptNotFoundError, SourceConfigError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('key', 'version', 'agent', 'operation', 'system_prompt')


@dataclass(frozen=True)
class PromptEntry:
    """One versioned prompt template."""
    key: str
    version: int
    agent: str
    operation: str
    public_title: str
    public_description: str
    system_prompt: str
    user_template: str = ""

    @property
    def content(self) -> str:
        """Canonical text that the template hash is computed over."""
        return "\n".join([
            f"KEY:{self.key}",
            f"VERSION:{self.version}",
            "",
            "SYSTEM:",
            self.system_prompt,
            "",
            "USER_TEMPLATE:",
            self.user_template or "",
        ])

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    def render_system(self, **values: Any) -> str:
        return Template(self.system_prompt).safe_substitute(**values)

    def render_user(self, **values: Any) -> str:
        """Fill ``$name`` placeholders; unknown placeholders are left as-is."""
        return Template(self.user_template or "").safe_substitute(**values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PromptEntry':
        missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise SourceConfigError(f"Prompt entry {data.get('key')!r} is missing {', '.join(missing)}")
        return cls(
            key=str(data['key']),
            version=int(data['version']),
            agent=str(data['agent']),
            operation=str(data['operation']),
            public_title=str(data.get('public_title') or ""),
            public_description=str(data.get('public_description') or ""),
            system_prompt=str(data['system_prompt']),
            user_template=str(data.get('user_template') or ""),
        )


class PromptRegistry:
    """Read access to the prompt registry file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or get_settings().prompt_registry_path)
        self._entries: Optional[List[PromptEntry]] = None

    def entries(self) -> List[PromptEntry]:
        """All entries, loaded once per registry instance."""
        if self._entries is None:
            self._entries = self._load()
        return self._entries

    def _load(self) -> List[PromptEntry]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise SourceConfigError(f"Failed to read prompt registry {self.path}: {e}")
        except yaml.YAMLError as e:
            raise SourceConfigError(f"Failed to parse prompt registry {self.path}: {e}")

        entries = [PromptEntry.from_dict(item) for item in data.get('prompts') or []]
        seen = set()
        for entry in entries:
            if (entry.key, entry.version) in seen:
                raise SourceConfigError(f"Duplicate prompt entry {entry.key} v{entry.version}")
            seen.add((entry.key, entry.version))

        logger.info(f"Loaded {len(entries)} prompt templates from {self.path}")
        return entries

    def get_entry(self, key: str) -> PromptEntry:
        """Latest version of a prompt.

        Raises:
            PromptNotFoundError: If no entry has this key
        """
        matches = [entry for entry in self.entries() if entry.key == key]
        if not matches:
            raise PromptNotFoundError(f"Missing registry entry for key: {key}")
        return max(matches, key=lambda entry: entry.version)

    def render(self, entry: PromptEntry, **values: Any) -> str:
        return entry.render_user(**values)

    def sync_to_db(self, db: Session) -> int:
        """Upsert every entry into ``prompt_templates``.

        Returns:
            Number of entries synced
        """
        entries = self.entries()
        for entry in entries:
            repository.upsert_prompt_template(
                db,
                entry.key,
                entry.version,
                agent=entry.agent,
                operation=entry.operation,
                public_title=entry.public_title,
                public_description=entry.public_description,
                content=entry.content,
                sha256=entry.sha256,
                source="git",
            )
        logger.info(f"Synced {len(entries)} prompt templates to the database")
        return len(entries)


@lru_cache()
def get_prompt_registry() -> PromptRegistry:
    """Process-wide registry read from the configured path."""
    return PromptRegistry()
