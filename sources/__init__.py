"""Sources package for SDG Discovery.

Provides seed source loading and database sync.
"""

from .loader import (
    EndpointConfig,
    SourceConfig,
    SourceLoader,
    sync_sources_to_db,
    sync_organizations_to_db
)

__all__ = [
    'EndpointConfig',
    'SourceConfig',
    'SourceLoader',
    'sync_sources_to_db',
    'sync_organizations_to_db'
]
