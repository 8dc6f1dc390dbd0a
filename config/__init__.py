"""Configuration module for SDG Discovery.

Provides application settings and database session management.
"""

from .settings import Settings, get_settings
from .database import (
    DatabaseConfig,
    DatabaseType,
    DatabaseFactory,
    db_factory,
    initialize_database,
    close_database,
    get_session,
    session_scope
)

__all__ = [
    'Settings',
    'get_settings',
    'DatabaseConfig',
    'DatabaseType',
    'DatabaseFactory',
    'db_factory',
    'initialize_database',
    'close_database',
    'get_session',
    'session_scope'
]
