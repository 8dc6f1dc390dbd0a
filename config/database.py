"""Database configuration and session factory for SDG Discovery.

Provides a single SQLAlchemy engine for either SQLite (development and
tests) or PostgreSQL (production).
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from pydantic import BaseModel, Field
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import get_settings

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    url: str = Field(default="sqlite:///sdg_discovery.db", description="SQLAlchemy URL")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Maximum pool overflow")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Log SQL statements")

    @property
    def type(self) -> DatabaseType:
        if self.url.startswith("postgresql"):
            return DatabaseType.POSTGRESQL
        return DatabaseType.SQLITE

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from application settings."""
        return cls(url=get_settings().database_url)


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Create an engine for the configured backend."""
    if config.type == DatabaseType.POSTGRESQL:
        logger.info("Creating PostgreSQL engine")
        return create_engine(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=config.echo,
        )

    logger.info("Creating SQLite engine")
    kwargs = {"connect_args": {"check_same_thread": False}, "echo": config.echo}
    if config.url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection keeps an in-memory database alive.
        kwargs["poolclass"] = StaticPool
    engine = create_engine(config.url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    return engine


class DatabaseFactory:
    """Holds the engine and session factory for the process."""

    _instance: Optional['DatabaseFactory'] = None

    def __new__(cls) -> 'DatabaseFactory':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._engine = None
            cls._instance._sessionmaker = None
            cls._instance._config = None
        return cls._instance

    def initialize(self, config: Optional[DatabaseConfig] = None, create_schema: bool = True):
        """Create the engine and, optionally, all tables."""
        if config is None:
            config = DatabaseConfig.from_env()

        from services.shared.models import Base

        self._config = config
        self._engine = create_db_engine(config)
        self._sessionmaker = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

        if create_schema:
            Base.metadata.create_all(self._engine)

        logger.info(f"Database initialized: {config.type.value}")

    def close(self):
        """Dispose of pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("Database engine disposed")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._sessionmaker()


# Global database factory instance
db_factory = DatabaseFactory()


def initialize_database(config: Optional[DatabaseConfig] = None, create_schema: bool = True):
    """Initialize the global engine."""
    db_factory.initialize(config, create_schema=create_schema)


def close_database():
    """Close database connections."""
    db_factory.close()


def get_session() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is closed afterwards."""
    session = db_factory.session()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Transactional scope for scripts: commit on success, roll back on error."""
    session = db_factory.session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
