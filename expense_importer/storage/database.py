"""
Database Configuration and Connection Management

Provides engine creation and session management with rollback on error and
guaranteed cleanup.

Design Considerations:
- One Database object per URL instead of module-level globals, so tests can
  use an isolated in-memory SQLite database
- Sessions committed on success, rolled back and re-raised on failure
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from expense_importer.exceptions import StorageError
from expense_importer.storage.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``url``.

    In-memory SQLite shares a single connection so every session sees the
    same database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        elif url.startswith("sqlite:///"):
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, echo=echo, **kwargs)
    return create_engine(url, echo=echo, pool_pre_ping=True)


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_db_engine(url, echo=echo)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_db(self) -> None:
        """
        Create all tables if they don't exist.

        Raises:
            StorageError: If schema creation fails
        """
        try:
            logger.info("Initializing database schema")
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database schema initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {str(e)}")
            raise StorageError(f"Failed to initialize database: {str(e)}") from e

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a database session with commit, rollback and cleanup.

        Yields:
            SQLAlchemy session for database operations

        Raises:
            Exception: Re-raises any exceptions that occur during session use
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {str(e)}")
            raise
        finally:
            session.close()
