"""
Database connection and session management for the review queue store.

Supports PostgreSQL in production and SQLite for local runs and tests.
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Create base class for models
Base = declarative_base()

_DEFAULT_DEV_URL = "sqlite:///./quality_engine.db"
DATABASE_URL = os.getenv("DATABASE_URL", _DEFAULT_DEV_URL)


def build_engine(url: str | None = None) -> Engine:
    """Create an engine, handling SQLite vs PostgreSQL differences."""
    url = url or DATABASE_URL

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases must share one connection across sessions
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

    logger.info(f"Database engine created for {engine.url.drivername}")
    return engine


def build_session_factory(engine: Engine, create_tables: bool = True) -> sessionmaker:
    """Session factory bound to ``engine``; optionally creates tables."""
    if create_tables:
        # Import models so they register on Base.metadata
        from ..models import review  # noqa: F401

        Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
