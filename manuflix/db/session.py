"""
Database engine and session factory for the SQL store
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .base import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str) -> Engine:
    """Create a sync engine; SQLite gets thread-safe settings for local dev and tests."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        connect_args={"connect_timeout": 10},
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,
        pool_timeout=30,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create tables for all registered models."""
    # Register models with Base.metadata
    from manuflix.models import checkout  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("[OK] Database tables initialized")

