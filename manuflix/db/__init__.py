"""
Database init - Exports for the SQL store
"""

from .base import Base, TimestampMixin, utcnow
from .session import create_db_engine, create_session_factory, init_db

__all__ = ["Base", "TimestampMixin", "utcnow", "create_db_engine", "create_session_factory", "init_db"]
