"""
Database package: async SQLAlchemy engine, session, and ORM models.
"""

from kisprice.db.engine import check_db_health, dispose_engine, get_engine, get_session_factory

__all__ = ["check_db_health", "dispose_engine", "get_engine", "get_session_factory"]
