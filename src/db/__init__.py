"""
src/db: centralized database engine, session factory, and SQLModel models.

Usage:
    from src.db import get_engine, get_session
    from src.db.models import GridTable, GridColumn, TableRow
"""

from src.db.engine import configure_engine, get_engine, get_session, init_db, is_postgres

__all__ = ["configure_engine", "get_engine", "get_session", "init_db", "is_postgres"]
