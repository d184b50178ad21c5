"""
Centralized SQLAlchemy/SQLModel engine and session factory.

All store modules import `get_engine` and `get_session` from here.
The database URL is resolved from the GRID_DATABASE_URL environment
variable or config/grid_config.json, so moving from the SQLite fallback
to PostgreSQL is a single configuration change.  PostgreSQL-only
behaviour (JSONB containment, GIN indexes, SET LOCAL tunables) is gated
on `is_postgres()`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from config.settings import settings

_engine: Engine | None = None


def _resolve_db_url() -> str:
    """
    Resolve database URL with precedence:
    1. GRID_DATABASE_URL environment variable
    2. config/grid_config(.local).json  database.url
    3. Fallback: sqlite:///data/grid.db
    """
    env_url = os.environ.get("GRID_DATABASE_URL")
    if env_url:
        return env_url
    if settings.database.url:
        return settings.database.url
    return "sqlite:///data/grid.db"


def _make_absolute_sqlite_url(url: str) -> str:
    """
    Resolve relative sqlite:/// paths to absolute so the DB is always
    created in <project_root>/data/grid.db regardless of cwd.
    """
    if not url.startswith("sqlite:///"):
        return url
    rel_path = url[len("sqlite:///"):]
    if not rel_path or rel_path.startswith(":memory:") or os.path.isabs(rel_path):
        return url
    root = Path(__file__).resolve().parents[2]
    abs_path = (root / rel_path).resolve()
    abs_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{abs_path}"


def _build_engine(db_url: str) -> Engine:
    is_sqlite = db_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    engine = create_engine(
        db_url,
        echo=settings.database.echo,
        connect_args=connect_args,
        pool_pre_ping=True,
    )

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn, _connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Return the singleton SQLAlchemy engine, creating it on first call."""
    global _engine
    if _engine is not None:
        return _engine
    _engine = _build_engine(_make_absolute_sqlite_url(_resolve_db_url()))
    return _engine


def configure_engine(url: str) -> Engine:
    """Replace the singleton engine (tests, scripts pointing at another DB)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(_make_absolute_sqlite_url(url))
    return _engine


def reset_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def dialect_name(engine: Optional[Engine] = None) -> str:
    return (engine or get_engine()).dialect.name


def is_postgres(engine: Optional[Engine] = None) -> bool:
    return dialect_name(engine) == "postgresql"


def apply_statement_timeout(session: Session, timeout_ms: Optional[int] = None) -> None:
    """
    Bound every statement of the current transaction by the request deadline.
    SET LOCAL dies with the transaction, so nothing leaks into pooled connections.
    """
    if not is_postgres(session.get_bind()):
        return
    ms = settings.database.statement_timeout_ms if timeout_ms is None else timeout_ms
    if ms and ms > 0:
        session.exec(text(f"SET LOCAL statement_timeout = {int(ms)}"))


def get_session() -> Generator[Session, None, None]:
    """FastAPI-style dependency that yields a SQLModel session."""
    with Session(get_engine()) as session:
        yield session


def init_db() -> None:
    """
    Create all tables that are not yet present.
    Called once at application startup after models are imported.
    In production the Alembic migration already handles table creation;
    this is a safety net for tests and fresh installs.
    """
    from src.db import models as _models  # noqa: F401  registers the tables
    SQLModel.metadata.create_all(get_engine())
