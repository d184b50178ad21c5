from __future__ import annotations

import sys
from pathlib import Path
from logging.config import fileConfig

from sqlmodel import SQLModel

from alembic import context

# Ensure project root is on sys.path so src.db imports work.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Register the grid models on SQLModel.metadata.
import src.db.models as _models  # noqa: F401, E402

from src.db.engine import configure_engine, get_engine, _make_absolute_sqlite_url, _resolve_db_url  # noqa: E402

target_metadata = SQLModel.metadata

# Created / dropped by migrations and the bulk-insert index manager, not by autogenerate.
_UNMANAGED_INDEXES = {
    _models.TABLE_ONLY_INDEX,
    _models.DATA_GIN_INDEX,
    _models.SEARCH_TRGM_INDEX,
}


def _get_url() -> str:
    """alembic.ini / -x url=... override, otherwise GRID_DATABASE_URL / grid_config.json."""
    x_url = context.get_x_argument(as_dictionary=True).get("url")
    ini_url = x_url or config.get_main_option("sqlalchemy.url", default="")
    if not ini_url or ini_url.startswith("driver://"):
        ini_url = _resolve_db_url()
    return _make_absolute_sqlite_url(ini_url)


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    if type_ == "index" and name in _UNMANAGED_INDEXES:
        return False
    return True


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of applying it."""
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=_include_object,
        render_as_batch=True,  # SQLite ALTER TABLE
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _get_url()
    connectable = configure_engine(url) if url != _make_absolute_sqlite_url(_resolve_db_url()) else get_engine()

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=_include_object,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
