"""
SQLModel table definitions for the grid row store.

Design rules for SQLModel compatibility:
  - primary_key=True and foreign_key="..." must be set in Field() only,
    never combined with sa_column (SQLModel raises RuntimeError otherwise).
  - JSON columns use JSON on SQLite and JSONB on PostgreSQL (containment
    operator + GIN indexing); Python-side they are plain dict / list.
  - Timestamps are float epoch seconds, so set-based inserts can spread
    creation order with simple arithmetic on every dialect.
  - Only the ordering index is declared here.  The legacy single-column
    index and the PostgreSQL inverted indexes are owned by
    src/ingest/index_manager.py, which drops and rebuilds them around
    large bulk inserts.
"""

import time
import uuid
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column, Float, Index, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

ORDERING_INDEX = "table_row_table_created_idx"
TABLE_ONLY_INDEX = "table_row_table_idx"
DATA_GIN_INDEX = "table_row_data_gin_idx"
SEARCH_TRGM_INDEX = "table_row_search_text_trgm_idx"

COLUMN_TYPES = ("single_line_text", "long_text", "number")


def _json_type():
    return JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    return str(uuid.uuid4())


def _now_ts() -> float:
    return time.time()


# ──────────────────────────────────────────────────────────────────────────────
# Tables and columns
# ──────────────────────────────────────────────────────────────────────────────

class GridTable(SQLModel, table=True):
    __tablename__ = "base_table"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    sort_config: List[Dict[str, str]] = Field(
        default_factory=list, sa_column=Column(_json_type(), nullable=False)
    )
    hidden_column_ids: List[str] = Field(
        default_factory=list, sa_column=Column(_json_type(), nullable=False)
    )
    search_query: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    # maintained incrementally by inserts / deletes, never by full scan
    row_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, server_default="0"))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))


class GridColumn(SQLModel, table=True):
    __tablename__ = "table_column"
    __table_args__ = (Index("table_column_table_idx", "table_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    table_id: str = Field(foreign_key="base_table.id", ondelete="CASCADE")
    name: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    type: str = Field(
        default="single_line_text",
        sa_column=Column(Text, nullable=False, server_default="single_line_text"),
    )
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))


# ──────────────────────────────────────────────────────────────────────────────
# Rows
# ──────────────────────────────────────────────────────────────────────────────

class TableRow(SQLModel, table=True):
    __tablename__ = "table_row"
    __table_args__ = (Index(ORDERING_INDEX, "table_id", "created_at", "id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    table_id: str = Field(foreign_key="base_table.id", ondelete="CASCADE")
    data: Dict[str, str] = Field(default_factory=dict, sa_column=Column(_json_type(), nullable=False))
    search_text: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    created_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
    updated_at: float = Field(default_factory=_now_ts, sa_column=Column(Float, nullable=False))
