"""
Table lookup: loads a table's metadata and columns or raises NotFoundError.

This is the seam where an ownership check belongs; callers pass an already
authorized table id.  The create helpers exist for seeding scripts and tests,
table / column CRUD is otherwise out of scope.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from src.db.models import GridColumn, GridTable, TableRow
from src.rows.errors import NotFoundError
from src.rows.values import coerce_column_type

NAME_COLUMN = "Name"

DEFAULT_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("Name", "single_line_text"),
    ("Notes", "long_text"),
    ("Assignee", "single_line_text"),
    ("Status", "single_line_text"),
    ("Attachments", "single_line_text"),
)


@dataclass(frozen=True)
class ColumnMeta:
    id: str
    name: str
    type: str


@dataclass
class TableMeta:
    id: str
    name: str
    row_count: int
    columns: List[ColumnMeta] = field(default_factory=list)
    hidden_column_ids: List[str] = field(default_factory=list)
    sort_config: List[Dict[str, str]] = field(default_factory=list)
    search_query: Optional[str] = None

    @property
    def name_column_id(self) -> Optional[str]:
        return next((c.id for c in self.columns if c.name == NAME_COLUMN), None)

    @property
    def effective_hidden_ids(self) -> List[str]:
        """Hidden ids that still exist, never including the Name column."""
        known = {c.id for c in self.columns}
        name_id = self.name_column_id
        return [cid for cid in self.hidden_column_ids if cid in known and cid != name_id]

    def visible_columns(self) -> Dict[str, str]:
        """{column_id: type} for every column a query may reference."""
        hidden = set(self.effective_hidden_ids)
        return {c.id: c.type for c in self.columns if c.id not in hidden}

    def column(self, column_id: str) -> Optional[ColumnMeta]:
        return next((c for c in self.columns if c.id == column_id), None)


def _to_meta(table: GridTable, columns: Iterable[GridColumn]) -> TableMeta:
    return TableMeta(
        id=table.id,
        name=table.name,
        row_count=int(table.row_count or 0),
        columns=[ColumnMeta(c.id, c.name, coerce_column_type(c.type)) for c in columns],
        hidden_column_ids=[cid for cid in (table.hidden_column_ids or []) if isinstance(cid, str)],
        sort_config=[
            {"column_id": s["column_id"], "direction": "desc" if s.get("direction") == "desc" else "asc"}
            for s in (table.sort_config or [])
            if isinstance(s, dict) and isinstance(s.get("column_id"), str)
        ],
        search_query=table.search_query,
    )


class TableDirectory:
    """Resolves table and row identifiers to table metadata."""

    def load(self, session: Session, table_id: str) -> TableMeta:
        table = session.get(GridTable, table_id)
        if table is None:
            raise NotFoundError("table", table_id)
        columns = session.exec(
            select(GridColumn)
            .where(GridColumn.table_id == table_id)
            .order_by(GridColumn.created_at, GridColumn.id)
        ).all()
        return _to_meta(table, columns)

    def table_id_for_row(self, session: Session, row_id: str) -> str:
        table_id = session.exec(select(TableRow.table_id).where(TableRow.id == row_id)).first()
        if table_id is None:
            raise NotFoundError("row", row_id)
        return table_id


# ── Seeding helpers ───────────────────────────────────────────────────────────

def create_table(
    session: Session,
    name: str = "Table 1",
    columns: Sequence[Tuple[str, str]] = DEFAULT_COLUMNS,
) -> GridTable:
    """Create a table with the given (name, type) columns; commits."""
    table = GridTable(name=name)
    session.add(table)
    session.flush()
    base_ts = time.time()
    for i, (col_name, col_type) in enumerate(columns):
        add_column(session, table.id, col_name, col_type, commit=False, created_at=base_ts + i * 1e-6)
    session.commit()
    session.refresh(table)
    return table


def add_column(
    session: Session,
    table_id: str,
    name: str,
    column_type: str = "single_line_text",
    commit: bool = True,
    created_at: Optional[float] = None,
) -> GridColumn:
    column = GridColumn(table_id=table_id, name=name, type=coerce_column_type(column_type))
    if created_at is not None:
        column.created_at = created_at
    session.add(column)
    session.flush()
    if commit:
        session.commit()
        session.refresh(column)
    return column
