"""
Row service: the request/response surface over the row store.

Wires one SortCache, one RebuildCoordinator and the background runner into
the pager (reads), the bulk inserter (ingestion) and the single-row / table
settings mutations below.  Every mutation of a table's rows invalidates that
table's sort-cache entries after its transaction commits.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, update
from sqlmodel import Session, select

from config.settings import settings
from src.db.engine import apply_statement_timeout, get_engine
from src.db.models import GridTable, TableRow
from src.ingest.bulk_insert import BulkInserter
from src.ingest.index_manager import IndexManager
from src.ingest.rebuild import RebuildCoordinator
from src.log import get_logger
from src.observability import metrics
from src.rows.directory import TableDirectory, TableMeta
from src.rows.errors import ConflictError, NotFoundError, ValidationError
from src.rows.pagination import RowPage, RowPager
from src.rows.query_builder import FilterSpec, SortItem
from src.rows.sort_cache import SortCache
from src.rows.values import build_search_text, normalize_cell
from src.utils.task_runner import BackgroundRunner, get_background_runner

logger = get_logger(__name__)


def _sort_payload(items: Sequence[Dict[str, str]]) -> Optional[List[Dict[str, str]]]:
    return [dict(i) for i in items] or None


class RowService:
    def __init__(
        self,
        cache: Optional[SortCache] = None,
        coordinator: Optional[RebuildCoordinator] = None,
        runner: Optional[BackgroundRunner] = None,
        directory: Optional[TableDirectory] = None,
    ):
        # SortCache defines __len__, so an empty injected cache is falsy
        self.cache = cache if cache is not None else SortCache()
        self.coordinator = coordinator if coordinator is not None else RebuildCoordinator()
        self.runner = runner if runner is not None else get_background_runner()
        self.directory = directory if directory is not None else TableDirectory()
        self.pager = RowPager(self.cache, self.directory)
        self.index_manager = IndexManager(self.coordinator, self.runner)
        self.inserter = BulkInserter(self.cache, self.index_manager, self.directory)

    # ── reads ────────────────────────────────────────────────────────────────

    def get_rows(
        self,
        table_id: str,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
        sort: Optional[Sequence[SortItem]] = None,
        filter: Optional[FilterSpec] = None,
        search: Optional[str] = None,
    ) -> RowPage:
        return self.pager.get_rows(table_id, limit=limit, cursor=cursor, sort=sort, filter=filter, search=search)

    def get_table_meta(self, table_id: str) -> Dict[str, Any]:
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
        hidden = meta.effective_hidden_ids
        visible_sort = [s for s in meta.sort_config if s["column_id"] not in hidden]
        return {
            "table": {"id": meta.id, "name": meta.name},
            "columns": [{"id": c.id, "name": c.name, "type": c.type} for c in meta.columns],
            "row_count": meta.row_count,
            "sort": _sort_payload(visible_sort),
            "hidden_column_ids": hidden,
            "search_query": meta.search_query or "",
        }

    # ── writes ───────────────────────────────────────────────────────────────

    def add_rows(
        self,
        table_id: str,
        count: int,
        ids: Optional[Sequence[str]] = None,
        populate_synthetic: bool = False,
    ) -> Dict[str, int]:
        return self.inserter.add_rows(table_id, count, ids=ids, populate_synthetic=populate_synthetic)

    def update_cell(self, row_id: str, column_id: str, value: str) -> Dict[str, bool]:
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            row = session.exec(select(TableRow).where(TableRow.id == row_id).with_for_update()).first()
            if row is None:
                raise NotFoundError("row", row_id)
            meta = self.directory.load(session, row.table_id)
            column = meta.column(column_id)
            if column is None:
                raise NotFoundError("column", column_id)
            # the column type is only known after the lookup; nothing has been
            # written yet, and leaving the block rolls back the row lock
            normalized = normalize_cell(column.type, value)
            if normalized is None:
                raise ValidationError("Invalid number format.", field="value")

            data = dict(row.data or {})
            data[column_id] = normalized
            row.data = data
            row.search_text = build_search_text(data)
            row.updated_at = time.time()
            session.add(row)
            session.commit()
            table_id = row.table_id

        self.cache.invalidate_for_table(table_id)
        return {"success": True}

    def delete_row(self, row_id: str) -> Dict[str, bool]:
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            table_id = self.directory.table_id_for_row(session, row_id)
            # the counter only moves for a row this transaction actually removed
            deleted = session.exec(delete(TableRow).where(TableRow.id == row_id))
            if deleted.rowcount == 0:
                session.rollback()
                raise NotFoundError("row", row_id)
            # guard and decrement in one statement: concurrent deletes on a
            # two-row table cannot both pass
            result = session.exec(
                update(GridTable)
                .where(GridTable.id == table_id, GridTable.row_count > 1)
                .values(row_count=GridTable.row_count - 1, updated_at=time.time())
            )
            if result.rowcount == 0:
                session.rollback()
                raise ConflictError("At least one row is required.")
            session.commit()

        self.cache.invalidate_for_table(table_id)
        return {"success": True}

    def set_table_sort(self, table_id: str, sort: Optional[Sequence[SortItem]]) -> Dict[str, Any]:
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
            hidden = set(meta.effective_hidden_ids)

            seen: set[str] = set()
            next_sort: List[Dict[str, str]] = []
            for item in sort or []:
                if item.column_id in seen:
                    continue
                seen.add(item.column_id)
                if item.column_id in hidden:
                    continue
                if meta.column(item.column_id) is None:
                    raise NotFoundError("column", item.column_id)
                next_sort.append({"column_id": item.column_id, "direction": item.direction})

            table = session.get(GridTable, table_id)
            table.sort_config = next_sort
            table.updated_at = time.time()
            session.add(table)
            session.commit()

        if next_sort:
            self._schedule_prewarm(meta)
        return {"sort": _sort_payload(next_sort)}

    def set_table_search(self, table_id: str, search: Optional[str]) -> Dict[str, str]:
        trimmed = (search or "").strip()
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            table = session.get(GridTable, table_id)
            if table is None:
                raise NotFoundError("table", table_id)
            table.search_query = trimmed or None
            table.updated_at = time.time()
            session.add(table)
            session.commit()
        return {"search_query": trimmed}

    def set_hidden_columns(self, table_id: str, hidden_column_ids: Sequence[str]) -> Dict[str, Any]:
        """Hide columns (never the Name column) and prune them from the saved sort."""
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
            name_id = meta.name_column_id
            next_hidden: List[str] = []
            for cid in dict.fromkeys(hidden_column_ids):
                if meta.column(cid) is not None and cid != name_id:
                    next_hidden.append(cid)
            next_sort = [s for s in meta.sort_config if s["column_id"] not in next_hidden]

            table = session.get(GridTable, table_id)
            table.hidden_column_ids = next_hidden
            table.sort_config = next_sort
            table.updated_at = time.time()
            session.add(table)
            session.commit()
        return {"hidden_column_ids": next_hidden, "sort": _sort_payload(next_sort)}

    # ── background ───────────────────────────────────────────────────────────

    def _schedule_prewarm(self, meta: TableMeta) -> None:
        if not settings.sort_cache.prewarm_on_sort_change:
            return
        if not self.cache.should_cache(meta.row_count):
            return
        metrics.background_tasks_total.labels(kind="prewarm").inc()
        self.runner.submit(f"prewarm:{meta.id}", self.pager.prewarm, meta.id)


# ── Process-wide instance ─────────────────────────────────────────────────────

_service: RowService | None = None
_service_lock = threading.Lock()


def get_row_service() -> RowService:
    global _service
    with _service_lock:
        if _service is None:
            _service = RowService()
        return _service


def set_row_service(service: Optional[RowService]) -> None:
    """Replace the process instance (tests)."""
    global _service
    with _service_lock:
        _service = service
