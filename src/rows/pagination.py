"""
get_rows: pagination strategy selection.

  cache_hit      warm sort-cache entry → slice ids, fetch rows by id
  single_pass    first page of a sorted query on a large table with no warm
                 entry → compute the full order once, store it, slice page 1
                 (joins an in-flight population for the same key instead)
  flat_scan      offset < deep_offset_threshold → filter + order + limit/offset
  windowed_scan  deeper offsets → ranked id-only sub-query joined back for
                 just the requested window

Counts: the durable row_count when nothing filters; otherwise counted on the
first page only, through a LIMIT count_cap sub-query.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, text
from sqlmodel import Session, select

from config.settings import settings
from src.db.engine import apply_statement_timeout, get_engine, is_postgres
from src.db.models import TableRow
from src.log import get_logger
from src.observability import metrics, tracer
from src.rows.directory import TableDirectory, TableMeta
from src.rows.errors import ValidationError
from src.rows.query_builder import FilterSpec, RowQuery, SortItem, build_row_query
from src.rows.sort_cache import SortCache, SortCacheEntry

logger = get_logger(__name__)

STRATEGY_CACHE_HIT = "cache_hit"
STRATEGY_SINGLE_PASS = "single_pass"
STRATEGY_FLAT_SCAN = "flat_scan"
STRATEGY_WINDOWED_SCAN = "windowed_scan"

UNKNOWN_TOTAL = -1

_rows = TableRow.__table__


@dataclass
class RowPage:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[int] = None
    total_count: int = UNKNOWN_TOTAL
    total_is_lower_bound: bool = False
    strategy: str = STRATEGY_FLAT_SCAN

    @property
    def ids(self) -> List[str]:
        return [r["id"] for r in self.rows]


def saved_sort_items(meta: TableMeta) -> List[SortItem]:
    return [SortItem(column_id=s["column_id"], direction=s["direction"]) for s in meta.sort_config]


class RowPager:
    """Serves row pages for one process; shares the injected SortCache."""

    def __init__(self, cache: SortCache, directory: Optional[TableDirectory] = None):
        self.cache = cache
        self.directory = directory if directory is not None else TableDirectory()
        self.cfg = settings.query

    # ── public API ───────────────────────────────────────────────────────────

    def get_rows(
        self,
        table_id: str,
        limit: Optional[int] = None,
        cursor: Optional[int] = None,
        sort: Optional[Sequence[SortItem]] = None,
        filter: Optional[FilterSpec] = None,
        search: Optional[str] = None,
    ) -> RowPage:
        """
        One page of rows.  `sort=None` falls back to the table's saved sort;
        an empty list means creation order.
        """
        limit = self.cfg.default_page_size if limit is None else limit
        if not 1 <= limit <= self.cfg.max_page_size:
            raise ValidationError(f"limit must be between 1 and {self.cfg.max_page_size}", field="limit")
        offset = cursor or 0
        if offset < 0:
            raise ValidationError("cursor must be >= 0", field="cursor")

        start = time.perf_counter()
        with tracer.start_as_current_span("rows.get_rows") as span, Session(get_engine()) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
            query = build_row_query(
                table_id,
                meta.visible_columns(),
                sort=saved_sort_items(meta) if sort is None else sort,
                filter=filter,
                search=search,
            )
            page = self._select_strategy(session, meta, query, limit, offset)
            session.commit()
            span.set_attribute("rows.strategy", page.strategy)
            span.set_attribute("rows.offset", offset)

        metrics.rows_query_total.labels(strategy=page.strategy).inc()
        metrics.rows_query_duration_seconds.labels(strategy=page.strategy).observe(time.perf_counter() - start)
        return page

    def prewarm(self, table_id: str) -> Optional[SortCacheEntry]:
        """Populate the cache for the table's saved sort (no filter, no search)."""
        with Session(get_engine()) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
            query = build_row_query(table_id, meta.visible_columns(), sort=saved_sort_items(meta))
            if not query.is_sorted or not self.cache.should_cache(meta.row_count):
                return None
            key = self.cache.key(table_id, query.fingerprint())
            if self.cache.get(key) is not None:
                return None
            postgres = is_postgres(session.get_bind())
            entry = self.cache.populate(key, lambda: self._compute_order(session, query, postgres))
            session.commit()
        logger.info("[rows] prewarmed sort cache for table %s (%d ids)", table_id, len(entry.ids))
        return entry

    # ── strategy selection ───────────────────────────────────────────────────

    def _select_strategy(
        self, session: Session, meta: TableMeta, query: RowQuery, limit: int, offset: int
    ) -> RowPage:
        postgres = is_postgres(session.get_bind())

        if query.is_sorted and self.cache.should_cache(meta.row_count):
            key = self.cache.key(query.table_id, query.fingerprint())
            entry = self.cache.get(key)
            if entry is not None:
                return self._page_from_entry(session, entry, limit, offset, STRATEGY_CACHE_HIT)
            if offset == 0:
                try:
                    entry = self.cache.populate(
                        key,
                        lambda: self._compute_order(session, query, postgres),
                        wait_timeout=self._deadline_seconds(),
                    )
                    return self._page_from_entry(session, entry, limit, offset, STRATEGY_SINGLE_PASS)
                except Exception as e:
                    logger.warning(
                        "[rows] sort cache population failed for table %s, serving uncached: %s",
                        query.table_id, e,
                    )
                    session.rollback()
                    apply_statement_timeout(session)

        if offset < self.cfg.deep_offset_threshold:
            rows = self._flat_scan(session, query, postgres, limit, offset)
            strategy = STRATEGY_FLAT_SCAN
        else:
            rows = self._windowed_scan(session, query, postgres, limit, offset)
            strategy = STRATEGY_WINDOWED_SCAN

        total, lower_bound = self._count(session, meta, query, offset)
        return RowPage(
            rows=rows,
            next_cursor=self._next_cursor(offset, len(rows), limit, total, lower_bound),
            total_count=total,
            total_is_lower_bound=lower_bound,
            strategy=strategy,
        )

    def _deadline_seconds(self) -> Optional[float]:
        ms = settings.database.statement_timeout_ms
        return ms / 1000.0 if ms and ms > 0 else None

    @staticmethod
    def _next_cursor(offset: int, returned: int, limit: int, total: int, lower_bound: bool) -> Optional[int]:
        if returned < limit:
            return None
        if total != UNKNOWN_TOTAL and not lower_bound and offset + returned >= total:
            return None
        return offset + returned

    # ── execution paths ──────────────────────────────────────────────────────

    def _compute_order(self, session: Session, query: RowQuery, postgres: bool) -> Tuple[List[str], int]:
        stmt = (
            select(_rows.c.id)
            .where(*query.where(_rows, postgres))
            .order_by(*query.order_by(_rows, postgres))
        )
        ids = list(session.exec(stmt).all())
        return ids, len(ids)

    def _page_from_entry(
        self, session: Session, entry: SortCacheEntry, limit: int, offset: int, strategy: str
    ) -> RowPage:
        page_ids = entry.page(offset, limit)
        rows = self._fetch_by_ids(session, page_ids)
        consumed = offset + len(page_ids)
        return RowPage(
            rows=rows,
            next_cursor=consumed if len(page_ids) == limit and consumed < len(entry.ids) else None,
            total_count=entry.total_filtered,
            strategy=strategy,
        )

    def _fetch_by_ids(self, session: Session, ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        found = {
            row_id: data
            for row_id, data in session.exec(
                select(_rows.c.id, _rows.c.data).where(_rows.c.id.in_(list(ids)))
            ).all()
        }
        # a row deleted after the entry was built is skipped, order is kept
        return [{"id": rid, "data": found[rid] or {}} for rid in ids if rid in found]

    def _flat_scan(
        self, session: Session, query: RowQuery, postgres: bool, limit: int, offset: int
    ) -> List[Dict[str, Any]]:
        stmt = (
            select(_rows.c.id, _rows.c.data)
            .where(*query.where(_rows, postgres))
            .order_by(*query.order_by(_rows, postgres))
            .limit(limit)
            .offset(offset)
        )
        return [{"id": row_id, "data": data or {}} for row_id, data in session.exec(stmt).all()]

    def _windowed_scan(
        self, session: Session, query: RowQuery, postgres: bool, limit: int, offset: int
    ) -> List[Dict[str, Any]]:
        if postgres and query.is_sorted:
            # column sort keys are extracted from JSON; the ordering index cannot serve them
            session.exec(text(f"SET LOCAL work_mem = '{self.cfg.deep_sort_work_mem}'"))
        order = query.order_by(_rows, postgres)
        window = (
            select(_rows.c.id.label("row_id"), func.row_number().over(order_by=order).label("pos"))
            .where(*query.where(_rows, postgres))
            .order_by(*order)
            .limit(limit)
            .offset(offset)
            .subquery("win")
        )
        full = _rows.alias("full_row")
        stmt = (
            select(full.c.id, full.c.data)
            .join(window, full.c.id == window.c.row_id)
            .order_by(window.c.pos)
        )
        return [{"id": row_id, "data": data or {}} for row_id, data in session.exec(stmt).all()]

    def _count(self, session: Session, meta: TableMeta, query: RowQuery, offset: int) -> Tuple[int, bool]:
        if not query.is_filtered:
            return meta.row_count, False
        if offset > 0:
            return UNKNOWN_TOTAL, False
        cap = self.cfg.count_cap
        capped = select(_rows.c.id).where(*query.where(_rows, is_postgres(session.get_bind()))).limit(cap).subquery()
        n = int(session.exec(select(func.count()).select_from(capped)).one())
        if n >= cap:
            return cap, True
        return n, False
