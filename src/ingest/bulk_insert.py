"""
Bulk row ingestion (up to max_bulk_rows per call).

Modes:
  blank-explicit-ids  caller ids, empty rows, chunked typed inserts in one transaction
  blank-sql           engine-generated ids, one INSERT ... SELECT over a row-number series
  populate-sql        engine-generated ids, synthetic values computed inside the same
                      set-based INSERT ... SELECT
  populate-batched    caller ids, synthetic values generated in Python, batch_size
                      chunks inside one transaction

Order of work: validate (no store access) → plan / drop indexes (autocommit) →
insert + row_count increment (one transaction, scoped tunables) → invalidate
the sort cache.  Whatever the insert outcome, dropped indexes are restored:
the ordering index synchronously, the inverted indexes in the background.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import Float, Integer, Text, cast, func, insert, literal, select as sa_select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import ColumnElement, FromClause
from sqlmodel import Session, select

from config.settings import settings
from src.db.engine import apply_statement_timeout, get_engine, is_postgres
from src.db.models import ORDERING_INDEX, GridTable, TableRow
from src.ingest.index_manager import IndexManager, IndexPlan
from src.ingest.synthetic import synthetic_row, synthetic_value_exprs
from src.log import get_logger
from src.observability import metrics, tracer
from src.rows.directory import ColumnMeta, TableDirectory, TableMeta
from src.rows.errors import BulkInsertError, GridError, ValidationError
from src.rows.sort_cache import SortCache
from src.rows.values import build_search_text

logger = get_logger(__name__)

MODE_BLANK_EXPLICIT = "blank-explicit-ids"
MODE_BLANK_SQL = "blank-sql"
MODE_POPULATE_SQL = "populate-sql"
MODE_POPULATE_BATCHED = "populate-batched"

# jsonb_build_object / json_object take at most 100 arguments
JSON_PAIRS_PER_CALL = 40
CREATED_AT_STEP = 1e-6

_rows = TableRow.__table__
_INSERT_COLUMNS = ["id", "table_id", "data", "search_text", "created_at", "updated_at"]


def choose_mode(has_ids: bool, populate_synthetic: bool) -> str:
    if populate_synthetic:
        return MODE_POPULATE_BATCHED if has_ids else MODE_POPULATE_SQL
    return MODE_BLANK_EXPLICIT if has_ids else MODE_BLANK_SQL


def validate_request(count: int, ids: Optional[Sequence[str]]) -> None:
    """Reject malformed requests before touching the store."""
    max_rows = settings.ingest.max_bulk_rows
    if not isinstance(count, int) or isinstance(count, bool) or count < 1 or count > max_rows:
        raise ValidationError(f"count must be between 1 and {max_rows:,}", field="count")
    if ids is None:
        return
    if len(ids) != count:
        raise ValidationError("Row id list must match the requested count.", field="ids")
    if len(set(ids)) != len(ids):
        raise ValidationError("Row id list must be unique.", field="ids")
    for row_id in ids:
        try:
            uuid.UUID(str(row_id))
        except ValueError:
            raise ValidationError(f"Row id is not a UUID: {row_id}", field="ids") from None


# ── SQL building blocks ───────────────────────────────────────────────────────

def row_number_series(count: int, postgres: bool) -> FromClause:
    """A FROM item yielding row_num = 1..count."""
    if postgres:
        return (
            func.generate_series(cast(literal(1), Integer), cast(literal(count), Integer))
            .table_valued("row_num")
            .render_derived(name="series")
        )
    series = sa_select(literal(1, Integer).label("row_num")).cte("series", recursive=True)
    return series.union_all(sa_select(series.c.row_num + 1).where(series.c.row_num < count))


def generated_uuid(postgres: bool) -> ColumnElement:
    if postgres:
        return cast(func.gen_random_uuid(), Text)

    def _hex(nbytes: int) -> ColumnElement:
        return func.lower(func.hex(func.randomblob(nbytes)))

    variant = func.substr("89ab", 1 + func.abs(func.random()) % 4, 1)
    return (
        _hex(4).concat("-")
        .concat(_hex(2)).concat("-4")
        .concat(func.substr(_hex(2), 2)).concat("-")
        .concat(variant).concat(func.substr(_hex(2), 2)).concat("-")
        .concat(_hex(6))
    )


def json_object_expr(pairs: Sequence[tuple[str, ColumnElement]], postgres: bool) -> ColumnElement:
    """JSON object from (key, value-expression) pairs, built in chunks and merged."""
    build = func.jsonb_build_object if postgres else func.json_object
    if not pairs:
        return build()
    parts: List[ColumnElement] = []
    for start in range(0, len(pairs), JSON_PAIRS_PER_CALL):
        args: List[Any] = []
        for key, value in pairs[start:start + JSON_PAIRS_PER_CALL]:
            args.extend([cast(literal(key), Text), cast(value, Text)])
        parts.append(build(*args))
    merged = parts[0]
    for part in parts[1:]:
        merged = merged.op("||")(part) if postgres else func.json_patch(merged, part)
    return merged


def search_text_expr(values: Sequence[ColumnElement]) -> ColumnElement:
    if not values:
        return literal("", Text)
    expr = cast(values[0], Text)
    for value in values[1:]:
        expr = expr.concat(" ").concat(cast(value, Text))
    return expr


# ── Timing ────────────────────────────────────────────────────────────────────

class _PhaseTimer:
    """Per-phase wall time plus one tracing span per phase."""

    def __init__(self) -> None:
        self.started = time.perf_counter()
        self.phases: List[Dict[str, Any]] = []

    @contextmanager
    def phase(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        with tracer.start_as_current_span(f"bulk_insert.{name}"):
            try:
                yield
            finally:
                self.phases.append({"phase": name, "ms": round((time.perf_counter() - start) * 1000, 2)})

    @property
    def total_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)


# ── Pipeline ──────────────────────────────────────────────────────────────────

class BulkInserter:
    def __init__(
        self,
        cache: SortCache,
        index_manager: IndexManager,
        directory: Optional[TableDirectory] = None,
    ):
        self.cache = cache
        self.index_manager = index_manager
        self.directory = directory if directory is not None else TableDirectory()
        self.cfg = settings.ingest

    def add_rows(
        self,
        table_id: str,
        count: int,
        ids: Optional[Sequence[str]] = None,
        populate_synthetic: bool = False,
    ) -> Dict[str, int]:
        validate_request(count, ids)
        mode = choose_mode(ids is not None, populate_synthetic)
        timer = _PhaseTimer()
        error_code: Optional[str] = None
        error_message: Optional[str] = None
        plan = IndexPlan()
        try:
            with tracer.start_as_current_span("bulk_insert") as span:
                span.set_attribute("bulk_insert.mode", mode)
                span.set_attribute("bulk_insert.count", count)
                result = self._run(table_id, count, ids, mode, timer, plan)
            metrics.bulk_insert_total.labels(mode=mode, status="success").inc()
            metrics.bulk_insert_rows_total.labels(mode=mode).inc(count)
            return result
        except GridError as e:
            error_code, error_message = e.code, e.message
            metrics.bulk_insert_total.labels(mode=mode, status="failed").inc()
            raise
        except SQLAlchemyError as e:
            error_code, error_message = "BULK_INSERT_FAILED", str(e)
            metrics.bulk_insert_total.labels(mode=mode, status="failed").inc()
            raise BulkInsertError(table_id, mode, e) from e
        finally:
            metrics.bulk_insert_duration_seconds.labels(mode=mode).observe(timer.total_ms / 1000)
            if count >= self.cfg.large_batch_threshold or populate_synthetic:
                logger.info(
                    "[bulk_insert.timing] %s",
                    {
                        "table_id": table_id,
                        "count": count,
                        "mode": mode,
                        "populate_synthetic": populate_synthetic,
                        "has_explicit_ids": ids is not None,
                        "indexes_dropped": plan.dropped,
                        "error_code": error_code,
                        "error_message": error_message,
                        "total_ms": timer.total_ms,
                        "phases": timer.phases,
                    },
                )

    def _run(
        self,
        table_id: str,
        count: int,
        ids: Optional[Sequence[str]],
        mode: str,
        timer: _PhaseTimer,
        plan: IndexPlan,
    ) -> Dict[str, int]:
        engine = get_engine()
        postgres = is_postgres(engine)

        with timer.phase("preflight"), Session(engine) as session:
            apply_statement_timeout(session)
            meta = self.directory.load(session, table_id)
            if meta.row_count + count > self.cfg.max_table_rows:
                raise ValidationError(f"Row limit of {self.cfg.max_table_rows:,} reached.", field="count")
            planned = self.index_manager.plan(session, count)
            plan.drop_ordering = planned.drop_ordering
            plan.drop_table_only = planned.drop_table_only
            plan.drop_inverted = planned.drop_inverted

        # drops commit on their own; the finally block puts the indexes back
        # whether or not the insert succeeds
        committed = False
        try:
            if plan.targets:
                with timer.phase("drop-indexes"):
                    self.index_manager.drop_for_bulk(plan)
            new_total = self._insert(engine, postgres, table_id, count, ids, mode, meta, timer)
            committed = True
            # rows are durable from here on; later failures must not hide that
            self.cache.invalidate_for_table(table_id)
        finally:
            self._restore_indexes(plan, table_id, count, mode, timer, committed)

        return {"added": count, "new_total_count": new_total}

    def _restore_indexes(
        self,
        plan: IndexPlan,
        table_id: str,
        count: int,
        mode: str,
        timer: _PhaseTimer,
        committed: bool,
    ) -> None:
        try:
            if plan.rebuild_ordering:
                with timer.phase("rebuild-ordering-index"):
                    try:
                        self.index_manager.rebuild_ordering()
                    except SQLAlchemyError as e:
                        metrics.index_rebuilds_total.labels(index=ORDERING_INDEX, outcome="failed").inc()
                        if not committed:
                            # the insert error is already propagating
                            logger.error("[bulk_insert] ordering index rebuild after failed insert failed: %s", e)
                            return
                        err = BulkInsertError(table_id, mode, e)
                        err.details = {**(err.details or {}), "rows_committed": count}
                        raise err from e
        finally:
            if plan.rebuild_inverted:
                self.index_manager.schedule_inverted_rebuild()

    def _insert(
        self,
        engine: Engine,
        postgres: bool,
        table_id: str,
        count: int,
        ids: Optional[Sequence[str]],
        mode: str,
        meta: TableMeta,
        timer: _PhaseTimer,
    ) -> int:
        with timer.phase("insert"), Session(engine) as session:
            apply_statement_timeout(session)
            if postgres:
                self._apply_insert_tunables(session)
            if mode == MODE_BLANK_EXPLICIT:
                self._insert_explicit(session, table_id, ids or [], None)
            elif mode == MODE_POPULATE_BATCHED:
                self._insert_explicit(session, table_id, ids or [], meta.columns)
            else:
                columns = meta.columns if mode == MODE_POPULATE_SQL else []
                self._insert_set_based(session, table_id, count, columns, postgres)
            session.exec(
                update(GridTable)
                .where(GridTable.id == table_id)
                .values(row_count=GridTable.row_count + count, updated_at=time.time())
            )
            new_total = int(session.exec(select(GridTable.row_count).where(GridTable.id == table_id)).one())
            session.commit()
        return new_total

    def _apply_insert_tunables(self, session: Session) -> None:
        cfg = self.cfg
        session.exec(text(f"SET LOCAL maintenance_work_mem = '{cfg.maintenance_work_mem}'"))
        session.exec(text(f"SET LOCAL work_mem = '{cfg.work_mem}'"))
        session.exec(text("SET LOCAL synchronous_commit = off"))
        session.exec(text(f"SET LOCAL gin_pending_list_limit = '{cfg.gin_pending_list_limit}'"))

    def _insert_explicit(
        self,
        session: Session,
        table_id: str,
        ids: Sequence[str],
        columns: Optional[Sequence[ColumnMeta]],
    ) -> None:
        """Typed multi-row inserts in batch_size chunks; synthetic values when columns are given."""
        now = time.time()
        batch = self.cfg.batch_size
        for start in range(0, len(ids), batch):
            chunk: List[Dict[str, Any]] = []
            for offset, row_id in enumerate(ids[start:start + batch]):
                row_num = start + offset + 1
                data = synthetic_row(columns, row_num) if columns else {}
                ts = now + row_num * CREATED_AT_STEP
                chunk.append(
                    {
                        "id": str(row_id),
                        "table_id": table_id,
                        "data": data,
                        "search_text": build_search_text(data),
                        "created_at": ts,
                        "updated_at": ts,
                    }
                )
            session.exec(insert(_rows), params=chunk)

    def _insert_set_based(
        self,
        session: Session,
        table_id: str,
        count: int,
        columns: Sequence[ColumnMeta],
        postgres: bool,
    ) -> None:
        series = row_number_series(count, postgres)
        row_num = series.c.row_num
        values = synthetic_value_exprs(columns, row_num)
        created = literal(time.time(), Float) + cast(row_num, Float) * CREATED_AT_STEP
        source = sa_select(
            generated_uuid(postgres),
            cast(literal(table_id), Text),
            json_object_expr([(col.id, v) for col, v in zip(columns, values)], postgres),
            search_text_expr(values),
            created,
            created,
        ).select_from(series)
        session.exec(insert(_rows).from_select(_INSERT_COLUMNS, source))
