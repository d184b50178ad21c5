"""
Secondary-index lifecycle around large bulk inserts on table_row.

Before a large insert (count >= large_batch_threshold):
  - ordering index (table_id, created_at, id): dropped only when the rows
    already stored are fewer than the incoming batch
  - legacy (table_id) index: always dropped, never rebuilt (the ordering
    index covers it)
  - inverted indexes (PostgreSQL only): any CREATE INDEX CONCURRENTLY still
    running for them is cancelled first, then they are dropped
  - the catalog is re-checked, including invalid leftovers of cancelled
    builds, with bounded retries

Drops and rebuilds run on their own autocommit connections so they never
share a transaction with the insert.  The ordering index is rebuilt
synchronously; inverted indexes are rebuilt CONCURRENTLY in the background.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import func, text
from sqlalchemy.engine import Connection, Engine
from sqlmodel import Session, select

from config.settings import settings
from src.db.engine import get_engine, is_postgres
from src.db.models import (
    DATA_GIN_INDEX,
    ORDERING_INDEX,
    SEARCH_TRGM_INDEX,
    TABLE_ONLY_INDEX,
    GridTable,
)
from src.ingest.rebuild import RebuildCoordinator
from src.log import get_logger
from src.observability import metrics
from src.utils.task_runner import BackgroundRunner

logger = get_logger(__name__)

INVERTED_INDEXES = (DATA_GIN_INDEX, SEARCH_TRGM_INDEX)

_ORDERING_DDL = f"CREATE INDEX IF NOT EXISTS {ORDERING_INDEX} ON table_row (table_id, created_at, id)"
_INVERTED_DDL = {
    DATA_GIN_INDEX: (
        f"CREATE INDEX CONCURRENTLY IF NOT EXISTS {DATA_GIN_INDEX} "
        "ON table_row USING gin (data jsonb_path_ops)"
    ),
    SEARCH_TRGM_INDEX: (
        f"CREATE INDEX CONCURRENTLY IF NOT EXISTS {SEARCH_TRGM_INDEX} "
        "ON table_row USING gin (search_text gin_trgm_ops)"
    ),
}


@dataclass
class IndexPlan:
    drop_ordering: bool = False
    drop_table_only: bool = False
    drop_inverted: bool = False
    dropped: List[str] = field(default_factory=list)

    @property
    def targets(self) -> List[str]:
        names: List[str] = []
        if self.drop_ordering:
            names.append(ORDERING_INDEX)
        if self.drop_table_only:
            names.append(TABLE_ONLY_INDEX)
        if self.drop_inverted:
            names.extend(INVERTED_INDEXES)
        return names

    @property
    def rebuild_ordering(self) -> bool:
        return ORDERING_INDEX in self.dropped

    @property
    def rebuild_inverted(self) -> bool:
        return any(name in self.dropped for name in INVERTED_INDEXES)


class IndexManager:
    def __init__(
        self,
        coordinator: RebuildCoordinator,
        runner: Optional[BackgroundRunner] = None,
        engine: Optional[Engine] = None,
    ):
        self.coordinator = coordinator
        self.runner = runner
        self._engine = engine
        self.cfg = settings.ingest

    @property
    def engine(self) -> Engine:
        return self._engine or get_engine()

    # ── planning ─────────────────────────────────────────────────────────────

    def plan(self, session: Session, count: int) -> IndexPlan:
        if count < self.cfg.large_batch_threshold:
            return IndexPlan()
        # sum of durable counters, never a scan of table_row
        existing = int(session.exec(select(func.coalesce(func.sum(GridTable.row_count), 0))).one())
        return IndexPlan(
            drop_ordering=existing < count,
            drop_table_only=True,
            drop_inverted=is_postgres(self.engine),
        )

    # ── drop ─────────────────────────────────────────────────────────────────

    def drop_for_bulk(self, plan: IndexPlan) -> List[str]:
        """Drop the planned indexes (autocommit) and confirm they are gone."""
        targets = plan.targets
        if not targets:
            return []
        postgres = is_postgres(self.engine)
        with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            present = set(self._present(conn, targets, postgres))
            # recorded before dropping so a failure part way still gets rebuilt
            plan.dropped = [name for name in targets if name in present]
            if plan.drop_inverted and postgres:
                cancelled = self._cancel_concurrent_builds(conn, INVERTED_INDEXES)
                if cancelled:
                    logger.info("[index] cancelled %d in-progress concurrent build(s)", cancelled)
                    self.coordinator.reset()
            for name in targets:
                conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
            self._confirm_dropped(conn, targets, postgres)
        for name in plan.dropped:
            metrics.index_drops_total.labels(index=name).inc()
        logger.info("[index] dropped before bulk insert: %s", ", ".join(plan.dropped) or "(none present)")
        return plan.dropped

    def _present(self, conn: Connection, names: Sequence[str], postgres: bool) -> List[str]:
        """Index names (or invalid leftovers of them) still in the catalog."""
        if not names:
            return []
        if postgres:
            rows = conn.execute(
                text(
                    "SELECT c.relname FROM pg_class c "
                    "JOIN pg_index i ON i.indexrelid = c.oid "
                    "WHERE c.relname = ANY(:names) "
                    "OR c.relname LIKE ANY(SELECT n || '_ccnew%' FROM unnest(CAST(:names AS text[])) AS n)"
                ),
                {"names": list(names)},
            ).scalars().all()
        else:
            rows = conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'index'")
            ).scalars().all()
            rows = [r for r in rows if r in names]
        return list(rows)

    def _confirm_dropped(self, conn: Connection, names: Sequence[str], postgres: bool) -> bool:
        attempts = self.cfg.drop_confirm_attempts
        for attempt in range(1, attempts + 1):
            leftover = self._present(conn, names, postgres)
            if not leftover:
                return True
            logger.info("[index] still present after drop (attempt %d/%d): %s", attempt, attempts, leftover)
            for name in leftover:
                conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
            time.sleep(0.2 * attempt)
        leftover = self._present(conn, names, postgres)
        if leftover:
            logger.warning("[index] could not confirm drop of %s; inserting anyway", leftover)
            return False
        return True

    def _cancel_concurrent_builds(self, conn: Connection, names: Sequence[str]) -> int:
        pids = conn.execute(
            text(
                "SELECT pid FROM pg_stat_activity "
                "WHERE pid <> pg_backend_pid() AND state <> 'idle' "
                "AND query ILIKE '%CREATE INDEX CONCURRENTLY%' "
                "AND EXISTS (SELECT 1 FROM unnest(CAST(:names AS text[])) AS n WHERE query LIKE '%' || n || '%')"
            ),
            {"names": list(names)},
        ).scalars().all()
        for pid in pids:
            conn.execute(text("SELECT pg_cancel_backend(:pid)"), {"pid": pid})
        # cancelled builds need a moment to roll back before DROP can take the lock
        for _ in range(self.cfg.drop_confirm_attempts):
            if not pids:
                break
            still = conn.execute(
                text("SELECT count(*) FROM pg_stat_activity WHERE pid = ANY(:pids)"),
                {"pids": list(pids)},
            ).scalar_one()
            if not still:
                break
            time.sleep(0.2)
        return len(pids)

    # ── rebuild ──────────────────────────────────────────────────────────────

    def rebuild_ordering(self) -> None:
        """Synchronous: pagination depends on this index immediately."""
        with self.engine.begin() as conn:
            if is_postgres(self.engine):
                conn.execute(text(f"SET LOCAL maintenance_work_mem = '{self.cfg.maintenance_work_mem}'"))
            conn.execute(text(_ORDERING_DDL))
        metrics.index_rebuilds_total.labels(index=ORDERING_INDEX, outcome="success").inc()
        logger.info("[index] rebuilt %s", ORDERING_INDEX)

    def schedule_inverted_rebuild(self) -> bool:
        """Queue a background CONCURRENTLY rebuild; False when one is already live."""
        if not is_postgres(self.engine):
            return False
        token = self.coordinator.try_start()
        if token is None:
            logger.info("[index] inverted rebuild already in progress, not scheduling another")
            for name in INVERTED_INDEXES:
                metrics.index_rebuilds_total.labels(index=name, outcome="skipped").inc()
            return False
        if self.cfg.async_index_rebuild and self.runner is not None:
            metrics.background_tasks_total.labels(kind="index_rebuild").inc()
            self.runner.submit("index_rebuild", self.rebuild_inverted, token)
        else:
            self.rebuild_inverted(token)
        return True

    def rebuild_inverted(self, token: str) -> None:
        """Runs detached; errors are logged and the flag is cleared regardless."""
        try:
            with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                for name in INVERTED_INDEXES:
                    invalid = conn.execute(
                        text(
                            "SELECT c.relname FROM pg_class c JOIN pg_index i ON i.indexrelid = c.oid "
                            "WHERE c.relname = :name AND NOT i.indisvalid"
                        ),
                        {"name": name},
                    ).first()
                    if invalid:
                        conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
                    started = time.perf_counter()
                    conn.execute(text(_INVERTED_DDL[name]))
                    metrics.index_rebuilds_total.labels(index=name, outcome="success").inc()
                    logger.info("[index] rebuilt %s in %.1fs", name, time.perf_counter() - started)
        except Exception as e:
            metrics.index_rebuilds_total.labels(index="inverted", outcome="failed").inc()
            logger.error("[index] background inverted index rebuild failed: %s", e)
        finally:
            self.coordinator.finish(token)

    def ensure_indexes(self) -> None:
        """Startup: make sure the ordering index exists; on PostgreSQL also the inverted ones."""
        with self.engine.begin() as conn:
            conn.execute(text(_ORDERING_DDL))
        if is_postgres(self.engine):
            with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
                missing = [n for n in INVERTED_INDEXES if n not in self._present(conn, [n], True)]
            if missing:
                self.schedule_inverted_rebuild()
