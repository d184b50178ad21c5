"""
索引生命周期：计划、drop 确认、倒排索引后台重建（PostgreSQL 路径用 mock）、重建标记
"""

from unittest.mock import MagicMock

import pytest
from sqlmodel import Session

from config.settings import settings
from src.db.models import DATA_GIN_INDEX, ORDERING_INDEX, SEARCH_TRGM_INDEX, TABLE_ONLY_INDEX
from src.ingest import index_manager as im
from src.ingest.index_manager import IndexManager, IndexPlan
from src.ingest.rebuild import RebuildCoordinator


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _pg_engine():
    engine = MagicMock()
    conn = MagicMock()
    conn.execute.return_value.first.return_value = None
    conn.execute.return_value.scalars.return_value.all.return_value = []
    engine.connect.return_value.execution_options.return_value.__enter__.return_value = conn
    engine.begin.return_value.__enter__.return_value = conn
    return engine, conn


def _executed(conn):
    return [str(call.args[0]) for call in conn.execute.call_args_list]


# ── 重建标记 ──

class TestRebuildCoordinator:
    def test_single_holder(self):
        coord = RebuildCoordinator(stale_seconds=300, clock=FakeClock())
        token = coord.try_start()
        assert token is not None
        assert coord.is_running()
        assert coord.try_start() is None
        assert coord.finish(token) is True
        assert not coord.is_running()

    def test_only_current_token_clears(self):
        coord = RebuildCoordinator(stale_seconds=300, clock=FakeClock())
        coord.try_start()
        assert coord.finish("someone-else") is False
        assert coord.is_running()

    def test_stale_flag_is_taken_over(self):
        clock = FakeClock()
        coord = RebuildCoordinator(stale_seconds=300, clock=clock)
        old = coord.try_start()
        clock.now = 300.0
        assert not coord.is_running()
        new = coord.try_start()
        assert new is not None and new != old
        # 旧持有者结束时不能清掉新标记
        assert coord.finish(old) is False
        assert coord.is_running()

    def test_reset(self):
        coord = RebuildCoordinator(stale_seconds=300, clock=FakeClock())
        coord.try_start()
        coord.reset()
        assert not coord.is_running()


# ── 计划 ──

class TestPlan:
    def test_targets_and_rebuild_flags(self):
        plan = IndexPlan(drop_ordering=True, drop_table_only=True, drop_inverted=True)
        assert plan.targets == [ORDERING_INDEX, TABLE_ONLY_INDEX, DATA_GIN_INDEX, SEARCH_TRGM_INDEX]
        assert not plan.rebuild_ordering
        plan.dropped = [ORDERING_INDEX, DATA_GIN_INDEX]
        assert plan.rebuild_ordering
        assert plan.rebuild_inverted

    def test_small_batch_plans_nothing(self, engine, coordinator):
        manager = IndexManager(coordinator)
        with Session(engine) as session:
            assert manager.plan(session, settings.ingest.large_batch_threshold - 1).targets == []

    def test_ordering_kept_when_existing_rows_outnumber_batch(self, engine, table, seed_rows, coordinator, monkeypatch):
        monkeypatch.setattr(settings.ingest, "large_batch_threshold", 2)
        seed_rows(table, [{"Name": str(i)} for i in range(5)])
        manager = IndexManager(coordinator)
        with Session(engine) as session:
            keep = manager.plan(session, 3)
            drop = manager.plan(session, 6)
        assert not keep.drop_ordering and keep.drop_table_only
        assert drop.drop_ordering
        # SQLite 没有倒排索引
        assert not drop.drop_inverted


# ── PostgreSQL 路径 ──

@pytest.fixture
def pg(monkeypatch):
    monkeypatch.setattr(im, "is_postgres", lambda engine=None: True)
    return _pg_engine()


class TestPostgresDrop:
    def test_cancels_builds_drops_and_reports_present(self, pg, coordinator):
        engine, conn = pg
        manager = IndexManager(coordinator, engine=engine)
        present_calls = iter([[DATA_GIN_INDEX, ORDERING_INDEX], []])
        manager._present = lambda c, names, postgres: next(present_calls)
        manager._cancel_concurrent_builds = MagicMock(return_value=1)
        coordinator.try_start()

        plan = IndexPlan(drop_ordering=True, drop_table_only=True, drop_inverted=True)
        dropped = manager.drop_for_bulk(plan)

        assert dropped == [ORDERING_INDEX, DATA_GIN_INDEX]
        manager._cancel_concurrent_builds.assert_called_once()
        assert not coordinator.is_running()
        statements = _executed(conn)
        for name in plan.targets:
            assert f"DROP INDEX IF EXISTS {name}" in statements

    def test_unconfirmed_drop_proceeds(self, pg, coordinator, monkeypatch):
        engine, conn = pg
        monkeypatch.setattr(im.time, "sleep", lambda s: None)
        manager = IndexManager(coordinator, engine=engine)
        manager._present = lambda c, names, postgres: [TABLE_ONLY_INDEX]
        plan = IndexPlan(drop_table_only=True)
        assert manager.drop_for_bulk(plan) == [TABLE_ONLY_INDEX]


class TestPostgresRebuild:
    def test_schedule_submits_once(self, pg, coordinator):
        engine, _ = pg
        runner = MagicMock()
        manager = IndexManager(coordinator, runner=runner, engine=engine)

        assert manager.schedule_inverted_rebuild() is True
        assert manager.schedule_inverted_rebuild() is False
        runner.submit.assert_called_once()
        name, fn, token = runner.submit.call_args.args
        assert name == "index_rebuild"
        assert fn == manager.rebuild_inverted
        assert coordinator.is_running()

    def test_rebuild_runs_concurrently_and_clears_flag(self, pg, coordinator):
        engine, conn = pg
        manager = IndexManager(coordinator, engine=engine)
        token = coordinator.try_start()
        manager.rebuild_inverted(token)
        statements = _executed(conn)
        assert any("CREATE INDEX CONCURRENTLY IF NOT EXISTS " + DATA_GIN_INDEX in s for s in statements)
        assert any("CREATE INDEX CONCURRENTLY IF NOT EXISTS " + SEARCH_TRGM_INDEX in s for s in statements)
        assert not coordinator.is_running()

    def test_invalid_leftover_is_dropped_first(self, pg, coordinator):
        engine, conn = pg
        conn.execute.return_value.first.return_value = (DATA_GIN_INDEX,)
        manager = IndexManager(coordinator, engine=engine)
        manager.rebuild_inverted(coordinator.try_start())
        statements = _executed(conn)
        assert f"DROP INDEX IF EXISTS {DATA_GIN_INDEX}" in statements

    def test_failure_is_logged_and_flag_cleared(self, pg, coordinator):
        engine, conn = pg
        conn.execute.side_effect = RuntimeError("lock timeout")
        manager = IndexManager(coordinator, engine=engine)
        manager.rebuild_inverted(coordinator.try_start())
        assert not coordinator.is_running()

    def test_inline_when_async_disabled(self, pg, coordinator, monkeypatch):
        engine, conn = pg
        monkeypatch.setattr(settings.ingest, "async_index_rebuild", False)
        runner = MagicMock()
        manager = IndexManager(coordinator, runner=runner, engine=engine)
        assert manager.schedule_inverted_rebuild() is True
        runner.submit.assert_not_called()
        assert not coordinator.is_running()

    def test_ordering_rebuild_sets_maintenance_memory(self, pg, coordinator):
        engine, conn = pg
        IndexManager(coordinator, engine=engine).rebuild_ordering()
        statements = _executed(conn)
        assert statements[0].startswith("SET LOCAL maintenance_work_mem")
        assert ORDERING_INDEX in statements[1]


def test_sqlite_never_schedules_inverted_rebuild(engine, coordinator):
    runner = MagicMock()
    manager = IndexManager(coordinator, runner=runner)
    assert manager.schedule_inverted_rebuild() is False
    runner.submit.assert_not_called()
