"""
RowService：单元格更新、删除行、表级排序 / 搜索 / 隐藏列、表元信息、预热调度
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func
from sqlmodel import Session, select

from config.settings import settings
from src.db.models import GridTable, TableRow
from src.rows.errors import ConflictError, NotFoundError, ValidationError
from src.rows.pagination import STRATEGY_CACHE_HIT
from src.rows.query_builder import SortItem


def column_ids(meta):
    return {c.name: c.id for c in meta.columns}


def _row(engine, row_id):
    with Session(engine) as session:
        return session.get(TableRow, row_id)


def _table(engine, table_id):
    with Session(engine) as session:
        return session.get(GridTable, table_id)


# ── 依赖注入 ──

class TestWiring:
    def test_keeps_injected_empty_dependencies(self, service, sort_cache, coordinator, runner):
        assert len(sort_cache) == 0
        assert service.cache is sort_cache
        assert service.pager.cache is sort_cache
        assert service.inserter.cache is sort_cache
        assert service.coordinator is coordinator
        assert service.index_manager.coordinator is coordinator
        assert service.runner is runner
        assert service.index_manager.runner is runner


# ── 单元格 ──

class TestUpdateCell:
    def test_normalizes_and_refreshes_search_text(self, engine, table, seed_rows, service):
        ids = column_ids(table)
        (row_id,) = seed_rows(table, [{"Name": "old", "Status": "open"}])
        assert service.update_cell(row_id, ids["Name"], "new\nname") == {"success": True}
        row = _row(engine, row_id)
        assert row.data[ids["Name"]] == "new name"
        assert row.search_text == "new name open"

    def test_number_is_canonicalised(self, engine, table, seed_rows, service):
        ids = column_ids(table)
        (row_id,) = seed_rows(table, [{"Name": "a"}])
        service.update_cell(row_id, ids["Amount"], " 0012.50 ")
        assert _row(engine, row_id).data[ids["Amount"]] == "12.5"

    def test_invalid_number_rejected(self, engine, table, seed_rows, service, sort_cache):
        ids = column_ids(table)
        row_ids = seed_rows(table, [{"Name": f"n{i}", "Amount": "3"} for i in range(6)])
        service.get_rows(table.id, limit=2, sort=[SortItem(column_id=ids["Name"])])
        before = _row(engine, row_ids[0])

        with pytest.raises(ValidationError, match="Invalid number format."):
            service.update_cell(row_ids[0], ids["Amount"], "three")

        after = _row(engine, row_ids[0])
        assert after.data[ids["Amount"]] == "3"
        assert after.search_text == before.search_text
        assert after.updated_at == before.updated_at
        assert len(sort_cache) == 1

    def test_repeated_update_keeps_last_value(self, engine, table, seed_rows, service):
        ids = column_ids(table)
        (row_id,) = seed_rows(table, [{"Name": "a"}])
        service.update_cell(row_id, ids["Name"], "b")
        service.update_cell(row_id, ids["Name"], "c")
        row = _row(engine, row_id)
        assert row.data[ids["Name"]] == "c"
        assert row.search_text == "c"
        assert _table(engine, table.id).row_count == 1

    def test_update_after_delete_is_not_found(self, engine, table, seed_rows, service):
        a, _ = seed_rows(table, [{"Name": "a"}, {"Name": "b"}])
        service.delete_row(a)
        with pytest.raises(NotFoundError):
            service.update_cell(a, column_ids(table)["Name"], "x")

    def test_missing_row_or_column(self, table, seed_rows, service):
        (row_id,) = seed_rows(table, [{"Name": "a"}])
        with pytest.raises(NotFoundError):
            service.update_cell("missing", column_ids(table)["Name"], "x")
        with pytest.raises(NotFoundError):
            service.update_cell(row_id, "missing-column", "x")

    def test_invalidates_cached_order(self, table, seed_rows, service, sort_cache):
        ids = column_ids(table)
        row_ids = seed_rows(table, [{"Name": f"n{i}"} for i in range(6)])
        sort = [SortItem(column_id=ids["Name"])]
        service.get_rows(table.id, limit=2, sort=sort)
        assert service.get_rows(table.id, limit=2, cursor=2, sort=sort).strategy == STRATEGY_CACHE_HIT

        service.update_cell(row_ids[5], ids["Name"], "a-first")
        page = service.get_rows(table.id, limit=2, sort=sort)
        assert page.strategy != STRATEGY_CACHE_HIT
        assert page.ids[0] == row_ids[5]


# ── 删除行 ──

class TestDeleteRow:
    def test_deletes_and_decrements(self, engine, table, seed_rows, service):
        a, b = seed_rows(table, [{"Name": "a"}, {"Name": "b"}])
        assert service.delete_row(a) == {"success": True}
        assert _row(engine, a) is None
        assert _table(engine, table.id).row_count == 1

    def test_last_row_cannot_be_deleted(self, engine, table, seed_rows, service):
        (only,) = seed_rows(table, [{"Name": "a"}])
        with pytest.raises(ConflictError, match="At least one row is required."):
            service.delete_row(only)
        assert _row(engine, only) is not None
        assert _table(engine, table.id).row_count == 1

    def test_missing_row(self, table, service):
        with pytest.raises(NotFoundError):
            service.delete_row("missing")

    def test_second_delete_of_same_row(self, engine, table, seed_rows, service):
        a, _, _ = seed_rows(table, [{"Name": "a"}, {"Name": "b"}, {"Name": "c"}])
        service.delete_row(a)
        with pytest.raises(NotFoundError):
            service.delete_row(a)
        assert _table(engine, table.id).row_count == 2

    def test_row_removed_between_lookup_and_delete(self, engine, table, seed_rows, service, monkeypatch):
        # the lookup still resolves the table, but another request already removed the row
        a, _, _ = seed_rows(table, [{"Name": "a"}, {"Name": "b"}, {"Name": "c"}])
        service.delete_row(a)
        monkeypatch.setattr(service.directory, "table_id_for_row", lambda session, row_id: table.id)

        with pytest.raises(NotFoundError):
            service.delete_row(a)
        with Session(engine) as session:
            remaining = session.exec(
                select(func.count()).select_from(TableRow).where(TableRow.table_id == table.id)
            ).one()
        assert remaining == 2
        assert _table(engine, table.id).row_count == remaining

    def test_invalidates_cache(self, table, seed_rows, service, sort_cache):
        row_ids = seed_rows(table, [{"Name": f"n{i}"} for i in range(7)])
        service.get_rows(table.id, limit=2, sort=[SortItem(column_id=table.name_column_id)])
        assert len(sort_cache) == 1
        service.delete_row(row_ids[0])
        assert len(sort_cache) == 0


# ── 表级设置 ──

class TestTableSettings:
    def test_set_sort_dedupes_and_persists(self, engine, table, service):
        ids = column_ids(table)
        result = service.set_table_sort(
            table.id,
            [
                SortItem(column_id=ids["Amount"], direction="desc"),
                SortItem(column_id=ids["Amount"], direction="asc"),
                SortItem(column_id=ids["Name"]),
            ],
        )
        expected = [
            {"column_id": ids["Amount"], "direction": "desc"},
            {"column_id": ids["Name"], "direction": "asc"},
        ]
        assert result == {"sort": expected}
        assert _table(engine, table.id).sort_config == expected

    def test_set_sort_unknown_column(self, table, service):
        with pytest.raises(NotFoundError):
            service.set_table_sort(table.id, [SortItem(column_id="ghost")])

    def test_clear_sort(self, table, service):
        service.set_table_sort(table.id, [SortItem(column_id=table.name_column_id)])
        assert service.set_table_sort(table.id, []) == {"sort": None}

    def test_set_sort_skips_hidden(self, table, service):
        ids = column_ids(table)
        service.set_hidden_columns(table.id, [ids["Status"]])
        result = service.set_table_sort(table.id, [SortItem(column_id=ids["Status"])])
        assert result == {"sort": None}

    def test_prewarm_scheduled_for_large_table(self, table, seed_rows, sort_cache, coordinator, engine):
        from src.rows.service import RowService

        runner = MagicMock()
        svc = RowService(cache=sort_cache, coordinator=coordinator, runner=runner)
        seed_rows(table, [{"Name": f"n{i}"} for i in range(6)])
        svc.set_table_sort(table.id, [SortItem(column_id=table.name_column_id)])
        runner.submit.assert_called_once_with(f"prewarm:{table.id}", svc.pager.prewarm, table.id)

    def test_no_prewarm_for_small_table_or_when_disabled(self, table, seed_rows, sort_cache, coordinator, monkeypatch):
        from src.rows.service import RowService

        runner = MagicMock()
        svc = RowService(cache=sort_cache, coordinator=coordinator, runner=runner)
        seed_rows(table, [{"Name": "a"}])
        svc.set_table_sort(table.id, [SortItem(column_id=table.name_column_id)])
        seed_rows(table, [{"Name": f"n{i}"} for i in range(6)])
        monkeypatch.setattr(settings.sort_cache, "prewarm_on_sort_change", False)
        svc.set_table_sort(table.id, [SortItem(column_id=table.name_column_id)])
        runner.submit.assert_not_called()

    def test_prewarm_fills_cache(self, table, seed_rows, service, sort_cache):
        seed_rows(table, [{"Name": f"n{i}"} for i in range(6)])
        service.set_table_sort(table.id, [SortItem(column_id=table.name_column_id, direction="desc")])
        assert service.runner.wait_idle(5)
        assert len(sort_cache) == 1
        page = service.get_rows(table.id, limit=2)
        assert page.strategy == STRATEGY_CACHE_HIT

    def test_search_trimmed_and_cleared(self, engine, table, service):
        assert service.set_table_search(table.id, "  foo ") == {"search_query": "foo"}
        assert _table(engine, table.id).search_query == "foo"
        assert service.set_table_search(table.id, "   ") == {"search_query": ""}
        assert _table(engine, table.id).search_query is None

    def test_search_unknown_table(self, engine, service):
        with pytest.raises(NotFoundError):
            service.set_table_search("missing", "x")

    def test_hidden_columns_never_hide_name_and_prune_sort(self, engine, table, service):
        ids = column_ids(table)
        service.set_table_sort(table.id, [SortItem(column_id=ids["Notes"]), SortItem(column_id=ids["Name"])])
        result = service.set_hidden_columns(table.id, [ids["Name"], ids["Notes"], ids["Notes"], "ghost"])
        assert result == {
            "hidden_column_ids": [ids["Notes"]],
            "sort": [{"column_id": ids["Name"], "direction": "asc"}],
        }

    def test_table_meta(self, table, seed_rows, service):
        ids = column_ids(table)
        seed_rows(table, [{"Name": "a"}, {"Name": "b"}])
        service.set_table_sort(table.id, [SortItem(column_id=ids["Amount"], direction="desc")])
        service.set_hidden_columns(table.id, [ids["Status"]])
        meta = service.get_table_meta(table.id)
        assert meta["table"] == {"id": table.id, "name": "Table 1"}
        assert [c["name"] for c in meta["columns"]] == ["Name", "Notes", "Amount", "Status"]
        assert meta["row_count"] == 2
        assert meta["sort"] == [{"column_id": ids["Amount"], "direction": "desc"}]
        assert meta["hidden_column_ids"] == [ids["Status"]]
        assert meta["search_query"] == ""

    def test_table_meta_unknown(self, engine, service):
        with pytest.raises(NotFoundError):
            service.get_table_meta("missing")
