"""
get_rows 分页策略：flat_scan / single_pass / cache_hit / windowed_scan、计数与游标
"""

import pytest

from config.settings import settings
from src.rows.errors import NotFoundError, ValidationError
from src.rows.pagination import (
    STRATEGY_CACHE_HIT,
    STRATEGY_FLAT_SCAN,
    STRATEGY_SINGLE_PASS,
    STRATEGY_WINDOWED_SCAN,
    UNKNOWN_TOTAL,
    RowPager,
)
from src.rows.query_builder import FilterCondition, FilterSpec, SortItem

ROWS = [
    {"Name": "Kilo", "Amount": "5", "Status": "open"},
    {"Name": "Alpha", "Amount": "12", "Status": "closed"},
    {"Name": "Echo", "Amount": "", "Status": "open"},
    {"Name": "Bravo", "Amount": "-3", "Status": "open"},
    {"Name": "Juliet", "Amount": "40", "Status": "closed"},
    {"Name": "Delta", "Amount": "7.25", "Status": "open"},
    {"Name": "Hotel", "Amount": "0", "Status": "open"},
    {"Name": "Golf", "Amount": "19", "Status": "closed"},
]


def column_ids(meta):
    return {c.name: c.id for c in meta.columns}


@pytest.fixture
def seeded(table, seed_rows):
    ids = seed_rows(table, ROWS)
    return table, ids


@pytest.fixture
def pager(sort_cache):
    return RowPager(sort_cache)


def names(page, meta):
    name_id = column_ids(meta)["Name"]
    return [r["data"].get(name_id, "") for r in page.rows]


def by_name(meta, direction="asc"):
    return [SortItem(column_id=column_ids(meta)["Name"], direction=direction)]


class TestValidation:
    def test_limit_bounds(self, pager, seeded):
        meta, _ = seeded
        with pytest.raises(ValidationError):
            pager.get_rows(meta.id, limit=0)
        with pytest.raises(ValidationError):
            pager.get_rows(meta.id, limit=settings.query.max_page_size + 1)

    def test_negative_cursor(self, pager, seeded):
        meta, _ = seeded
        with pytest.raises(ValidationError):
            pager.get_rows(meta.id, limit=10, cursor=-1)

    def test_unknown_table(self, pager, engine):
        with pytest.raises(NotFoundError):
            pager.get_rows("missing", limit=10)


class TestFlatScan:
    def test_creation_order_and_cursor(self, pager, seeded):
        meta, ids = seeded
        first = pager.get_rows(meta.id, limit=3, sort=[])
        assert first.strategy == STRATEGY_FLAT_SCAN
        assert first.ids == ids[:3]
        assert first.total_count == len(ROWS)
        assert first.next_cursor == 3

        last = pager.get_rows(meta.id, limit=3, cursor=6, sort=[])
        assert last.ids == ids[6:]
        assert last.next_cursor is None

    def test_exact_final_page_has_no_cursor(self, pager, seeded):
        meta, ids = seeded
        page = pager.get_rows(meta.id, limit=4, cursor=4, sort=[])
        assert page.ids == ids[4:]
        assert page.next_cursor is None

    def test_small_table_is_never_cached(self, pager, sort_cache, table, seed_rows):
        seed_rows(table, ROWS[:5])
        page = pager.get_rows(table.id, limit=2, sort=by_name(table))
        assert page.strategy == STRATEGY_FLAT_SCAN
        assert len(sort_cache) == 0

    def test_filtered_first_page_counts(self, pager, seeded):
        meta, _ = seeded
        status = column_ids(meta)["Status"]
        spec = FilterSpec(items=[FilterCondition(column_id=status, operator="is", value="open")])
        first = pager.get_rows(meta.id, limit=2, sort=[], filter=spec)
        assert first.total_count == 5
        assert first.total_is_lower_bound is False
        assert names(first, meta) == ["Kilo", "Echo"]

        later = pager.get_rows(meta.id, limit=2, cursor=2, sort=[], filter=spec)
        assert later.total_count == UNKNOWN_TOTAL
        assert later.next_cursor == 4

    def test_count_cap_reports_lower_bound(self, pager, seeded, monkeypatch):
        meta, _ = seeded
        monkeypatch.setattr(settings.query, "count_cap", 3)
        page = pager.get_rows(meta.id, limit=2, sort=[], search="o")
        assert page.total_count == 3
        assert page.total_is_lower_bound is True
        assert page.next_cursor == 2

    def test_search_is_case_insensitive_substring(self, pager, seeded):
        meta, _ = seeded
        page = pager.get_rows(meta.id, limit=50, sort=[], search="  ALPHA ")
        assert names(page, meta) == ["Alpha"]
        assert page.total_count == 1


class TestSortCachePaths:
    def test_single_pass_then_cache_hit(self, pager, sort_cache, seeded):
        meta, _ = seeded
        first = pager.get_rows(meta.id, limit=3, sort=by_name(meta))
        assert first.strategy == STRATEGY_SINGLE_PASS
        assert names(first, meta) == ["Alpha", "Bravo", "Delta"]
        assert first.total_count == len(ROWS)
        assert first.next_cursor == 3
        assert len(sort_cache) == 1

        second = pager.get_rows(meta.id, limit=3, cursor=3, sort=by_name(meta))
        assert second.strategy == STRATEGY_CACHE_HIT
        assert names(second, meta) == ["Echo", "Golf", "Hotel"]

        third = pager.get_rows(meta.id, limit=3, cursor=6, sort=by_name(meta))
        assert names(third, meta) == ["Juliet", "Kilo"]
        assert third.next_cursor is None

    def test_numeric_sort_empty_first_ascending(self, pager, seeded):
        meta, _ = seeded
        amount = column_ids(meta)["Amount"]
        page = pager.get_rows(meta.id, limit=50, sort=[SortItem(column_id=amount)])
        assert names(page, meta) == ["Echo", "Bravo", "Hotel", "Kilo", "Delta", "Alpha", "Golf", "Juliet"]

    def test_filtered_entry_carries_filtered_total(self, pager, seeded):
        meta, _ = seeded
        status = column_ids(meta)["Status"]
        spec = FilterSpec(items=[FilterCondition(column_id=status, operator="is", value="closed")])
        page = pager.get_rows(meta.id, limit=2, sort=by_name(meta, "desc"), filter=spec)
        assert page.strategy == STRATEGY_SINGLE_PASS
        assert names(page, meta) == ["Juliet", "Golf"]
        assert page.total_count == 3
        assert page.next_cursor == 2

    def test_deleted_row_is_skipped_on_cache_hit(self, pager, seeded):
        meta, ids = seeded
        pager.get_rows(meta.id, limit=2, sort=by_name(meta))
        # 直接删库（绕过失效），缓存中的 ID 仍指向它
        from sqlalchemy import delete
        from sqlmodel import Session

        from src.db.engine import get_engine
        from src.db.models import TableRow

        with Session(get_engine()) as session:
            session.exec(delete(TableRow).where(TableRow.id == ids[3]))  # Bravo
            session.commit()
        page = pager.get_rows(meta.id, limit=3, cursor=0, sort=by_name(meta))
        assert page.strategy == STRATEGY_CACHE_HIT
        assert names(page, meta) == ["Alpha", "Delta"]

    def test_population_failure_falls_back(self, pager, sort_cache, seeded, monkeypatch):
        meta, _ = seeded

        def boom(*args, **kwargs):
            raise RuntimeError("statement timeout")

        monkeypatch.setattr(pager, "_compute_order", boom)
        page = pager.get_rows(meta.id, limit=3, sort=by_name(meta))
        assert page.strategy == STRATEGY_FLAT_SCAN
        assert names(page, meta) == ["Alpha", "Bravo", "Delta"]
        assert len(sort_cache) == 0

    def test_saved_sort_used_when_sort_omitted(self, pager, service, seeded):
        meta, _ = seeded
        service.set_table_sort(meta.id, by_name(meta, "desc"))
        service.runner.wait_idle(5)
        page = pager.get_rows(meta.id, limit=2)
        assert names(page, meta) == ["Kilo", "Juliet"]

    def test_hidden_sort_column_is_ignored(self, pager, service, seeded):
        meta, ids = seeded
        service.set_hidden_columns(meta.id, [column_ids(meta)["Amount"]])
        amount = column_ids(meta)["Amount"]
        page = pager.get_rows(meta.id, limit=3, sort=[SortItem(column_id=amount, direction="desc")])
        assert page.strategy == STRATEGY_FLAT_SCAN
        assert page.ids == ids[:3]


class TestWindowedScan:
    def test_deep_offset_matches_flat_results(self, pager, seeded, monkeypatch):
        meta, ids = seeded
        expected = pager.get_rows(meta.id, limit=3, cursor=4, sort=by_name(meta, "desc"))
        monkeypatch.setattr(settings.query, "deep_offset_threshold", 2)
        pager.cache.clear()
        deep = pager.get_rows(meta.id, limit=3, cursor=4, sort=by_name(meta, "desc"))
        assert deep.strategy == STRATEGY_WINDOWED_SCAN
        assert deep.ids == expected.ids
        assert names(deep, meta) == ["Echo", "Delta", "Bravo"]

    def test_deep_offset_creation_order(self, pager, seeded, monkeypatch):
        meta, ids = seeded
        monkeypatch.setattr(settings.query, "deep_offset_threshold", 2)
        page = pager.get_rows(meta.id, limit=2, cursor=5, sort=[])
        assert page.strategy == STRATEGY_WINDOWED_SCAN
        assert page.ids == ids[5:7]
        assert page.next_cursor == 7


class TestCompleteness:
    """翻页直到 next_cursor 为 None：不重不漏，数量等于首页 total_count"""

    @staticmethod
    def _walk(pager, meta, limit, sort, spec):
        first = pager.get_rows(meta.id, limit=limit, sort=sort, filter=spec)
        collected = list(first.ids)
        cursor = first.next_cursor
        while cursor is not None:
            page = pager.get_rows(meta.id, limit=limit, cursor=cursor, sort=sort, filter=spec)
            collected.extend(page.ids)
            cursor = page.next_cursor
        return first, collected

    @pytest.mark.parametrize("limit", [1, 2, 3, 5])
    @pytest.mark.parametrize("sort_column,direction", [(None, "asc"), ("Name", "asc"), ("Amount", "desc")])
    @pytest.mark.parametrize("deep_offset", [5_000, 2])
    def test_filtered_pages_cover_every_match_once(
        self, pager, seeded, monkeypatch, limit, sort_column, direction, deep_offset
    ):
        meta, ids = seeded
        monkeypatch.setattr(settings.query, "deep_offset_threshold", deep_offset)
        cols = column_ids(meta)
        sort = [SortItem(column_id=cols[sort_column], direction=direction)] if sort_column else []
        spec = FilterSpec(items=[FilterCondition(column_id=cols["Status"], operator="is", value="open")])

        first, collected = self._walk(pager, meta, limit, sort, spec)

        expected = {rid for rid, row in zip(ids, ROWS) if row["Status"] == "open"}
        assert first.total_count == len(expected) == 5
        assert len(collected) == len(set(collected)) == first.total_count
        assert set(collected) == expected

    def test_unfiltered_pages_cover_table(self, pager, seeded):
        meta, ids = seeded
        first, collected = self._walk(pager, meta, 3, by_name(meta, "desc"), None)
        assert first.total_count == len(ids)
        assert sorted(collected) == sorted(ids)
        assert len(collected) == len(set(collected))
