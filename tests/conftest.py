"""
共享 Fixtures: 临时 SQLite 数据库、示例表、注入式排序缓存 / 重建标记 / 后台线程池。
"""

import time
from typing import Dict, List, Optional, Sequence

import pytest
from sqlalchemy import update
from sqlmodel import Session

from src.db.engine import configure_engine, init_db, reset_engine
from src.db.models import GridTable, TableRow, new_id
from src.ingest.rebuild import RebuildCoordinator
from src.rows.directory import TableDirectory, TableMeta, create_table
from src.rows.service import RowService, set_row_service
from src.rows.sort_cache import SortCache
from src.rows.values import build_search_text, normalize_cell
from src.utils.task_runner import BackgroundRunner

SAMPLE_COLUMNS = (
    ("Name", "single_line_text"),
    ("Notes", "long_text"),
    ("Amount", "number"),
    ("Status", "single_line_text"),
)


@pytest.fixture
def engine(tmp_path):
    """每个测试一个独立的 SQLite 文件库"""
    eng = configure_engine(f"sqlite:///{tmp_path / 'grid.db'}")
    init_db()
    yield eng
    reset_engine()


@pytest.fixture
def table(engine) -> TableMeta:
    """示例表：Name / Notes / Amount(number) / Status"""
    with Session(engine) as session:
        created = create_table(session, name="Table 1", columns=SAMPLE_COLUMNS)
        return TableDirectory().load(session, created.id)


def column_ids(meta: TableMeta) -> Dict[str, str]:
    """{column name: column id}"""
    return {c.name: c.id for c in meta.columns}


@pytest.fixture
def seed_rows(engine):
    """
    插入行并同步 row_count。rows 为 {列名: 原始值} 列表，按列类型规范化；
    created_at 严格递增，返回插入顺序的行 ID。
    """

    def _seed(meta: TableMeta, rows: Sequence[Dict[str, str]], ids: Optional[List[str]] = None) -> List[str]:
        by_name = column_ids(meta)
        types = {c.id: c.type for c in meta.columns}
        base = time.time()
        out: List[str] = []
        with Session(engine) as session:
            for i, values in enumerate(rows):
                data = {}
                for name, raw in values.items():
                    cid = by_name[name]
                    data[cid] = normalize_cell(types[cid], raw)
                row_id = ids[i] if ids else new_id()
                session.add(
                    TableRow(
                        id=row_id,
                        table_id=meta.id,
                        data=data,
                        search_text=build_search_text(data),
                        created_at=base + i * 1e-3,
                        updated_at=base + i * 1e-3,
                    )
                )
                out.append(row_id)
            session.exec(
                update(GridTable)
                .where(GridTable.id == meta.id)
                .values(row_count=GridTable.row_count + len(rows))
            )
            session.commit()
        return out

    return _seed


@pytest.fixture
def sort_cache() -> SortCache:
    """小阈值缓存：行数 > 5 即启用"""
    return SortCache(max_entries=8, ttl_seconds=60.0, min_table_rows=5, enabled=True)


@pytest.fixture
def coordinator() -> RebuildCoordinator:
    return RebuildCoordinator(stale_seconds=300.0)


@pytest.fixture
def runner():
    r = BackgroundRunner(max_workers=1, name="grid-test")
    yield r
    r.shutdown(wait=True)


@pytest.fixture
def service(engine, sort_cache, coordinator, runner):
    svc = RowService(cache=sort_cache, coordinator=coordinator, runner=runner)
    set_row_service(svc)
    yield svc
    set_row_service(None)
