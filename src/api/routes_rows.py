"""
行存储 API：分页读取、批量插入、单元格更新、删除行、表级排序/搜索/隐藏列设置。
"""

from typing import Callable, TypeVar

from fastapi import APIRouter

from src.api.schemas import (
    AddRowsRequest,
    AddRowsResponse,
    HiddenColumnsResponse,
    RowsPageResponse,
    RowsQueryRequest,
    SearchResponse,
    SetHiddenColumnsRequest,
    SetSearchRequest,
    SetSortRequest,
    SortResponse,
    SuccessResponse,
    TableMetaResponse,
    UpdateCellRequest,
)
from src.log import get_logger
from src.rows.errors import GridError, to_http_exception
from src.rows.service import get_row_service

logger = get_logger(__name__)

router = APIRouter(tags=["rows"])

T = TypeVar("T")


def _call(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except GridError as e:
        if e.status_code >= 500:
            logger.error("[rows_api] %s: %s", e.code, e.message)
        raise to_http_exception(e) from e


# ── 表 ────────────────────────────────────────────────────────────────────────

@router.get("/tables/{table_id}", response_model=TableMetaResponse)
def get_table_meta(table_id: str) -> dict:
    """表元信息：列、行数、可见排序、隐藏列、保存的搜索词。"""
    return _call(lambda: get_row_service().get_table_meta(table_id))


@router.put("/tables/{table_id}/sort", response_model=SortResponse)
def set_table_sort(table_id: str, body: SetSortRequest) -> dict:
    """保存排序（去重、忽略隐藏列），大表会在后台预热排序缓存。"""
    return _call(lambda: get_row_service().set_table_sort(table_id, body.sort))


@router.put("/tables/{table_id}/search", response_model=SearchResponse)
def set_table_search(table_id: str, body: SetSearchRequest) -> dict:
    return _call(lambda: get_row_service().set_table_search(table_id, body.search))


@router.put("/tables/{table_id}/hidden-columns", response_model=HiddenColumnsResponse)
def set_hidden_columns(table_id: str, body: SetHiddenColumnsRequest) -> dict:
    """设置隐藏列；被隐藏的列同时从保存的排序中移除。"""
    return _call(lambda: get_row_service().set_hidden_columns(table_id, body.hidden_column_ids))


# ── 行 ────────────────────────────────────────────────────────────────────────

@router.post("/tables/{table_id}/rows/query", response_model=RowsPageResponse)
def query_rows(table_id: str, body: RowsQueryRequest) -> dict:
    """分页读取行（过滤 + 排序 + 搜索）。"""
    page = _call(
        lambda: get_row_service().get_rows(
            table_id,
            limit=body.limit,
            cursor=body.cursor,
            sort=body.sort,
            filter=body.filter,
            search=body.search,
        )
    )
    return {
        "rows": page.rows,
        "next_cursor": page.next_cursor,
        "total_count": page.total_count,
        "total_is_lower_bound": page.total_is_lower_bound,
        "strategy": page.strategy,
    }


@router.post("/tables/{table_id}/rows", response_model=AddRowsResponse)
def add_rows(table_id: str, body: AddRowsRequest) -> dict:
    """批量插入行（可选客户端 ID、可选示例数据填充）。"""
    return _call(
        lambda: get_row_service().add_rows(
            table_id,
            body.count,
            ids=body.ids,
            populate_synthetic=body.populate_synthetic,
        )
    )


@router.patch("/rows/{row_id}", response_model=SuccessResponse)
def update_cell(row_id: str, body: UpdateCellRequest) -> dict:
    return _call(lambda: get_row_service().update_cell(row_id, body.column_id, body.value))


@router.delete("/rows/{row_id}", response_model=SuccessResponse)
def delete_row(row_id: str) -> dict:
    """删除一行；表中最后一行不可删除。"""
    return _call(lambda: get_row_service().delete_row(row_id))
