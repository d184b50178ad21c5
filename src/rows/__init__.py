"""
行存储查询层：过滤/排序编译、排序缓存、分页策略、行级修改。

Usage:
    from src.rows.service import get_row_service
    page = get_row_service().get_rows(table_id, limit=50, cursor=0)
"""

from src.rows.errors import GridError, NotFoundError, ValidationError
from src.rows.pagination import RowPage, RowPager
from src.rows.query_builder import FilterSpec, SortItem, build_row_query
from src.rows.sort_cache import SortCache

__all__ = [
    "GridError",
    "NotFoundError",
    "ValidationError",
    "RowPage",
    "RowPager",
    "FilterSpec",
    "SortItem",
    "build_row_query",
    "SortCache",
]
