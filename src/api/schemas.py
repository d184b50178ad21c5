"""
API 请求/响应 Pydantic 模型
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.rows.query_builder import FilterSpec, SortItem


# ── 行查询 ────────────────────────────────────────────────────────────────────

class RowsQueryRequest(BaseModel):
    """分页读取行"""

    limit: Optional[int] = Field(None, ge=1, description="每页行数，None 表示使用配置默认值")
    cursor: Optional[int] = Field(None, ge=0, description="上一页返回的 next_cursor（行偏移量）")
    sort: Optional[List[SortItem]] = Field(
        None,
        description="排序规则；None 表示使用表上保存的排序，空列表表示按创建顺序",
    )
    filter: Optional[FilterSpec] = Field(None, description="过滤条件树")
    search: Optional[str] = Field(None, description="全文搜索词（不区分大小写的子串匹配）")


class RowItem(BaseModel):
    id: str
    data: Dict[str, Any] = Field(default_factory=dict)


class RowsPageResponse(BaseModel):
    """一页行数据"""

    rows: List[RowItem] = Field(default_factory=list)
    next_cursor: Optional[int] = Field(None, description="下一页游标，None 表示没有更多")
    total_count: int = Field(..., description="匹配行总数；-1 表示本页未计算")
    total_is_lower_bound: bool = Field(False, description="总数达到计数上限，仅为下界")
    strategy: str = Field(..., description="分页策略: cache_hit | single_pass | flat_scan | windowed_scan")


# ── 批量插入 ──────────────────────────────────────────────────────────────────

class AddRowsRequest(BaseModel):
    """批量插入行"""

    count: int = Field(..., description="插入行数 (1 - max_bulk_rows)")
    ids: Optional[List[str]] = Field(None, description="客户端生成的行 ID（UUID），长度需与 count 一致")
    populate_synthetic: bool = Field(False, description="是否填充确定性的示例数据")


class AddRowsResponse(BaseModel):
    added: int
    new_total_count: int


# ── 单元格 / 行 ───────────────────────────────────────────────────────────────

class UpdateCellRequest(BaseModel):
    column_id: str = Field(..., description="列 ID")
    value: str = Field("", description="新值；数字列需为合法数字或空串")


class SuccessResponse(BaseModel):
    success: bool = True


# ── 表设置 ────────────────────────────────────────────────────────────────────

class SetSortRequest(BaseModel):
    sort: Optional[List[SortItem]] = Field(None, description="排序规则，None 或空列表表示清除")


class SortResponse(BaseModel):
    sort: Optional[List[SortItem]] = None


class SetSearchRequest(BaseModel):
    search: Optional[str] = Field(None, description="保存的搜索词，去除首尾空白后为空则清除")


class SearchResponse(BaseModel):
    search_query: str = ""


class SetHiddenColumnsRequest(BaseModel):
    hidden_column_ids: List[str] = Field(default_factory=list, description="隐藏的列 ID（Name 列不可隐藏）")


class HiddenColumnsResponse(BaseModel):
    hidden_column_ids: List[str] = Field(default_factory=list)
    sort: Optional[List[SortItem]] = None


class ColumnInfo(BaseModel):
    id: str
    name: str
    type: str


class TableInfo(BaseModel):
    id: str
    name: str


class TableMetaResponse(BaseModel):
    """表元信息"""

    table: TableInfo
    columns: List[ColumnInfo] = Field(default_factory=list)
    row_count: int = 0
    sort: Optional[List[SortItem]] = Field(None, description="可见列上的保存排序")
    hidden_column_ids: List[str] = Field(default_factory=list)
    search_query: str = ""
