"""
Prometheus metrics 定义。

所有自定义指标集中定义，业务模块通过 `from src.observability import metrics` 引用。
"""

from prometheus_client import Counter, Histogram, Gauge, Info


class _Metrics:
    """集中管理所有 Prometheus 指标"""

    def __init__(self):
        # ── HTTP 请求 ──
        self.http_requests_total = Counter(
            "grid_http_requests_total",
            "HTTP 请求总数",
            ["method", "endpoint", "status_code"],
        )
        self.http_request_duration_seconds = Histogram(
            "grid_http_request_duration_seconds",
            "HTTP 请求延迟 (秒)",
            ["method", "endpoint"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ── 行查询 ──
        self.rows_query_total = Counter(
            "grid_rows_query_total",
            "get_rows 请求总数",
            ["strategy"],  # cache_hit / single_pass / flat_scan / windowed_scan
        )
        self.rows_query_duration_seconds = Histogram(
            "grid_rows_query_duration_seconds",
            "get_rows 延迟 (秒)",
            ["strategy"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ── 排序缓存 ──
        self.sort_cache_lookups_total = Counter(
            "grid_sort_cache_lookups_total",
            "排序缓存查询次数",
            ["result"],  # hit / miss
        )
        self.sort_cache_populations_total = Counter(
            "grid_sort_cache_populations_total",
            "排序缓存填充次数",
            ["outcome"],  # stored / stale / coalesced / failed
        )
        self.sort_cache_invalidations_total = Counter(
            "grid_sort_cache_invalidations_total",
            "按表失效次数",
        )
        self.sort_cache_entries = Gauge(
            "grid_sort_cache_entries",
            "当前缓存条目数",
        )

        # ── 批量入库 ──
        self.bulk_insert_total = Counter(
            "grid_bulk_insert_total",
            "批量入库请求总数",
            ["mode", "status"],  # status: success / failed
        )
        self.bulk_insert_rows_total = Counter(
            "grid_bulk_insert_rows_total",
            "批量入库写入行数",
            ["mode"],
        )
        self.bulk_insert_duration_seconds = Histogram(
            "grid_bulk_insert_duration_seconds",
            "批量入库延迟 (秒)",
            ["mode"],
            buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120),
        )

        # ── 索引生命周期 ──
        self.index_drops_total = Counter(
            "grid_index_drops_total",
            "入库前删除的二级索引",
            ["index"],
        )
        self.index_rebuilds_total = Counter(
            "grid_index_rebuilds_total",
            "索引重建结果",
            ["index", "outcome"],  # outcome: success / failed / skipped
        )
        self.index_rebuild_in_progress = Gauge(
            "grid_index_rebuild_in_progress",
            "后台索引重建标记 (0/1)",
        )

        # ── 系统 ──
        self.background_tasks_total = Counter(
            "grid_background_tasks_total",
            "提交到后台线程池的任务数",
            ["kind"],  # prewarm / index_rebuild
        )
        self.app_info = Info(
            "grid_app",
            "应用元信息",
        )


# 单例
metrics = _Metrics()
