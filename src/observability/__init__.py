"""
Observability 模块：OpenTelemetry tracing + Prometheus metrics。

用法：
    from src.observability import setup_observability, metrics, tracer

    # 创建 FastAPI app 时初始化
    setup_observability(app)

    # 业务代码中手动埋点
    with tracer.start_as_current_span("rows.get_rows"):
        ...

    metrics.rows_query_total.labels(strategy="flat_scan").inc()
"""

from src.observability.setup import setup_observability
from src.observability.metrics import metrics
from src.observability.tracing import tracer

__all__ = ["setup_observability", "metrics", "tracer"]
