"""
一键初始化 Observability：注册中间件 + /metrics 端点 + /health/detailed + 应用元信息。
"""

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from src.observability.middleware import ObservabilityMiddleware
from src.observability.metrics import metrics
from src.observability.tracing import SERVICE_NAME, SERVICE_VERSION
from src.log import get_logger

logger = get_logger(__name__)


def setup_observability(app: FastAPI) -> None:
    """
    在 FastAPI app 上挂载 Observability 组件。

    应在 router 注册之后、启动之前调用。
    """
    app.add_middleware(ObservabilityMiddleware)

    @app.get("/metrics", include_in_schema=False)
    def prometheus_metrics():
        return PlainTextResponse(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.get("/health/detailed", tags=["observability"])
    def health_detailed():
        """详细健康检查：数据库可达性、排序缓存、后台索引重建状态"""
        checks: dict = {}

        try:
            from src.db.engine import dialect_name, get_engine
            with get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
            checks["dialect"] = dialect_name()
        except Exception as e:
            checks["database"] = f"error: {e}"

        from src.rows.service import get_row_service
        service = get_row_service()
        checks["sort_cache_entries"] = len(service.cache)
        checks["index_rebuild_in_progress"] = service.coordinator.is_running()

        overall = "ok" if checks["database"] == "ok" else "degraded"
        return {"status": overall, "components": checks}

    metrics.app_info.info({"version": SERVICE_VERSION, "service": SERVICE_NAME})

    logger.info("[observability] middleware + /metrics + /health/detailed registered")
