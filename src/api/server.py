"""
FastAPI 应用入口 - 行存储查询与批量写入 API
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes_rows import router as rows_router
from src.log import get_logger, init_logging
from src.observability import setup_observability
from src.utils.task_runner import shutdown_background_runner

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：日志 → DB 初始化 → 确认索引存在；关闭时等待后台任务"""
    init_logging()

    # 0. 确保表结构存在（alembic 已执行时为空操作）
    from src.db.engine import init_db
    try:
        init_db()
    except Exception as e:
        logger.warning("[startup] init_db failed (may be OK if alembic already ran): %s", e)

    # 1. 排序索引同步建立；PostgreSQL 上缺失的倒排索引交给后台重建
    from src.rows.service import get_row_service
    try:
        get_row_service().index_manager.ensure_indexes()
    except Exception as e:
        logger.warning("[startup] ensure_indexes failed: %s", e)

    yield

    shutdown_background_runner(wait=True)


app = FastAPI(
    title="Grid Row Store API",
    description="表格行存储：过滤/排序分页读取与批量写入",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rows_router)

# Observability: 中间件 + /metrics + /health/detailed
setup_observability(app)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
